"""
wi verify - Set an entity's Verification criteria and show the gate result.
"""

from workitems.lib.constants import VERIFICATION_SECTION_TITLE
from workitems.lib.context import AppContext
from workitems.lib.validate import ValidationError
from workitems.workflow.verification import VerificationGate, parse_criteria


def cmd_verify(args, ctx: AppContext) -> int:
    found = ctx.store.find(args.id)
    if found.is_not_found:
        print(f"ERROR: Entity '{args.id}' not found")
        return 1
    item = found.unwrap()

    if args.criteria is not None:
        try:
            parse_criteria(args.criteria)
        except ValidationError as e:
            print(f"ERROR: {e}")
            return 2
        ctx.store.upsert_section(
            item.entity_type, item.id, VERIFICATION_SECTION_TITLE, args.criteria
        ).unwrap()

    result = VerificationGate(ctx.store).evaluate(item)
    for criterion in result.criteria:
        marker = "[x]" if criterion.passed else "[ ]"
        print(f"  {marker} {criterion.criteria}")
    if result.passed:
        print("Verification: PASSED")
        return 0
    print(f"Verification: NOT PASSED - {result.reason}")
    return 1
