"""
wi next - Recommend the next status for an entity.
"""

import json

from workitems.lib.context import AppContext


def cmd_next(args, ctx: AppContext) -> int:
    result = ctx.orchestrator.next_status(args.id)

    if args.json:
        print(json.dumps(result, indent=2))
        return 0 if result["success"] else 1

    if not result["success"]:
        print(f"ERROR [{result['error_code']}] {result['error_detail']}")
        return 1

    print(f"{result['entity_type']} {result['entity_id']}: {result['current_status']}")
    if result["recommended"] is None:
        print("  No further forward status.")
    else:
        trigger = f" (trigger: {result['trigger']})" if result["trigger"] else ""
        print(f"  Next: {result['recommended']}{trigger}")
    if result["available_triggers"]:
        print(f"  Available triggers: {', '.join(result['available_triggers'])}")
    if result["blocked"]:
        print("  Completion is currently blocked:")
        for reason in result["blockers"]["reasons"]:
            print(f"    - {reason}")
    return 0
