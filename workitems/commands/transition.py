"""
wi transition - Change an entity's status.

Goes through the same orchestrator as the tool server: locking,
transition rules, completion prerequisites and cascade all apply.
"""

import json

from workitems.lib.context import AppContext


def print_outcome(result: dict) -> None:
    """Human-readable rendering of a transition_status() dict."""
    if not result["success"]:
        detail = result.get("error_detail")
        print(f"ERROR [{result['error_code']}] {result.get('entity_id', '')}")
        if isinstance(detail, dict):
            if detail.get("message"):
                print(f"  {detail['message']}")
            for key in ("blocking_task_ids", "failing_criteria", "non_terminal_children", "allowed_transitions"):
                if detail.get(key):
                    print(f"  {key}: {', '.join(detail[key])}")
        else:
            print(f"  {detail}")
        return

    if not result.get("changed", True):
        print(f"{result['entity_type']} {result['entity_id']}: already {result['status']}")
    else:
        print(f"{result['entity_type']} {result['entity_id']}: {result['previous_status']} -> {result['status']}")

    for step in result.get("cascade", []):
        if step["changed"]:
            print(f"  cascade: {step['entity_type']} {step['entity_id']}: "
                  f"{step['previous_status']} -> {step['new_status']} ({step['reason']})")
        else:
            print(f"  cascade: {step['entity_type']} {step['entity_id']}: unchanged ({step['reason']})")
    if result.get("unblocked_tasks"):
        print(f"  unblocked: {', '.join(result['unblocked_tasks'])}")
    for warning in result.get("warnings", []):
        print(f"  WARNING: {warning}")


def cmd_transition(args, ctx: AppContext) -> int:
    if not args.status and not args.trigger:
        print("ERROR: Give a target status or --trigger")
        return 2

    outcome = ctx.orchestrator.transition(
        args.id,
        args.status,
        trigger=args.trigger,
        session_id=args.session,
        summary=args.summary,
    )
    result = outcome.to_dict()

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print_outcome(result)
    return 0 if result["success"] else 1
