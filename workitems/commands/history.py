"""
wi history - Show the status transitions recorded for an entity.
"""

import json

from workitems.lib.context import AppContext


def cmd_history(args, ctx: AppContext) -> int:
    found = ctx.store.find(args.id)
    if found.is_not_found:
        print(f"ERROR: Entity '{args.id}' not found")
        return 1

    records = ctx.store.history(args.id).unwrap() or []
    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return 0

    if not records:
        print("No transitions recorded.")
        return 0

    for r in records:
        note = f" - {r.summary}" if r.summary else ""
        print(f"{r.at.strftime('%Y-%m-%d %H:%M:%S')}  {r.from_status} -> {r.to_status}  [{r.trigger}]{note}")
    return 0
