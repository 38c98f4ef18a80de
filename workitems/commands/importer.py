"""
wi import - Load a work tree from YAML or JSON.
"""

from pathlib import Path

import yaml

from workitems.lib.context import AppContext
from workitems.lib.errors import PersistenceError
from workitems.lib.tree import import_tree
from workitems.lib.validate import ValidationError


def cmd_import(args, ctx: AppContext) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"ERROR: File not found: {path}")
        return 2

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        print(f"ERROR: Could not parse {path}: {e}")
        return 2

    try:
        result = import_tree(ctx.store, data)
    except ValidationError as e:
        print(f"ERROR: {e}")
        return 2
    except PersistenceError as e:
        print(f"ERROR: Could not store work tree: {e}")
        return 2

    created = result["created"]
    print(
        f"Imported {created['projects']} project(s), {created['features']} feature(s), "
        f"{created['tasks']} task(s), {created['dependencies']} dependency(ies)"
    )
    for key, task_id in result["keys"].items():
        print(f"  {key}: {task_id}")
    return 0
