"""
wi show - Show the project / feature / task tree.
"""

import json

from rich.console import Console
from rich.tree import Tree

from workitems.lib.context import AppContext
from workitems.lib.tree import build_tree

STATUS_STYLES = {
    "completed": "green",
    "cancelled": "dim",
    "archived": "dim",
    "deferred": "yellow",
    "testing": "cyan",
    "validating": "cyan",
    "in_progress": "blue",
    "in_development": "blue",
}


def _label(node: dict) -> str:
    style = STATUS_STYLES.get(node["status"], "white")
    marker = " [magenta]✓verify[/magenta]" if node["requires_verification"] else ""
    return f"[bold]{node['name']}[/bold] [{style}]{node['status']}[/{style}] [dim]{node['id']}[/dim]{marker}"


def render_tree(tree: dict) -> Tree:
    root = Tree(_label(tree))
    for feature in tree["features"]:
        branch = root.add(_label(feature))
        for task in feature["tasks"]:
            branch.add(_label(task))
    return root


def cmd_show(args, ctx: AppContext) -> int:
    if args.project_id:
        project_ids = [args.project_id]
    else:
        project_ids = [p.id for p in ctx.store.list_projects().unwrap() or []]
        if not project_ids:
            print("No projects. Use 'wi import <file>' to load a work tree.")
            return 0

    trees = []
    for project_id in project_ids:
        tree = build_tree(ctx.store, project_id)
        if tree is None:
            print(f"ERROR: Project '{project_id}' not found")
            return 1
        trees.append(tree)

    if args.json:
        print(json.dumps(trees if not args.project_id else trees[0], indent=2))
        return 0

    console = Console()
    for tree in trees:
        console.print(render_tree(tree))
    return 0
