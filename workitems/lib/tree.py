"""
Work tree import and rendering.

A work tree is a YAML (or JSON) document of projects containing features
containing tasks. Tasks may carry a key so other tasks can reference them
in blocked_by. Any level may carry verification criteria, which become
its Verification section.

Example:
    projects:
      - name: Checkout
        features:
          - name: Payments
            requires_verification: true
            tasks:
              - key: api
                title: Payment API
              - title: Payment UI
                blocked_by: [api]
"""

import json
import logging
from typing import Optional

from workitems.lib.constants import VERIFICATION_SECTION_TITLE
from workitems.lib.types import DependencyType, EntityType, WorkItem, parse_status
from workitems.lib.validate import ValidationError, validate
from workitems.store.base import EntityStore

logger = logging.getLogger(__name__)


def _check_status(entity_type: EntityType, node: dict, default: str) -> str:
    raw = node.get("status", default)
    status = parse_status(entity_type, raw)
    if status is None:
        raise ValidationError("work_tree", f"Unknown {entity_type.value} status '{raw}'")
    return status


def _add_verification(store: EntityStore, item: WorkItem, node: dict) -> int:
    criteria = node.get("verification")
    if criteria is None:
        return 0
    store.upsert_section(
        item.entity_type, item.id, VERIFICATION_SECTION_TITLE, json.dumps(criteria, indent=2)
    ).unwrap()
    return 1


def _check_keys(data: dict) -> None:
    """Reject bad task keys and blocked_by references before anything is written."""
    blocked_by: dict[str, list[str]] = {}
    unkeyed: list[list[str]] = []
    for p in data.get("projects", []):
        for f in p.get("features", []):
            for t in f.get("tasks", []):
                refs = list(t.get("blocked_by", []))
                if "key" not in t:
                    unkeyed.append(refs)
                    continue
                key = t["key"]
                if key in blocked_by:
                    raise ValidationError("work_tree", f"Duplicate task key '{key}'")
                if key in refs:
                    raise ValidationError("work_tree", f"Task '{key}' cannot be blocked by itself")
                blocked_by[key] = refs

    for refs in list(blocked_by.values()) + unkeyed:
        for ref in refs:
            if ref not in blocked_by:
                raise ValidationError("work_tree", f"blocked_by references unknown task key '{ref}'")

    visiting: list[str] = []
    done: set[str] = set()

    def visit(key: str) -> None:
        if key in done:
            return
        if key in visiting:
            cycle = visiting[visiting.index(key):] + [key]
            raise ValidationError("work_tree", f"Circular blocked_by: {' -> '.join(cycle)}")
        visiting.append(key)
        for ref in blocked_by[key]:
            visit(ref)
        visiting.pop()
        done.add(key)

    for key in blocked_by:
        visit(key)


def _check_statuses(data: dict) -> None:
    for p in data.get("projects", []):
        _check_status(EntityType.PROJECT, p, "planning")
        for f in p.get("features", []):
            _check_status(EntityType.FEATURE, f, "planning")
            for t in f.get("tasks", []):
                _check_status(EntityType.TASK, t, "pending")


def import_tree(store: EntityStore, data: dict) -> dict:
    """Create every project, feature and task in data.

    The whole document is checked first, so a rejected tree writes
    nothing.

    Returns:
        Counts of created records plus the key -> task id mapping

    Raises:
        ValidationError: if data doesn't match work_tree.schema.json, a
            status is unknown, a task key is duplicated, or blocked_by
            names an unknown key, the task itself, or forms a cycle
        PersistenceError: on a store failure
    """
    validate(data, "work_tree")
    _check_statuses(data)
    _check_keys(data)

    counts = {"projects": 0, "features": 0, "tasks": 0, "dependencies": 0, "sections": 0}
    keys: dict[str, str] = {}
    pending_edges: list[tuple[str, str]] = []  # (blocker key, blocked task id)

    for p in data.get("projects", []):
        project = store.add_project(
            p["name"],
            status=_check_status(EntityType.PROJECT, p, "planning"),
            requires_verification=p.get("requires_verification", False),
            tags=p.get("tags"),
        ).unwrap()
        counts["projects"] += 1
        counts["sections"] += _add_verification(store, project, p)

        for f in p.get("features", []):
            feature = store.add_feature(
                f["name"],
                project.id,
                status=_check_status(EntityType.FEATURE, f, "planning"),
                requires_verification=f.get("requires_verification", False),
                tags=f.get("tags"),
            ).unwrap()
            counts["features"] += 1
            counts["sections"] += _add_verification(store, feature, f)

            for t in f.get("tasks", []):
                task = store.add_task(
                    t["title"],
                    feature.id,
                    status=_check_status(EntityType.TASK, t, "pending"),
                    requires_verification=t.get("requires_verification", False),
                    tags=t.get("tags"),
                ).unwrap()
                counts["tasks"] += 1
                counts["sections"] += _add_verification(store, task, t)
                if "key" in t:
                    keys[t["key"]] = task.id
                for blocker_key in t.get("blocked_by", []):
                    pending_edges.append((blocker_key, task.id))

    for blocker_key, task_id in pending_edges:
        store.add_dependency(keys[blocker_key], task_id, DependencyType.BLOCKS).unwrap()
        counts["dependencies"] += 1

    logger.info(
        f"Imported {counts['projects']} project(s), {counts['features']} feature(s), "
        f"{counts['tasks']} task(s)"
    )
    return {"created": counts, "keys": keys}


def _node(item: WorkItem) -> dict:
    return {
        "id": item.id,
        "entity_type": item.entity_type.value,
        "name": item.name,
        "status": item.status,
        "requires_verification": item.requires_verification,
        "tags": list(item.tags),
    }


def build_tree(store: EntityStore, project_id: str) -> Optional[dict]:
    """Nested dict of a project with its features and tasks, or None if not found.

    Raises:
        PersistenceError: on a store failure
    """
    found = store.get(EntityType.PROJECT, project_id)
    if found.is_not_found:
        return None
    project = found.unwrap()

    tree = _node(project)
    tree["features"] = []
    for feature in store.children(EntityType.PROJECT, project.id).unwrap() or []:
        feature_node = _node(feature)
        feature_node["tasks"] = [
            _node(task) for task in store.children(EntityType.FEATURE, feature.id).unwrap() or []
        ]
        tree["features"].append(feature_node)
    return tree
