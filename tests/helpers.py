"""Builders shared by the workflow tests."""

import json

PASSING = json.dumps([{"criteria": "Tests pass", "pass": True}])
FAILING = json.dumps([
    {"criteria": "Tests pass", "pass": True},
    {"criteria": "Docs updated", "pass": False},
])


def add_verification(store, item, content: str) -> None:
    store.upsert_section(item.entity_type, item.id, "Verification", content).unwrap()


def status_of(store, item) -> str:
    return store.get(item.entity_type, item.id).unwrap().status


def build_feature(store, task_statuses, feature_status="planning", project_status="planning", **task_kwargs):
    """Project -> one feature -> one task per status. Returns (project, feature, tasks)."""
    project = store.add_project("Checkout", status=project_status).unwrap()
    feature = store.add_feature("Payments", project.id, status=feature_status).unwrap()
    tasks = [
        store.add_task(f"Task {i}", feature.id, status=status, **task_kwargs).unwrap()
        for i, status in enumerate(task_statuses)
    ]
    return project, feature, tasks
