"""Tests for work tree import and rendering."""

import json

import pytest

from workitems.lib.tree import build_tree, import_tree
from workitems.lib.types import EntityType
from workitems.lib.validate import ValidationError
from workitems.workflow.dependencies import DependencyGraphReader

TREE = {
    "projects": [{
        "name": "Checkout",
        "tags": ["q3"],
        "features": [{
            "name": "Payments",
            "requires_verification": True,
            "verification": [{"criteria": "Card flow works", "pass": False}],
            "tasks": [
                {"key": "api", "title": "Payment API", "status": "In Progress"},
                {"key": "ui", "title": "Payment UI", "blocked_by": ["api"]},
            ],
        }],
    }],
}


class TestImportTree:
    """Tests for import_tree."""

    def test_creates_hierarchy(self, store):
        result = import_tree(store, TREE)

        assert result["created"] == {
            "projects": 1, "features": 1, "tasks": 2, "dependencies": 1, "sections": 1,
        }
        api = store.get(EntityType.TASK, result["keys"]["api"]).unwrap()
        assert api.status == "in_progress"
        ui_id = result["keys"]["ui"]
        assert DependencyGraphReader(store).blockers_of(ui_id) == [api.id]

    def test_verification_becomes_section(self, store):
        import_tree(store, TREE)
        project = store.list_projects().unwrap()[0]
        feature = store.children(EntityType.PROJECT, project.id).unwrap()[0]

        sections = store.sections(EntityType.FEATURE, feature.id).unwrap()
        assert [s.title for s in sections] == ["Verification"]
        assert json.loads(sections[0].content) == [{"criteria": "Card flow works", "pass": False}]

    def test_schema_violation(self, store):
        with pytest.raises(ValidationError):
            import_tree(store, {"projects": [{"name": "X", "owner": "me"}]})

    def test_unknown_status(self, store):
        data = {"projects": [{"name": "X", "status": "testing"}]}
        with pytest.raises(ValidationError, match="Unknown project status 'testing'"):
            import_tree(store, data)

    def test_unknown_blocker_key(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"title": "T", "blocked_by": ["nope"]},
        ]}]}]}
        with pytest.raises(ValidationError, match="unknown task key 'nope'"):
            import_tree(store, data)

    def test_duplicate_key(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"key": "a", "title": "T1"},
            {"key": "a", "title": "T2"},
        ]}]}]}
        with pytest.raises(ValidationError, match="Duplicate task key 'a'"):
            import_tree(store, data)
        assert store.list_projects().unwrap() == []

    def test_rejected_tree_writes_nothing(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"key": "a", "title": "T1"},
            {"title": "T2", "blocked_by": ["zzz"]},
        ]}]}]}
        with pytest.raises(ValidationError):
            import_tree(store, data)
        assert store.list_projects().unwrap() == []

    def test_self_reference(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"key": "a", "title": "T1", "blocked_by": ["a"]},
        ]}]}]}
        with pytest.raises(ValidationError, match="cannot be blocked by itself"):
            import_tree(store, data)
        assert store.list_projects().unwrap() == []

    def test_circular_blocked_by(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"key": "a", "title": "T1", "blocked_by": ["b"]},
            {"key": "b", "title": "T2", "blocked_by": ["c"]},
            {"key": "c", "title": "T3", "blocked_by": ["a"]},
        ]}]}]}
        with pytest.raises(ValidationError, match="Circular blocked_by: a -> b -> c -> a"):
            import_tree(store, data)
        assert store.list_projects().unwrap() == []

    def test_shared_blocker_is_not_a_cycle(self, store):
        data = {"projects": [{"name": "X", "features": [{"name": "F", "tasks": [
            {"key": "a", "title": "T1"},
            {"key": "b", "title": "T2", "blocked_by": ["a"]},
            {"key": "c", "title": "T3", "blocked_by": ["a", "b"]},
        ]}]}]}
        assert import_tree(store, data)["created"]["dependencies"] == 3


class TestBuildTree:
    """Tests for build_tree."""

    def test_nested_structure(self, store):
        import_tree(store, TREE)
        project = store.list_projects().unwrap()[0]

        tree = build_tree(store, project.id)

        assert tree["name"] == "Checkout"
        assert tree["tags"] == ["q3"]
        feature = tree["features"][0]
        assert feature["requires_verification"] is True
        assert {t["name"]: t["status"] for t in feature["tasks"]} == {
            "Payment API": "in_progress",
            "Payment UI": "pending",
        }

    def test_missing_project(self, store):
        assert build_tree(store, "missing") is None

    def test_feature_id_is_not_a_project(self, store):
        feature = store.add_feature("Loose").unwrap()
        assert build_tree(store, feature.id) is None
