"""Tests for the status transition orchestrator."""

import threading
import time
from unittest.mock import patch

from workitems.lib.constants import StatusMode
from workitems.store.base import Result
from workitems.store.memory import MemoryStore
from workitems.workflow.engine import (
    FailureKind,
    StatusTransitionOrchestrator,
    TransitionFailure,
    TransitionRequest,
    TransitionSuccess,
)

from helpers import FAILING, PASSING, add_verification, build_feature, status_of


class TestTransition:
    """Tests for single transitions."""

    def test_start_task(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()

        result = make_orchestrator().transition(task.id, "in_progress", summary="picked up")

        assert isinstance(result, TransitionSuccess)
        assert result.previous_status == "pending"
        assert result.status == "in_progress"
        assert result.modified_at > task.modified_at
        record = store.history(task.id).unwrap()[0]
        assert (record.trigger, record.summary) == ("manual", "picked up")

    def test_status_is_normalized(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        assert make_orchestrator().transition(task.id, " In-Progress ").status == "in_progress"

    def test_unknown_status(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        result = make_orchestrator().transition(task.id, "validating")
        assert result.kind == FailureKind.INVALID_TRANSITION
        assert "Unknown task status 'validating'" in result.detail

    def test_illegal_edge(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()

        result = make_orchestrator().transition(task.id, "completed")

        assert result.kind == FailureKind.INVALID_TRANSITION
        assert result.error_code == "VALIDATION_ERROR"
        assert "pending -> completed" in result.detail["message"]
        assert "in_progress" in result.detail["allowed_transitions"]
        assert status_of(store, task) == "pending"

    def test_legacy_allows_forward_jump(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        result = make_orchestrator(status_mode=StatusMode.LEGACY).transition(task.id, "completed")
        assert result.success
        assert status_of(store, task) == "completed"

    def test_terminal_has_no_exits(self, store, make_orchestrator):
        task = store.add_task("Build API", status="completed").unwrap()
        result = make_orchestrator(status_mode=StatusMode.LEGACY).transition(task.id, "pending")
        assert result.kind == FailureKind.INVALID_TRANSITION
        assert result.detail["allowed_transitions"] == []

    def test_self_transition_is_noop(self, store, make_orchestrator):
        task = store.add_task("Build API", status="completed").unwrap()

        result = make_orchestrator().transition(task.id, "completed")

        assert result.success
        assert not result.changed
        assert result.modified_at == task.modified_at
        assert store.history(task.id).unwrap() == []

    def test_not_found(self, make_orchestrator):
        result = make_orchestrator().transition("missing", "completed")
        assert result.kind == FailureKind.NOT_FOUND
        assert result.to_dict()["error_code"] == "RESOURCE_NOT_FOUND"

    def test_lock_released_after_transition(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()
        orchestrator.transition(task.id, "in_progress")
        assert orchestrator.locks.active_locks() == []


class TestTriggers:
    """Tests for trigger-based transitions."""

    def test_trigger_resolves_target(self, store, make_orchestrator):
        task = store.add_task("Build API", status="in_progress").unwrap()
        result = make_orchestrator().transition(task.id, trigger="submit")
        assert result.status == "testing"

    def test_trigger_not_available(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        result = make_orchestrator().transition(task.id, trigger="complete")
        assert result.kind == FailureKind.INVALID_TRANSITION
        assert "Available: start, cancel, defer" in result.detail

    def test_trigger_and_status_must_agree(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        result = make_orchestrator().transition(task.id, "cancelled", trigger="start")
        assert result.kind == FailureKind.INVALID_TRANSITION

    def test_neither_given(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        result = make_orchestrator().transition(task.id)
        assert result.kind == FailureKind.INVALID_TRANSITION
        assert result.entity_id == task.id


class TestPrerequisites:
    """Tests for blocked completions."""

    def test_failing_verification_blocks(self, store, make_orchestrator):
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()
        add_verification(store, task, FAILING)

        result = make_orchestrator().transition(task.id, "completed")

        assert result.kind == FailureKind.BLOCKED
        assert result.error_code == "VALIDATION_ERROR"
        assert result.detail["failing_criteria"] == ["Docs updated"]
        assert result.detail["message"].startswith("Cannot complete task: ")
        assert status_of(store, task) == "testing"

    def test_open_blocker_blocks(self, store, make_orchestrator):
        blocker = store.add_task("Schema", status="in_progress").unwrap()
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()
        add_verification(store, task, PASSING)
        store.add_dependency(blocker.id, task.id).unwrap()

        result = make_orchestrator().transition(task.id, "completed")

        assert result.kind == FailureKind.BLOCKED
        assert result.detail["blocking_task_ids"] == [blocker.id]

    def test_abandonment_is_not_gated(self, store, make_orchestrator):
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()
        assert make_orchestrator().transition(task.id, "cancelled").success

    def test_completion_reports_unblocked_tasks(self, store, make_orchestrator):
        blocker = store.add_task("Schema", status="testing").unwrap()
        first = store.add_task("Build API").unwrap()
        second = store.add_task("Build UI").unwrap()
        other = store.add_task("Other", status="in_progress").unwrap()
        store.add_dependency(blocker.id, first.id).unwrap()
        store.add_dependency(blocker.id, second.id).unwrap()
        store.add_dependency(other.id, second.id).unwrap()

        result = make_orchestrator().transition(blocker.id, "completed")

        assert result.unblocked_tasks == [first.id]
        assert result.to_dict()["unblocked_tasks"] == [first.id]


class TestFailures:
    """Tests for store failures, bugs and lock contention."""

    def test_lock_held_by_other_session(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()
        orchestrator.locks.acquire(task.id, "other", timeout=0)
        orchestrator.config.locking.timeout = 0.2

        result = orchestrator.transition(task.id, "in_progress", session_id="mine")

        assert result.kind == FailureKind.LOCK_TIMEOUT
        assert result.error_code == "LOCK_TIMEOUT"
        assert status_of(store, task) == "pending"

    def test_store_failure(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()

        with patch.object(store, "update_status", return_value=Result.fail("disk I/O error")):
            result = orchestrator.transition(task.id, "in_progress")

        assert result.kind == FailureKind.PERSISTENCE_ERROR
        assert result.to_dict()["error_code"] == "DATABASE_ERROR"
        assert "disk I/O error" in result.detail
        assert orchestrator.locks.active_locks() == []

    def test_unexpected_error(self, store, make_orchestrator, caplog):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()

        with patch.object(store, "find", side_effect=KeyError("boom")):
            result = orchestrator.transition(task.id, "in_progress")

        assert result.kind == FailureKind.INTERNAL_ERROR
        assert result.detail.startswith("KeyError")
        assert orchestrator.locks.active_locks() == []
        assert "unexpected error" in caplog.text

    def test_cascade_failure_is_a_warning(self, store, make_orchestrator):
        _, feature, tasks = build_feature(store, ["testing"], "in_development")
        orchestrator = make_orchestrator()

        with patch.object(orchestrator.cascade, "propagate", side_effect=RuntimeError("cascade broke")):
            result = orchestrator.transition(tasks[0].id, "completed")

        assert result.success
        assert status_of(store, tasks[0]) == "completed"
        assert result.warnings == ["Cascade failed: cascade broke"]

    def test_history_failure_is_a_warning(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()

        with patch.object(store, "record_transition", return_value=Result.fail("locked")):
            result = orchestrator.transition(task.id, "in_progress")

        assert result.success
        assert "Transition history not recorded: locked" in result.warnings


class SlowStore(MemoryStore):
    """MemoryStore that widens the read-modify-write window."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.max_active = 0
        self._counter = threading.Lock()

    def update_status(self, entity_type, entity_id, status, modified_at):
        with self._counter:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        try:
            return super().update_status(entity_type, entity_id, status, modified_at)
        finally:
            with self._counter:
                self.active -= 1


class TestConcurrency:
    """Tests for mutual exclusion on one entity."""

    def test_same_entity_is_serialized(self):
        store = SlowStore()
        task = store.add_task("Build API").unwrap()
        orchestrator = StatusTransitionOrchestrator(store)
        results = []

        def worker(target):
            results.append(orchestrator.transition(task.id, target))

        threads = [
            threading.Thread(target=worker, args=(target,))
            for target in ["in_progress", "cancelled", "deferred"]
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.max_active == 1
        assert all(r.kind != FailureKind.LOCK_TIMEOUT for r in results if not r.success)
        history = store.history(task.id).unwrap()
        # Every recorded edge starts where the previous one ended
        for earlier, later in zip(history, history[1:]):
            assert later.from_status == earlier.to_status


class TestDictContract:
    """Tests for the dict-shaped entry points."""

    def test_transition_status(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        data = make_orchestrator().transition_status(task.id, "in_progress")
        assert data["success"] is True
        assert data["entity_type"] == "task"
        assert data["status"] == "in_progress"
        assert "cascade" not in data

    def test_failure_dict(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        data = make_orchestrator().transition_status(task.id, "completed")
        assert data["success"] is False
        assert data["error_code"] == "VALIDATION_ERROR"
        assert data["status"] == "pending"

    def test_transition_many(self, store, make_orchestrator):
        _, feature, tasks = build_feature(store, ["pending", "testing"])

        data = make_orchestrator().transition_many([
            {"entity_id": tasks[0].id, "status": "in_progress"},
            TransitionRequest(tasks[1].id, trigger="complete"),
            {"entity_id": "missing", "status": "completed"},
            {"status": "completed"},
        ])

        assert [r["success"] for r in data["results"]] == [True, True, False, False]
        assert data["summary"]["total"] == 4
        assert data["summary"]["succeeded"] == 2
        assert data["summary"]["failed"] == 2
        assert data["summary"]["cascades_applied"] >= 1
        assert status_of(store, feature) == "in_development"

    def test_non_string_status_is_a_validation_error(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        data = make_orchestrator().transition_many([
            {"entity_id": task.id, "status": 5},
            {"entity_id": task.id, "trigger": 7},
        ])
        for result in data["results"]:
            assert result["error_code"] == "VALIDATION_ERROR"
            assert "must be a string" in result["error_detail"]
        assert status_of(store, task) == "pending"

    def test_non_object_entry(self, store, make_orchestrator):
        data = make_orchestrator().transition_many(["oops"])
        assert data["results"][0]["error_code"] == "VALIDATION_ERROR"
        assert data["summary"]["failed"] == 1


class TestNextStatus:
    """Tests for next_status recommendations."""

    def test_recommends_forward_step(self, store, make_orchestrator):
        task = store.add_task("Build API", status="in_progress").unwrap()
        data = make_orchestrator().next_status(task.id)
        assert data["recommended"] == "testing"
        assert data["trigger"] == "submit"
        assert data["blocked"] is False
        assert "unstart" in data["available_triggers"]

    def test_reports_blocked_completion(self, store, make_orchestrator):
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()
        data = make_orchestrator().next_status(task.id)
        assert data["recommended"] == "completed"
        assert data["blocked"] is True
        assert data["blockers"]["reasons"]

    def test_terminal(self, store, make_orchestrator):
        feature = store.add_feature("Payments", status="archived").unwrap()
        data = make_orchestrator().next_status(feature.id)
        assert data["terminal"] is True
        assert data["recommended"] is None
        assert data["available_triggers"] == []

    def test_not_found(self, make_orchestrator):
        data = make_orchestrator().next_status("missing")
        assert data["success"] is False
        assert data["error_code"] == "RESOURCE_NOT_FOUND"

    def test_store_failure(self, store, make_orchestrator):
        with patch.object(store, "find", return_value=Result.fail("db gone")):
            data = make_orchestrator().next_status("any")
        assert data["error_code"] == "DATABASE_ERROR"

    def test_unexpected_error(self, store, make_orchestrator, caplog):
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()
        with patch.object(store, "sections", side_effect=RuntimeError("boom")):
            data = make_orchestrator().next_status(task.id)
        assert data["success"] is False
        assert data["error_code"] == "INTERNAL_ERROR"
        assert data["error_detail"].startswith("RuntimeError")
        assert "unexpected error in next_status" in caplog.text


class TestScenarios:
    """End-to-end scenarios through the dict contract."""

    def test_missing_verification_blocks_completion(self, store, make_orchestrator):
        task = store.add_task("Build API", status="testing", requires_verification=True).unwrap()

        data = make_orchestrator().transition_status(task.id, "completed")

        assert data["success"] is False
        assert data["error_code"] == "VALIDATION_ERROR"
        assert "Verification" in data["error_detail"]["message"]

    def test_passing_verification_completes_and_cascades(self, store, make_orchestrator):
        _, feature, tasks = build_feature(
            store, ["completed", "testing"], "in_development", requires_verification=True
        )
        add_verification(store, tasks[1], PASSING)

        data = make_orchestrator().transition_status(tasks[1].id, "completed")

        assert data["success"] is True
        assert data["status"] == "completed"
        assert status_of(store, feature) == "completed"
        assert data["cascade"][0]["new_status"] == "completed"

    def test_cancel_bypasses_gates(self, store, make_orchestrator):
        blocker = store.add_task("Schema").unwrap()
        task = store.add_task("Build API", status="in_progress", requires_verification=True).unwrap()
        add_verification(store, task, FAILING)
        store.add_dependency(blocker.id, task.id).unwrap()

        data = make_orchestrator().transition_status(task.id, "cancelled")

        assert data["success"] is True
        assert data["status"] == "cancelled"

    def test_pending_blocker_named_in_detail(self, store, make_orchestrator):
        a = store.add_task("A").unwrap()
        b = store.add_task("B", status="testing", requires_verification=True).unwrap()
        add_verification(store, b, PASSING)
        store.add_dependency(a.id, b.id).unwrap()

        data = make_orchestrator().transition_status(b.id, "completed")

        assert data["success"] is False
        assert data["error_detail"]["blocking_task_ids"] == [a.id]
        assert a.id in data["error_detail"]["message"]

    def test_second_session_times_out(self, store, make_orchestrator):
        task = store.add_task("Build API").unwrap()
        orchestrator = make_orchestrator()
        orchestrator.config.locking.timeout = 0.3
        holding = threading.Event()
        done = threading.Event()

        def hold():
            with orchestrator.locks.locked(task.id, "first", timeout=1):
                holding.set()
                done.wait(5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert holding.wait(2)
            data = orchestrator.transition_status(task.id, "in_progress", session_id="second")
        finally:
            done.set()
            holder.join()

        assert data["error_code"] == "LOCK_TIMEOUT"
        retry = orchestrator.transition_status(task.id, "in_progress", session_id="second")
        assert retry["success"] is True
