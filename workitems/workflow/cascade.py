"""Cascade propagation up the containment hierarchy.

After a task or feature changes status, its ancestors are re-evaluated
one level at a time, child before parent:

- Completion cascade: once every child is terminal, the parent walks its
  forward path toward completed. If the parent's own completion
  prerequisites block the last hop, it parks at the last status before
  completed (a feature stays in validating).
- Start cascade: the first child to start work moves a parent that is
  still in planning to in_development.

A cascade never moves a parent backward and never fails the mutation
that triggered it. Every examined ancestor yields a CascadeStep that
says whether it changed and why.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from workitems.lib.config import CascadeSettings
from workitems.lib.constants import DEFAULT_CASCADE_LOCK_TIMEOUT, TRIGGER_CASCADE, StatusMode
from workitems.lib.types import (
    COMPLETED,
    PARENT_TYPE,
    EntityType,
    TransitionRecord,
    WorkItem,
    is_terminal,
    next_modified_at,
)
from workitems.runner.locking import Busy, LockCoordinator
from workitems.store.base import EntityStore
from workitems.workflow.fsm import FLOWS
from workitems.workflow.prerequisites import Blocked, PrerequisiteChecker
from workitems.workflow.state_machine import is_allowed, next_status

logger = logging.getLogger(__name__)

# Step reasons
ALL_CHILDREN_TERMINAL = "all_children_terminal"
FIRST_CHILD_STARTED = "first_child_started"
CHILDREN_NOT_TERMINAL = "children_not_terminal"
NO_CHILDREN = "no_children"
ALREADY_AT_TARGET = "already_at_target"
ALREADY_TERMINAL = "already_terminal"
TRANSITION_NOT_ALLOWED = "transition_not_allowed"
PREREQUISITES_BLOCKED = "prerequisites_blocked"
LOCK_TIMEOUT = "lock_timeout"
NOT_FOUND = "not_found"
ERROR = "error"

STARTED_STATUSES = frozenset({"in_progress", "testing", "in_development", "validating"})
PLANNING = "planning"
IN_DEVELOPMENT = "in_development"


@dataclass
class CascadeStep:
    entity_id: str
    entity_type: EntityType
    previous_status: Optional[str]
    new_status: Optional[str]
    changed: bool
    reason: str
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed": self.changed,
            "reason": self.reason,
        }
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class CascadeSummary:
    steps: list[CascadeStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return sum(1 for s in self.steps if s.changed)

    def to_list(self) -> list[dict]:
        return [s.to_dict() for s in self.steps]


class CascadePropagator:

    def __init__(
        self,
        store: EntityStore,
        locks: LockCoordinator,
        checker: Optional[PrerequisiteChecker] = None,
        mode: StatusMode = StatusMode.STRICT,
        settings: Optional[CascadeSettings] = None,
        lock_timeout: float = DEFAULT_CASCADE_LOCK_TIMEOUT,
    ):
        self.store = store
        self.locks = locks
        self.checker = checker or PrerequisiteChecker(store)
        self.mode = mode
        self.settings = settings or CascadeSettings()
        self.lock_timeout = lock_timeout

    def propagate(self, child: WorkItem, session_id: str) -> CascadeSummary:
        """Re-evaluate the ancestors of child after its status changed.

        The caller holds child's lock. Ancestor locks are taken in
        child -> parent order under the same session and released before
        returning. Exceptions never escape; they end the walk with an
        error step and a warning.
        """
        summary = CascadeSummary()
        if not self.settings.enabled:
            return summary

        handles = []
        current = child
        try:
            while current.parent_id and PARENT_TYPE[current.entity_type] is not None:
                parent_type = PARENT_TYPE[current.entity_type]
                parent_id = current.parent_id

                acquired = self.locks.acquire(parent_id, session_id, self.lock_timeout)
                if isinstance(acquired, Busy):
                    logger.warning(
                        f"[CASCADE] {parent_type.value} {parent_id}: lock held by "
                        f"{acquired.holder_session_id}, skipping"
                    )
                    summary.steps.append(CascadeStep(parent_id, parent_type, None, None, False, LOCK_TIMEOUT))
                    summary.warnings.append(f"Cascade skipped {parent_type.value} {parent_id}: lock timeout")
                    break
                handles.append(acquired)

                try:
                    step, parent = self._evaluate(parent_type, parent_id, current, session_id, summary)
                except Exception as e:
                    logger.warning(f"[CASCADE] {parent_type.value} {parent_id}: cascade failed: {e}")
                    summary.steps.append(CascadeStep(parent_id, parent_type, None, None, False, ERROR, str(e)))
                    summary.warnings.append(f"Cascade failed for {parent_type.value} {parent_id}: {e}")
                    break

                summary.steps.append(step)
                if parent is None:
                    break
                current = parent
        finally:
            for handle in reversed(handles):
                self.locks.release(handle)

        return summary

    def _evaluate(
        self,
        parent_type: EntityType,
        parent_id: str,
        child: WorkItem,
        session_id: str,
        summary: CascadeSummary,
    ) -> tuple[CascadeStep, Optional[WorkItem]]:
        result = self.store.get(parent_type, parent_id)
        if result.is_not_found:
            return CascadeStep(parent_id, parent_type, None, None, False, NOT_FOUND), None
        parent = result.unwrap()
        previous = parent.status

        def noop(reason: str, detail: Optional[str] = None) -> tuple[CascadeStep, WorkItem]:
            return CascadeStep(parent.id, parent_type, previous, previous, False, reason, detail), parent

        if is_terminal(previous):
            return noop(ALREADY_TERMINAL)

        children = self.store.children(parent_type, parent.id).unwrap() or []
        if not children:
            return noop(NO_CHILDREN)

        if all(is_terminal(c.status) for c in children):
            return self._complete(parent, session_id, summary)

        if child.status in STARTED_STATUSES and self.settings.start_cascade:
            if previous != PLANNING:
                return noop(ALREADY_AT_TARGET)
            if not is_allowed(parent_type, previous, IN_DEVELOPMENT, self.mode):
                return noop(TRANSITION_NOT_ALLOWED)
            parent = self._apply(parent, IN_DEVELOPMENT, session_id, summary)
            logger.info(f"[CASCADE] {parent_type.value} {parent.id}: {previous} -> {IN_DEVELOPMENT} (first child started)")
            return CascadeStep(parent.id, parent_type, previous, parent.status, True, FIRST_CHILD_STARTED), parent

        return noop(CHILDREN_NOT_TERMINAL)

    def _complete(
        self, parent: WorkItem, session_id: str, summary: CascadeSummary
    ) -> tuple[CascadeStep, WorkItem]:
        """Move parent toward completed, stopping before a blocked completion."""
        entity_type = parent.entity_type
        previous = parent.status

        path = []
        if self.mode == StatusMode.LEGACY and is_allowed(entity_type, previous, COMPLETED, self.mode):
            path = [COMPLETED]
        else:
            status = previous
            while status != COMPLETED:
                hop = next_status(entity_type, status)
                if hop is None or not is_allowed(entity_type, status, hop, self.mode):
                    break
                path.append(hop)
                status = hop

        if not path or path[-1] != COMPLETED:
            return CascadeStep(parent.id, entity_type, previous, previous, False, TRANSITION_NOT_ALLOWED), parent

        reason = ALL_CHILDREN_TERMINAL
        detail = None
        check = self.checker.check(parent, COMPLETED)
        if isinstance(check, Blocked):
            path.pop()
            reason = PREREQUISITES_BLOCKED
            detail = "; ".join(check.reasons)
            # Legacy jumps straight from previous; park at the last status before completion
            if not path and self.mode == StatusMode.LEGACY:
                flow_prev = _status_before_completion(entity_type)
                if flow_prev != previous and is_allowed(entity_type, previous, flow_prev, self.mode):
                    path = [flow_prev]
            logger.warning(f"[CASCADE] {entity_type.value} {parent.id}: completion blocked: {detail}")

        for hop in path:
            parent = self._apply(parent, hop, session_id, summary)

        changed = parent.status != previous
        if changed:
            logger.info(f"[CASCADE] {entity_type.value} {parent.id}: {previous} -> {parent.status} ({reason})")
        return CascadeStep(parent.id, entity_type, previous, parent.status, changed, reason, detail), parent

    def _apply(self, item: WorkItem, target: str, session_id: str, summary: CascadeSummary) -> WorkItem:
        """Persist one status change and record it.

        Raises:
            PersistenceError: if the update fails
        """
        modified_at = next_modified_at(item.modified_at)
        result = self.store.update_status(item.entity_type, item.id, target, modified_at)
        updated = result.unwrap()
        if updated is None:
            raise LookupError(f"{item.entity_type.value} {item.id} disappeared during cascade")

        recorded = self.store.record_transition(TransitionRecord(
            entity_id=item.id,
            entity_type=item.entity_type,
            from_status=item.status,
            to_status=target,
            session_id=session_id,
            trigger=TRIGGER_CASCADE,
            at=modified_at,
        ))
        if not recorded.success:
            summary.warnings.append(f"Could not record cascade history for {item.id}: {recorded.detail}")
        return updated


def _status_before_completion(entity_type: EntityType) -> str:
    flow = FLOWS[entity_type]
    return flow[flow.index(COMPLETED) - 1]
