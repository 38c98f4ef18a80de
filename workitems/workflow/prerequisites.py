"""Completion prerequisite checks.

Moving an entity to completed can be blocked by:
1. A missing or failing Verification section
2. For tasks: blockers that are not completed or cancelled
3. For features and projects: children that are not terminal

The checks only apply to entities with requires_verification set, and
only to completion. Abandonment (cancelled, archived, deferred) is never
gated. All failing checks are reported together.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from workitems.lib.types import COMPLETED, EntityType, WorkItem, is_terminal
from workitems.store.base import EntityStore
from workitems.workflow.dependencies import DependencyGraphReader
from workitems.workflow.verification import VerificationGate

logger = logging.getLogger(__name__)

CHILD_LABEL = {
    EntityType.FEATURE: "tasks",
    EntityType.PROJECT: "features",
}


@dataclass(frozen=True)
class Allowed:
    allowed = True


@dataclass
class Blocked:
    reasons: list[str]
    blocking_task_ids: list[str] = field(default_factory=list)
    failing_criteria: list[str] = field(default_factory=list)
    non_terminal_children: list[str] = field(default_factory=list)
    allowed = False

    def to_detail(self) -> dict:
        return {
            "reasons": list(self.reasons),
            "blocking_task_ids": list(self.blocking_task_ids),
            "failing_criteria": list(self.failing_criteria),
            "non_terminal_children": list(self.non_terminal_children),
        }


PrerequisiteResult = Union[Allowed, Blocked]


class PrerequisiteChecker:
    """Decides whether an entity may move to completed.

    Store failures propagate as PersistenceError.
    """

    def __init__(
        self,
        store: EntityStore,
        gate: Optional[VerificationGate] = None,
        graph: Optional[DependencyGraphReader] = None,
    ):
        self.store = store
        self.gate = gate or VerificationGate(store)
        self.graph = graph or DependencyGraphReader(store)

    def check(self, item: WorkItem, target: str) -> PrerequisiteResult:
        if target != COMPLETED:
            return Allowed()
        if not item.requires_verification:
            return Allowed()

        blocked = Blocked(reasons=[])

        gate = self.gate.evaluate(item)
        if not gate.passed:
            blocked.reasons.append(gate.reason)
            blocked.failing_criteria.extend(gate.failing_criteria)

        if item.entity_type == EntityType.TASK:
            blockers = self.graph.unresolved_blockers(item.id)
            if blockers:
                blocked.blocking_task_ids.extend(blockers)
                blocked.reasons.append(
                    f"Blocked by {len(blockers)} incomplete task(s): {', '.join(blockers)}"
                )
        else:
            self._check_children(item, blocked)

        if blocked.reasons:
            logger.info(f"[GATE] {item.entity_type.value} {item.id}: completion blocked ({len(blocked.reasons)} reason(s))")
            return blocked
        return Allowed()

    def _check_children(self, item: WorkItem, blocked: Blocked) -> None:
        label = CHILD_LABEL[item.entity_type]
        children = self.store.children(item.entity_type, item.id).unwrap() or []
        if not children:
            blocked.reasons.append(f"{item.entity_type.value.capitalize()} has no {label}")
            return
        pending = [c.id for c in children if not is_terminal(c.status)]
        if pending:
            blocked.non_terminal_children.extend(pending)
            blocked.reasons.append(
                f"{len(pending)} of {len(children)} {label} are not in a terminal status"
            )
