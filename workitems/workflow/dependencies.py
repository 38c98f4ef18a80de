"""
Read-side view of the task dependency graph.

Edges are stored in either direction: A BLOCKS B and B IS_BLOCKED_BY A
are the same constraint. This module normalizes both into "blockers of B"
and "tasks blocked by A". RELATES_TO edges are ignored.
"""

import logging

from workitems.lib.types import DependencyType, EntityType
from workitems.store.base import EntityStore

logger = logging.getLogger(__name__)

# A blocker in one of these statuses no longer blocks
RESOLVED_STATUSES = frozenset({"completed", "cancelled"})


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class DependencyGraphReader:

    def __init__(self, store: EntityStore):
        self.store = store

    def blockers_of(self, task_id: str) -> list[str]:
        """Ids of tasks that block task_id, in edge order.

        Raises:
            PersistenceError: on a store failure
        """
        incoming = self.store.incoming_dependencies(task_id).unwrap() or []
        outgoing = self.store.outgoing_dependencies(task_id).unwrap() or []
        ids = [d.from_task_id for d in incoming if d.type == DependencyType.BLOCKS]
        ids += [d.to_task_id for d in outgoing if d.type == DependencyType.IS_BLOCKED_BY]
        return _unique(ids)

    def blocked_by(self, task_id: str) -> list[str]:
        """Ids of tasks that task_id blocks."""
        outgoing = self.store.outgoing_dependencies(task_id).unwrap() or []
        incoming = self.store.incoming_dependencies(task_id).unwrap() or []
        ids = [d.to_task_id for d in outgoing if d.type == DependencyType.BLOCKS]
        ids += [d.from_task_id for d in incoming if d.type == DependencyType.IS_BLOCKED_BY]
        return _unique(ids)

    def unresolved_blockers(self, task_id: str) -> list[str]:
        """Blockers of task_id that are not completed or cancelled.

        A blocker id that no longer resolves is skipped.
        """
        unresolved = []
        for blocker_id in self.blockers_of(task_id):
            result = self.store.get(EntityType.TASK, blocker_id)
            if result.is_not_found:
                logger.warning(f"[GATE] task {task_id}: blocker {blocker_id} not found, ignoring")
                continue
            blocker = result.unwrap()
            if blocker.status not in RESOLVED_STATUSES:
                unresolved.append(blocker_id)
        return unresolved

    def newly_unblocked(self, task_id: str) -> list[str]:
        """Downstream tasks of task_id whose blockers are now all resolved.

        Downstream tasks that are already terminal are not reported.
        """
        unblocked = []
        for dependent_id in self.blocked_by(task_id):
            result = self.store.get(EntityType.TASK, dependent_id)
            if not result.success:
                result.unwrap()
                continue
            if result.value.status in RESOLVED_STATUSES:
                continue
            if not self.unresolved_blockers(dependent_id):
                unblocked.append(dependent_id)
        return unblocked
