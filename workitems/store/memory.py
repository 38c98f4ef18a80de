"""
Process-local entity store.

Used by tests and single-shot runs. Records are copied on the way in and
out so callers never share mutable state with the store.
"""

import threading
from dataclasses import replace
from datetime import datetime

from workitems.lib.types import (
    CHILD_TYPE,
    Dependency,
    EntityType,
    Section,
    TransitionRecord,
    WorkItem,
)
from workitems.store.base import EntityStore, Result


def _copy(item: WorkItem) -> WorkItem:
    return replace(item, tags=list(item.tags))


class MemoryStore(EntityStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._items: dict[str, WorkItem] = {}
        self._dependencies: list[Dependency] = []
        self._sections: list[Section] = []
        self._history: list[TransitionRecord] = []

    def get(self, entity_type: EntityType, entity_id: str) -> Result[WorkItem]:
        with self._lock:
            item = self._items.get(entity_id)
            if item is None or item.entity_type != entity_type:
                return Result.not_found(f"{entity_type.value} {entity_id} not found")
            return Result.ok(_copy(item))

    def find(self, entity_id: str) -> Result[WorkItem]:
        with self._lock:
            item = self._items.get(entity_id)
            if item is None:
                return Result.not_found(f"Entity {entity_id} not found")
            return Result.ok(_copy(item))

    def update_status(
        self, entity_type: EntityType, entity_id: str, status: str, modified_at: datetime
    ) -> Result[WorkItem]:
        with self._lock:
            item = self._items.get(entity_id)
            if item is None or item.entity_type != entity_type:
                return Result.not_found(f"{entity_type.value} {entity_id} not found")
            try:
                updated = replace(item, status=status, modified_at=modified_at)
            except ValueError as e:
                return Result.fail(str(e))
            self._items[entity_id] = updated
            return Result.ok(_copy(updated))

    def children(self, entity_type: EntityType, parent_id: str) -> Result[list[WorkItem]]:
        child_type = CHILD_TYPE[entity_type]
        with self._lock:
            return Result.ok([
                _copy(item) for item in self._items.values()
                if item.entity_type == child_type and item.parent_id == parent_id
            ])

    def list_projects(self) -> Result[list[WorkItem]]:
        with self._lock:
            return Result.ok([
                _copy(item) for item in self._items.values()
                if item.entity_type == EntityType.PROJECT
            ])

    def incoming_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        with self._lock:
            return Result.ok([replace(d) for d in self._dependencies if d.to_task_id == task_id])

    def outgoing_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        with self._lock:
            return Result.ok([replace(d) for d in self._dependencies if d.from_task_id == task_id])

    def sections(self, entity_type: EntityType, entity_id: str) -> Result[list[Section]]:
        with self._lock:
            found = [
                replace(s) for s in self._sections
                if s.entity_type == entity_type and s.entity_id == entity_id
            ]
        return Result.ok(sorted(found, key=lambda s: s.ordinal))

    def record_transition(self, record: TransitionRecord) -> Result[None]:
        with self._lock:
            self._history.append(replace(record))
        return Result.ok()

    def history(self, entity_id: str) -> Result[list[TransitionRecord]]:
        with self._lock:
            return Result.ok([replace(r) for r in self._history if r.entity_id == entity_id])

    def _insert_item(self, item: WorkItem) -> Result[WorkItem]:
        with self._lock:
            if item.id in self._items:
                return Result.fail(f"Duplicate id {item.id}")
            self._items[item.id] = _copy(item)
        return Result.ok(_copy(item))

    def _insert_dependency(self, dep: Dependency) -> Result[Dependency]:
        with self._lock:
            self._dependencies.append(replace(dep))
        return Result.ok(dep)

    def _save_section(self, section: Section) -> Result[Section]:
        with self._lock:
            self._sections = [
                s for s in self._sections
                if not (
                    s.entity_type == section.entity_type
                    and s.entity_id == section.entity_id
                    and s.title.lower() == section.title.lower()
                )
            ]
            self._sections.append(replace(section))
        return Result.ok(section)
