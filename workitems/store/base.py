"""
Entity store contract.

Every store operation returns a Result instead of raising for expected
failures. Result.unwrap() turns a database failure into PersistenceError
so callers that prefer exceptions can opt in.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from workitems.lib.errors import PersistenceError
from workitems.lib.types import (
    CHILD_TYPE,
    Dependency,
    DependencyType,
    EntityType,
    Section,
    TransitionRecord,
    WorkItem,
    parse_status,
)

T = TypeVar("T")

OK = "ok"
NOT_FOUND = "not_found"
ERROR = "error"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a store call: a value, a missing record, or a failure."""
    code: str
    value: Optional[T] = None
    detail: str = ""

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(OK, value)

    @classmethod
    def not_found(cls, detail: str) -> "Result":
        return cls(NOT_FOUND, None, detail)

    @classmethod
    def fail(cls, detail: str) -> "Result":
        return cls(ERROR, None, detail)

    @property
    def success(self) -> bool:
        return self.code == OK

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND

    def unwrap(self) -> Optional[T]:
        """Return the value, None for a missing record.

        Raises:
            PersistenceError: if the store call failed
        """
        if self.code == ERROR:
            raise PersistenceError(self.detail)
        return self.value


def new_id() -> str:
    return str(uuid.uuid4())


class EntityStore(ABC):
    """Persistence for work items, dependencies, sections and history.

    Subclasses implement the primitive reads and writes; the creation
    helpers here validate input and build the records.
    """

    @abstractmethod
    def get(self, entity_type: EntityType, entity_id: str) -> Result[WorkItem]:
        ...

    @abstractmethod
    def find(self, entity_id: str) -> Result[WorkItem]:
        """Look an id up across all entity types."""

    @abstractmethod
    def update_status(
        self, entity_type: EntityType, entity_id: str, status: str, modified_at: datetime
    ) -> Result[WorkItem]:
        ...

    @abstractmethod
    def children(self, entity_type: EntityType, parent_id: str) -> Result[list[WorkItem]]:
        """Direct children of a project (features) or feature (tasks)."""

    @abstractmethod
    def list_projects(self) -> Result[list[WorkItem]]:
        ...

    @abstractmethod
    def incoming_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        """Raw edges whose to_task_id is task_id."""

    @abstractmethod
    def outgoing_dependencies(self, task_id: str) -> Result[list[Dependency]]:
        """Raw edges whose from_task_id is task_id."""

    @abstractmethod
    def sections(self, entity_type: EntityType, entity_id: str) -> Result[list[Section]]:
        ...

    @abstractmethod
    def record_transition(self, record: TransitionRecord) -> Result[None]:
        ...

    @abstractmethod
    def history(self, entity_id: str) -> Result[list[TransitionRecord]]:
        """Transition records for an entity, oldest first."""

    @abstractmethod
    def _insert_item(self, item: WorkItem) -> Result[WorkItem]:
        ...

    @abstractmethod
    def _insert_dependency(self, dep: Dependency) -> Result[Dependency]:
        ...

    @abstractmethod
    def _save_section(self, section: Section) -> Result[Section]:
        """Insert the section, replacing one with the same title on the same entity."""

    def add_project(
        self,
        name: str,
        *,
        status: str = "planning",
        requires_verification: bool = False,
        tags: Optional[list[str]] = None,
        entity_id: Optional[str] = None,
    ) -> Result[WorkItem]:
        return self._add(EntityType.PROJECT, name, None, status, requires_verification, tags, entity_id)

    def add_feature(
        self,
        name: str,
        project_id: Optional[str] = None,
        *,
        status: str = "planning",
        requires_verification: bool = False,
        tags: Optional[list[str]] = None,
        entity_id: Optional[str] = None,
    ) -> Result[WorkItem]:
        return self._add(EntityType.FEATURE, name, project_id, status, requires_verification, tags, entity_id)

    def add_task(
        self,
        title: str,
        feature_id: Optional[str] = None,
        *,
        status: str = "pending",
        requires_verification: bool = False,
        tags: Optional[list[str]] = None,
        entity_id: Optional[str] = None,
    ) -> Result[WorkItem]:
        return self._add(EntityType.TASK, title, feature_id, status, requires_verification, tags, entity_id)

    def _add(self, entity_type, name, parent_id, status, requires_verification, tags, entity_id):
        parsed = parse_status(entity_type, status)
        if parsed is None:
            return Result.fail(f"Invalid {entity_type.value} status '{status}'")

        if parent_id is not None:
            parent_type = next(t for t, c in CHILD_TYPE.items() if c == entity_type)
            parent = self.get(parent_type, parent_id)
            if not parent.success:
                return parent

        item = WorkItem(
            id=entity_id or new_id(),
            entity_type=entity_type,
            name=name,
            status=parsed,
            requires_verification=requires_verification,
            parent_id=parent_id,
            tags=list(tags or []),
        )
        return self._insert_item(item)

    def add_dependency(
        self,
        from_task_id: str,
        to_task_id: str,
        dep_type: DependencyType = DependencyType.BLOCKS,
    ) -> Result[Dependency]:
        """Add an edge between two tasks.

        Blocking edges that would close a cycle are refused, since the
        tasks on a cycle could never complete.
        """
        if from_task_id == to_task_id:
            return Result.fail("A task cannot depend on itself")
        for task_id in (from_task_id, to_task_id):
            found = self.get(EntityType.TASK, task_id)
            if not found.success:
                return found

        if dep_type != DependencyType.RELATES_TO:
            if dep_type == DependencyType.BLOCKS:
                blocker, blocked = from_task_id, to_task_id
            else:
                blocker, blocked = to_task_id, from_task_id
            try:
                cycle = self._reaches(blocked, blocker)
            except PersistenceError as e:
                return Result.fail(str(e))
            if cycle:
                return Result.fail(
                    f"Dependency {from_task_id} -> {to_task_id} would create a circular dependency"
                )

        return self._insert_dependency(Dependency(new_id(), from_task_id, to_task_id, dep_type))

    def _blocked_by(self, task_id: str) -> list[str]:
        """Tasks that task_id blocks, over both edge directions."""
        outgoing = self.outgoing_dependencies(task_id).unwrap() or []
        incoming = self.incoming_dependencies(task_id).unwrap() or []
        ids = [d.to_task_id for d in outgoing if d.type == DependencyType.BLOCKS]
        ids += [d.from_task_id for d in incoming if d.type == DependencyType.IS_BLOCKED_BY]
        return ids

    def _reaches(self, start: str, target: str) -> bool:
        """True if target is downstream of start along blocking edges."""
        seen = {start}
        stack = [start]
        while stack:
            for next_id in self._blocked_by(stack.pop()):
                if next_id == target:
                    return True
                if next_id not in seen:
                    seen.add(next_id)
                    stack.append(next_id)
        return False

    def upsert_section(
        self,
        entity_type: EntityType,
        entity_id: str,
        title: str,
        content: str,
        ordinal: int = 0,
    ) -> Result[Section]:
        found = self.get(entity_type, entity_id)
        if not found.success:
            return found
        return self._save_section(Section(new_id(), entity_type, entity_id, title, content, ordinal))
