"""
Shared data types for work items.

Projects, features and tasks are one tagged record (WorkItem) whose
entity_type selects the status enum and the rule tables that apply to it.
Kept in one module so the store, the workflow engine and the CLI share
them without circular imports.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum


class EntityType(Enum):
    """Discriminant for the three levels of the containment hierarchy."""

    PROJECT = "project"
    FEATURE = "feature"
    TASK = "task"


class TaskStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"


class FeatureStatus(Enum):
    PLANNING = "planning"
    IN_DEVELOPMENT = "in_development"
    VALIDATING = "validating"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ProjectStatus(Enum):
    PLANNING = "planning"
    IN_DEVELOPMENT = "in_development"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class DependencyType(Enum):
    """Edge kinds between tasks.

    A BLOCKS B and B IS_BLOCKED_BY A describe the same constraint.
    RELATES_TO is informational and never gates completion.
    """

    BLOCKS = "BLOCKS"
    IS_BLOCKED_BY = "IS_BLOCKED_BY"
    RELATES_TO = "RELATES_TO"


STATUS_ENUMS: dict[EntityType, type[Enum]] = {
    EntityType.TASK: TaskStatus,
    EntityType.FEATURE: FeatureStatus,
    EntityType.PROJECT: ProjectStatus,
}

# Parent type for each level; projects are the root.
PARENT_TYPE: dict[EntityType, EntityType | None] = {
    EntityType.TASK: EntityType.FEATURE,
    EntityType.FEATURE: EntityType.PROJECT,
    EntityType.PROJECT: None,
}

CHILD_TYPE: dict[EntityType, EntityType | None] = {
    EntityType.PROJECT: EntityType.FEATURE,
    EntityType.FEATURE: EntityType.TASK,
    EntityType.TASK: None,
}

COMPLETED = "completed"
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "archived"})

_SEPARATORS = re.compile(r"[\s\-]+")


def statuses_for(entity_type: EntityType) -> list[str]:
    """All legal status values for an entity type, in declaration order."""
    return [s.value for s in STATUS_ENUMS[entity_type]]


def normalize_status(value: str) -> str:
    """Normalize user input: 'In-Progress' and 'in progress' become 'in_progress'."""
    return _SEPARATORS.sub("_", value.strip()).lower()


def parse_status(entity_type: EntityType, value: str | None) -> str | None:
    """Parse a status string for the given entity type.

    Returns None if the value is not part of the type's enum.
    """
    if not value:
        return None
    normalized = normalize_status(value)
    if normalized in statuses_for(entity_type):
        return normalized
    return None


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_modified_at(previous: datetime | None) -> datetime:
    """Timestamp for a mutation, strictly after the previous one."""
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


@dataclass
class WorkItem:
    """A project, feature or task.

    parent_id points at the owning feature (for tasks) or project (for
    features); both are optional. status is always a value of the enum
    selected by entity_type.
    """
    id: str
    entity_type: EntityType
    name: str
    status: str
    requires_verification: bool = False
    parent_id: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    modified_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if parse_status(self.entity_type, self.status) != self.status:
            raise ValueError(
                f"Invalid {self.entity_type.value} status '{self.status}'. "
                f"Allowed: {', '.join(statuses_for(self.entity_type))}"
            )
        if self.entity_type == EntityType.PROJECT and self.parent_id is not None:
            raise ValueError("Projects cannot have a parent")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "name": self.name,
            "status": self.status,
            "requires_verification": self.requires_verification,
            "parent_id": self.parent_id,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
        }


@dataclass
class Dependency:
    """Directed edge between two tasks."""
    id: str
    from_task_id: str
    to_task_id: str
    type: DependencyType = DependencyType.BLOCKS

    def __post_init__(self):
        if self.from_task_id == self.to_task_id:
            raise ValueError("A task cannot depend on itself")


@dataclass
class Section:
    """Free-text content block attached to an entity."""
    id: str
    entity_type: EntityType
    entity_id: str
    title: str
    content: str
    ordinal: int = 0


@dataclass
class TransitionRecord:
    """Audit entry for one persisted status change."""
    entity_id: str
    entity_type: EntityType
    from_status: str
    to_status: str
    session_id: str
    trigger: str  # "manual" or "cascade"
    at: datetime = field(default_factory=utc_now)
    summary: str | None = None

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "session_id": self.session_id,
            "trigger": self.trigger,
            "at": self.at.isoformat(),
            "summary": self.summary,
        }
