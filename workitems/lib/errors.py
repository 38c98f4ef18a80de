"""
Exception types for work items.

Only faults that are not part of normal operation are raised. Expected
outcomes such as "not found", "illegal transition" or "completion blocked"
travel as result values instead (see workflow.engine).
"""

from workitems.lib.types import EntityType


class WorkItemsError(Exception):
    """Base class for all work item errors."""


class TransitionError(WorkItemsError):
    """Raised when a status change is not permitted by the transition table."""

    def __init__(self, entity_type: EntityType, from_status: str, to_status: str, entity_id: str = ""):
        self.entity_type = entity_type
        self.from_status = from_status
        self.to_status = to_status
        self.entity_id = entity_id
        super().__init__(
            f"Invalid {entity_type.value} transition: {from_status} -> {to_status}"
            + (f" ({entity_type.value}: {entity_id})" if entity_id else "")
        )


class PersistenceError(WorkItemsError):
    """The entity store failed for a reason other than a missing record."""


class ConfigError(WorkItemsError):
    """Configuration file could not be read or parsed."""
