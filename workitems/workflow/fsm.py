"""Work item state machines using the transitions library.

One fixed transition table per entity type. Each edge has a named
trigger, so callers can either ask for a destination status ("completed")
or fire an action ("complete") and let the machine resolve it.

Usage:
    from workitems.workflow.fsm import EntityFSM

    fsm = EntityFSM(EntityType.TASK, "testing")
    fsm.target_of("complete")  # "completed"
    fsm.get_available_triggers()  # ["rework", "complete", "cancel", "defer"]
"""

from typing import Optional

from transitions import Machine

from workitems.lib.types import EntityType, TERMINAL_STATUSES, statuses_for


# Forward lifecycle per type. Legacy mode allows any jump along this path.
FLOWS: dict[EntityType, list[str]] = {
    EntityType.TASK: ["pending", "in_progress", "testing", "completed"],
    EntityType.FEATURE: ["planning", "in_development", "validating", "completed"],
    EntityType.PROJECT: ["planning", "in_development", "completed"],
}


def _escapes(entity_type: EntityType, trigger: str, dest: str) -> list[dict]:
    """Escape edge from every non-terminal status to dest."""
    return [
        {"trigger": trigger, "source": status, "dest": dest}
        for status in statuses_for(entity_type)
        if status not in TERMINAL_STATUSES and status != dest
    ]


TASK_TRANSITIONS = [
    {"trigger": "start", "source": "pending", "dest": "in_progress"},
    {"trigger": "unstart", "source": "in_progress", "dest": "pending"},
    {"trigger": "submit", "source": "in_progress", "dest": "testing"},
    {"trigger": "rework", "source": "testing", "dest": "in_progress"},
    {"trigger": "complete", "source": "testing", "dest": "completed"},
    {"trigger": "resume", "source": "deferred", "dest": "pending"},
] + _escapes(EntityType.TASK, "cancel", "cancelled") + _escapes(EntityType.TASK, "defer", "deferred")

FEATURE_TRANSITIONS = [
    {"trigger": "start", "source": "planning", "dest": "in_development"},
    {"trigger": "validate", "source": "in_development", "dest": "validating"},
    {"trigger": "rework", "source": "validating", "dest": "in_development"},
    {"trigger": "complete", "source": "validating", "dest": "completed"},
] + _escapes(EntityType.FEATURE, "archive", "archived")

PROJECT_TRANSITIONS = [
    {"trigger": "start", "source": "planning", "dest": "in_development"},
    {"trigger": "complete", "source": "in_development", "dest": "completed"},
] + _escapes(EntityType.PROJECT, "archive", "archived")

TRANSITIONS: dict[EntityType, list[dict]] = {
    EntityType.TASK: TASK_TRANSITIONS,
    EntityType.FEATURE: FEATURE_TRANSITIONS,
    EntityType.PROJECT: PROJECT_TRANSITIONS,
}


# Pre-computed lookup: entity type -> (source, dest) -> trigger name
def _build_trigger_lookup() -> dict[EntityType, dict[tuple[str, str], str]]:
    lookup: dict[EntityType, dict[tuple[str, str], str]] = {}
    for entity_type, transitions in TRANSITIONS.items():
        table = lookup.setdefault(entity_type, {})
        for t in transitions:
            table.setdefault((t["source"], t["dest"]), t["trigger"])
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class EntityFSM:
    """State machine view of one entity's status, used to resolve triggers.

    Nothing is persisted here; the orchestrator decides whether a resolved
    transition is written.
    """

    def __init__(self, entity_type: EntityType, status: str, entity_id: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id

        if status not in statuses_for(entity_type):
            raise ValueError(f"Unknown {entity_type.value} status '{status}'")

        self.machine = Machine(
            model=self,
            states=statuses_for(entity_type),
            transitions=TRANSITIONS[entity_type],
            initial=status,
            auto_transitions=False,  # Only explicit transitions
        )

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)

    def target_of(self, trigger: str) -> Optional[str]:
        """Destination status of a trigger from the current state, or None."""
        if not self.can(trigger):
            return None
        return self.machine.get_transitions(trigger=trigger, source=self.state)[0].dest
