"""Status transition rules per entity type.

Pure functions over the tables in fsm.py:
- is_allowed() / check_transition() decide whether current -> target is legal
- trigger_for() resolves a named trigger to its destination status
- next_status() recommends the next forward status

Usage:
    from workitems.workflow.state_machine import check_transition

    check_transition(EntityType.TASK, "pending", "completed", StatusMode.STRICT)
    # raises TransitionError
"""

from typing import Optional

from workitems.lib.constants import StatusMode
from workitems.lib.errors import TransitionError
from workitems.lib.types import EntityType, is_terminal, statuses_for
from workitems.workflow.fsm import FLOWS, TRIGGER_FOR, EntityFSM


def _is_forward_jump(entity_type: EntityType, current: str, target: str) -> bool:
    flow = FLOWS[entity_type]
    if current not in flow or target not in flow:
        return False
    return flow.index(target) > flow.index(current)


def is_allowed(entity_type: EntityType, current: str, target: str, mode: StatusMode = StatusMode.STRICT) -> bool:
    """Check whether current -> target is legal for the entity type.

    Self-transition is always allowed. Terminal statuses have no outgoing
    edges in either mode.
    """
    if current == target:
        return True
    valid = statuses_for(entity_type)
    if current not in valid or target not in valid:
        return False
    if is_terminal(current):
        return False
    if (current, target) in TRIGGER_FOR[entity_type]:
        return True
    return mode == StatusMode.LEGACY and _is_forward_jump(entity_type, current, target)


def check_transition(
    entity_type: EntityType,
    current: str,
    target: str,
    mode: StatusMode = StatusMode.STRICT,
    entity_id: str = "",
) -> None:
    """Validate a transition.

    Raises:
        TransitionError: If the transition is not allowed
    """
    if not is_allowed(entity_type, current, target, mode):
        raise TransitionError(entity_type, current, target, entity_id)


def allowed_targets(entity_type: EntityType, current: str, mode: StatusMode = StatusMode.STRICT) -> list[str]:
    """Statuses reachable from current in one step, excluding current itself."""
    return [
        s for s in statuses_for(entity_type)
        if s != current and is_allowed(entity_type, current, s, mode)
    ]


def trigger_for(entity_type: EntityType, current: str, trigger: str) -> Optional[str]:
    """Destination of a named trigger from current, or None if it does not apply."""
    if current not in statuses_for(entity_type):
        return None
    return EntityFSM(entity_type, current).target_of(trigger)


def available_triggers(entity_type: EntityType, current: str) -> list[str]:
    if current not in statuses_for(entity_type):
        return []
    return EntityFSM(entity_type, current).get_available_triggers()


def next_status(entity_type: EntityType, current: str) -> Optional[str]:
    """Next forward status in the lifecycle, or None at the end.

    A deferred task resumes to pending.
    """
    if is_terminal(current):
        return None
    flow = FLOWS[entity_type]
    if current in flow:
        idx = flow.index(current)
        return flow[idx + 1] if idx + 1 < len(flow) else None
    if entity_type == EntityType.TASK and current == "deferred":
        return "pending"
    return None
