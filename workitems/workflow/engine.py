"""Status transition orchestration.

Every status change goes through StatusTransitionOrchestrator.transition():

    lock -> load -> transition table -> prerequisites (completion only)
         -> persist -> cascade to ancestors -> release

Expected failures (unknown id, illegal edge, blocked completion, busy
lock) come back as TransitionFailure values. Store failures and bugs are
caught at the outermost boundary, logged, and converted too, so callers
never see a raw exception.

transition_status() is the dict-shaped contract used by the CLI and the
MCP tools.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from workitems.lib.config import Config
from workitems.lib.constants import DEFAULT_DATABASE_PATH, TRIGGER_MANUAL
from workitems.lib.errors import PersistenceError, TransitionError
from workitems.lib.types import (
    COMPLETED,
    EntityType,
    TransitionRecord,
    is_terminal,
    next_modified_at,
    parse_status,
    statuses_for,
)
from workitems.runner.locking import Busy, LockCoordinator
from workitems.store.base import EntityStore
from workitems.workflow.cascade import CascadePropagator, CascadeSummary
from workitems.workflow.dependencies import DependencyGraphReader
from workitems.workflow.fsm import TRIGGER_FOR
from workitems.workflow.prerequisites import Blocked, PrerequisiteChecker
from workitems.workflow.state_machine import (
    allowed_targets,
    available_triggers,
    check_transition,
    next_status,
    trigger_for,
)

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    BLOCKED = "blocked"
    LOCK_TIMEOUT = "lock_timeout"
    PERSISTENCE_ERROR = "persistence_error"
    INTERNAL_ERROR = "internal_error"


ERROR_CODES = {
    FailureKind.NOT_FOUND: "RESOURCE_NOT_FOUND",
    FailureKind.INVALID_TRANSITION: "VALIDATION_ERROR",
    FailureKind.BLOCKED: "VALIDATION_ERROR",
    FailureKind.LOCK_TIMEOUT: "LOCK_TIMEOUT",
    FailureKind.PERSISTENCE_ERROR: "DATABASE_ERROR",
    FailureKind.INTERNAL_ERROR: "INTERNAL_ERROR",
}


@dataclass
class TransitionSuccess:
    entity_id: str
    entity_type: EntityType
    previous_status: str
    status: str
    modified_at: datetime
    cascade: CascadeSummary = field(default_factory=CascadeSummary)
    unblocked_tasks: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    changed: bool = True
    success = True

    def to_dict(self) -> dict:
        data = {
            "success": True,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "previous_status": self.previous_status,
            "status": self.status,
            "modified_at": self.modified_at.isoformat(),
            "changed": self.changed,
        }
        if self.cascade.steps:
            data["cascade"] = self.cascade.to_list()
        if self.unblocked_tasks:
            data["unblocked_tasks"] = list(self.unblocked_tasks)
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


@dataclass
class TransitionFailure:
    kind: FailureKind
    detail: Union[str, dict]
    entity_id: str
    entity_type: Optional[EntityType] = None
    status: Optional[str] = None
    success = False

    @property
    def error_code(self) -> str:
        return ERROR_CODES[self.kind]

    def to_dict(self) -> dict:
        data = {
            "success": False,
            "entity_id": self.entity_id,
            "error_code": self.error_code,
            "error_detail": self.detail,
        }
        if self.entity_type is not None:
            data["entity_type"] = self.entity_type.value
        if self.status is not None:
            data["status"] = self.status
        return data


TransitionOutcome = Union[TransitionSuccess, TransitionFailure]


@dataclass
class TransitionRequest:
    entity_id: str
    status: Optional[str] = None
    trigger: Optional[str] = None
    summary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TransitionRequest":
        return cls(
            entity_id=str(data.get("entity_id") or ""),
            status=data.get("status"),
            trigger=data.get("trigger"),
            summary=data.get("summary"),
        )


class StatusTransitionOrchestrator:
    """Sequences a status change under the entity's lock."""

    def __init__(
        self,
        store: EntityStore,
        locks: Optional[LockCoordinator] = None,
        config: Optional[Config] = None,
        checker: Optional[PrerequisiteChecker] = None,
        cascade: Optional[CascadePropagator] = None,
    ):
        self.store = store
        self.config = config or Config(database_path=Path(DEFAULT_DATABASE_PATH))
        settings = self.config.locking
        self.locks = locks or LockCoordinator(
            enabled=settings.enabled, ttl=settings.ttl, policy=settings.policy
        )
        self.mode = self.config.status_mode
        self.graph = DependencyGraphReader(store)
        self.checker = checker or PrerequisiteChecker(store, graph=self.graph)
        self.cascade = cascade or CascadePropagator(
            store,
            self.locks,
            checker=self.checker,
            mode=self.mode,
            settings=self.config.cascade,
            lock_timeout=settings.cascade_timeout,
        )

    def transition(
        self,
        entity_id: str,
        requested_status: Optional[str] = None,
        *,
        trigger: Optional[str] = None,
        session_id: Optional[str] = None,
        summary: Optional[str] = None,
    ) -> TransitionOutcome:
        """Move an entity to requested_status, or along a named trigger.

        Args:
            entity_id: Project, feature or task id
            requested_status: Target status (normalized, so "In-Progress" works)
            trigger: Named action such as "start" or "complete"; used when
                requested_status is not given
            session_id: Lock owner; a fresh one is generated if omitted
            summary: Free-text note stored with the transition record
        """
        session_id = session_id or str(uuid.uuid4())
        handle = None
        try:
            acquired = self.locks.acquire(entity_id, session_id, self.config.locking.timeout)
            if isinstance(acquired, Busy):
                logger.warning(f"[STATE] {entity_id}: lock held by {acquired.holder_session_id}")
                return TransitionFailure(
                    FailureKind.LOCK_TIMEOUT,
                    f"Entity {entity_id} is locked by another session; retry later",
                    entity_id,
                )
            handle = acquired
            return self._transition_locked(entity_id, requested_status, trigger, session_id, summary)
        except PersistenceError as e:
            logger.exception(f"[STATE] {entity_id}: store failure during transition")
            return TransitionFailure(FailureKind.PERSISTENCE_ERROR, str(e), entity_id)
        except Exception as e:
            logger.exception(f"[STATE] {entity_id}: unexpected error during transition")
            return TransitionFailure(FailureKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}", entity_id)
        finally:
            if handle is not None:
                self.locks.release(handle)

    def _transition_locked(
        self,
        entity_id: str,
        requested_status: Optional[str],
        trigger: Optional[str],
        session_id: str,
        summary: Optional[str],
    ) -> TransitionOutcome:
        found = self.store.find(entity_id)
        if found.is_not_found:
            return TransitionFailure(FailureKind.NOT_FOUND, f"Entity {entity_id} not found", entity_id)
        item = found.unwrap()
        entity_type = item.entity_type
        current = item.status

        def invalid(detail) -> TransitionFailure:
            return TransitionFailure(FailureKind.INVALID_TRANSITION, detail, entity_id, entity_type, current)

        target = self._resolve_target(entity_type, current, requested_status, trigger)
        if isinstance(target, TransitionFailure):
            target.entity_id = entity_id
            return target

        if target == current:
            logger.debug(f"[STATE] {entity_type.value} {entity_id}: already {current}, no-op")
            return TransitionSuccess(entity_id, entity_type, current, current, item.modified_at, changed=False)

        try:
            check_transition(entity_type, current, target, self.mode, entity_id)
        except TransitionError as e:
            return invalid({
                "message": str(e),
                "allowed_transitions": allowed_targets(entity_type, current, self.mode),
            })

        prerequisites = self.checker.check(item, target)
        if isinstance(prerequisites, Blocked):
            detail = prerequisites.to_detail()
            detail["message"] = (
                f"Cannot complete {entity_type.value}: " + "; ".join(prerequisites.reasons)
            )
            return TransitionFailure(FailureKind.BLOCKED, detail, entity_id, entity_type, current)

        modified_at = next_modified_at(item.modified_at)
        updated_result = self.store.update_status(entity_type, entity_id, target, modified_at)
        if updated_result.is_not_found:
            return TransitionFailure(FailureKind.NOT_FOUND, f"Entity {entity_id} not found", entity_id)
        updated = updated_result.unwrap()
        logger.info(f"[STATE] {entity_type.value} {entity_id}: {current} -> {target}")

        warnings: list[str] = []
        recorded = self.store.record_transition(TransitionRecord(
            entity_id=entity_id,
            entity_type=entity_type,
            from_status=current,
            to_status=target,
            session_id=session_id,
            trigger=TRIGGER_MANUAL,
            at=modified_at,
            summary=summary,
        ))
        if not recorded.success:
            logger.warning(f"[STATE] {entity_id}: could not record transition: {recorded.detail}")
            warnings.append(f"Transition history not recorded: {recorded.detail}")

        try:
            cascade = self.cascade.propagate(updated, session_id)
        except Exception as e:
            logger.warning(f"[CASCADE] {entity_id}: cascade failed: {e}")
            cascade = CascadeSummary(warnings=[f"Cascade failed: {e}"])
        warnings.extend(cascade.warnings)

        unblocked: list[str] = []
        if entity_type == EntityType.TASK and is_terminal(target):
            try:
                unblocked = self.graph.newly_unblocked(entity_id)
            except Exception as e:
                logger.warning(f"[STATE] {entity_id}: could not compute unblocked tasks: {e}")
                warnings.append(f"Unblocked tasks not computed: {e}")

        return TransitionSuccess(
            entity_id=entity_id,
            entity_type=entity_type,
            previous_status=current,
            status=updated.status,
            modified_at=updated.modified_at,
            cascade=cascade,
            unblocked_tasks=unblocked,
            warnings=warnings,
        )

    def _resolve_target(
        self,
        entity_type: EntityType,
        current: str,
        requested_status: Optional[str],
        trigger: Optional[str],
    ) -> Union[str, TransitionFailure]:
        def invalid(message: str) -> TransitionFailure:
            return TransitionFailure(FailureKind.INVALID_TRANSITION, message, "", entity_type, current)

        for name, value in (("status", requested_status), ("trigger", trigger)):
            if value is not None and not isinstance(value, str):
                return invalid(f"{name} must be a string, got {type(value).__name__}")

        target = None
        if requested_status is not None:
            target = parse_status(entity_type, requested_status)
            if target is None:
                return invalid(
                    f"Unknown {entity_type.value} status '{requested_status}'. "
                    f"Allowed: {', '.join(statuses_for(entity_type))}"
                )

        if trigger is not None:
            resolved = trigger_for(entity_type, current, trigger.strip().lower())
            if resolved is None:
                triggers = available_triggers(entity_type, current)
                return invalid(
                    f"Trigger '{trigger}' does not apply to {entity_type.value} in status {current}. "
                    f"Available: {', '.join(triggers) or 'none'}"
                )
            if target is not None and target != resolved:
                return invalid(f"Trigger '{trigger}' leads to {resolved}, not {target}")
            target = resolved

        if target is None:
            return invalid("Either a target status or a trigger is required")
        return target

    def transition_status(
        self, entity_id: str, requested_status: str, session_id: Optional[str] = None
    ) -> dict:
        """Dict-shaped transition result for tool callers."""
        return self.transition(entity_id, requested_status, session_id=session_id).to_dict()

    def transition_many(
        self, requests: list[Union[TransitionRequest, dict]], session_id: Optional[str] = None
    ) -> dict:
        """Apply transitions one after another, each under its own lock.

        One failing item does not stop the batch.
        """
        results = []
        succeeded = 0
        cascades_applied = 0
        for raw in requests:
            if not isinstance(raw, (TransitionRequest, dict)):
                results.append(TransitionFailure(
                    FailureKind.INVALID_TRANSITION, "each transition must be an object", ""
                ).to_dict())
                continue
            request = raw if isinstance(raw, TransitionRequest) else TransitionRequest.from_dict(raw)
            if not request.entity_id:
                results.append(TransitionFailure(
                    FailureKind.INVALID_TRANSITION, "entity_id is required", ""
                ).to_dict())
                continue
            outcome = self.transition(
                request.entity_id,
                request.status,
                trigger=request.trigger,
                session_id=session_id,
                summary=request.summary,
            )
            if outcome.success:
                succeeded += 1
                cascades_applied += outcome.cascade.applied
            results.append(outcome.to_dict())

        return {
            "results": results,
            "summary": {
                "total": len(results),
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
                "cascades_applied": cascades_applied,
            },
        }

    def next_status(self, entity_id: str) -> dict:
        """Recommend the next forward status for an entity. Read-only."""
        try:
            found = self.store.find(entity_id)
            if found.is_not_found:
                return TransitionFailure(FailureKind.NOT_FOUND, f"Entity {entity_id} not found", entity_id).to_dict()
            item = found.unwrap()
            recommended = next_status(item.entity_type, item.status)

            data: dict[str, Any] = {
                "success": True,
                "entity_id": entity_id,
                "entity_type": item.entity_type.value,
                "current_status": item.status,
                "terminal": is_terminal(item.status),
                "recommended": recommended,
                "trigger": TRIGGER_FOR[item.entity_type].get((item.status, recommended)) if recommended else None,
                "available_triggers": available_triggers(item.entity_type, item.status),
                "blocked": False,
            }
            if recommended == COMPLETED:
                check = self.checker.check(item, COMPLETED)
                if isinstance(check, Blocked):
                    data["blocked"] = True
                    data["blockers"] = check.to_detail()
            return data
        except PersistenceError as e:
            logger.exception(f"[STATE] {entity_id}: store failure in next_status")
            return TransitionFailure(FailureKind.PERSISTENCE_ERROR, str(e), entity_id).to_dict()
        except Exception as e:
            logger.exception(f"[STATE] {entity_id}: unexpected error in next_status")
            return TransitionFailure(
                FailureKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}", entity_id
            ).to_dict()
