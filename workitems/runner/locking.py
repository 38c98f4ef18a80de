"""
Per-entity lock coordination.

At most one live lock exists per entity id. A lock belongs to a session;
the same session may re-acquire it (depth counts nesting). Locks expire
after a TTL so a caller that never releases cannot wedge an entity, and
an expired lock may be taken over by another session.

Lock state is in memory and process-local.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import count
from typing import Callable, Union

from workitems.lib.constants import (
    DEFAULT_LOCK_TTL,
    LOCK_POLICIES,
    LOCK_POLICY_BLOCK,
    LOCK_POLICY_FAIL_FAST,
)
from workitems.lib.errors import WorkItemsError

logger = logging.getLogger(__name__)


class LockTimeout(WorkItemsError):
    """Lock acquisition timed out."""

    def __init__(self, entity_id: str, holder_session_id: str, timeout: float):
        self.entity_id = entity_id
        self.holder_session_id = holder_session_id
        self.timeout = timeout
        super().__init__(
            f"Could not acquire lock for {entity_id} within {timeout}s "
            f"(held by session {holder_session_id})"
        )


@dataclass(frozen=True)
class LockHandle:
    entity_id: str
    session_id: str
    token: int  # Identifies the lock record this handle was issued for


@dataclass(frozen=True)
class Busy:
    entity_id: str
    holder_session_id: str
    expires_at: float


@dataclass
class LockRecord:
    entity_id: str
    session_id: str
    acquired_at: float
    expires_at: float
    depth: int
    token: int


class LockCoordinator:
    """Serializes mutations of the same entity across threads.

    With enabled=False every acquire succeeds immediately and release is a
    no-op, so callers behave the same minus the exclusion.
    """

    def __init__(
        self,
        enabled: bool = True,
        ttl: float = DEFAULT_LOCK_TTL,
        policy: str = LOCK_POLICY_BLOCK,
        clock: Callable[[], float] = time.monotonic,
    ):
        if policy not in LOCK_POLICIES:
            raise ValueError(f"Unknown lock policy '{policy}'")
        self.enabled = enabled
        self.ttl = ttl
        self.policy = policy
        self._clock = clock
        self._cond = threading.Condition()
        self._locks: dict[str, LockRecord] = {}
        self._tokens = count(1)

    def acquire(self, entity_id: str, session_id: str, timeout: float) -> Union[LockHandle, Busy]:
        """Acquire the lock for entity_id on behalf of session_id.

        Blocks up to timeout seconds under the block policy; returns Busy
        immediately under fail_fast.
        """
        if not self.enabled:
            return LockHandle(entity_id, session_id, 0)

        deadline = self._clock() + timeout
        with self._cond:
            while True:
                now = self._clock()
                self._sweep(now)
                record = self._locks.get(entity_id)

                if record is None:
                    record = LockRecord(entity_id, session_id, now, now + self.ttl, 1, next(self._tokens))
                    self._locks[entity_id] = record
                    logger.debug(f"[LOCK] {entity_id}: acquired by {session_id}")
                    return LockHandle(entity_id, session_id, record.token)

                if record.session_id == session_id:
                    record.depth += 1
                    record.expires_at = now + self.ttl
                    logger.debug(f"[LOCK] {entity_id}: re-acquired by {session_id} (depth {record.depth})")
                    return LockHandle(entity_id, session_id, record.token)

                remaining = deadline - now
                if self.policy == LOCK_POLICY_FAIL_FAST or remaining <= 0:
                    logger.debug(f"[LOCK] {entity_id}: busy, held by {record.session_id}")
                    return Busy(entity_id, record.session_id, record.expires_at)

                # Wake for a release, the holder's expiry, or our deadline
                self._cond.wait(min(remaining, record.expires_at - now))

    def release(self, handle: LockHandle) -> None:
        """Release one level of a lock.

        A handle whose lock already expired or was taken over is ignored.
        """
        if not self.enabled:
            return

        with self._cond:
            record = self._locks.get(handle.entity_id)
            if record is None or record.token != handle.token:
                logger.debug(f"[LOCK] {handle.entity_id}: stale release by {handle.session_id}, ignoring")
                return

            if record.expires_at <= self._clock():
                del self._locks[handle.entity_id]
                logger.debug(f"[LOCK] {handle.entity_id}: released after expiry by {handle.session_id}")
                self._cond.notify_all()
                return

            record.depth -= 1
            if record.depth <= 0:
                del self._locks[handle.entity_id]
                logger.debug(f"[LOCK] {handle.entity_id}: released by {handle.session_id}")
                self._cond.notify_all()

    def _sweep(self, now: float) -> None:
        """Drop expired records. Caller holds the condition."""
        expired = [eid for eid, r in self._locks.items() if r.expires_at <= now]
        for entity_id in expired:
            record = self._locks.pop(entity_id)
            logger.info(f"[LOCK] {entity_id}: lock held by {record.session_id} expired, reclaiming")
        if expired:
            self._cond.notify_all()

    @contextmanager
    def locked(self, entity_id: str, session_id: str, timeout: float):
        """
        Acquire the lock, yield the handle, release on exit.

        Raises:
            LockTimeout: if the lock could not be acquired in time
        """
        result = self.acquire(entity_id, session_id, timeout)
        if isinstance(result, Busy):
            raise LockTimeout(entity_id, result.holder_session_id, timeout)
        try:
            yield result
        finally:
            self.release(result)

    def active_locks(self) -> list[dict]:
        """Snapshot of live locks for diagnostics."""
        if not self.enabled:
            return []
        with self._cond:
            now = self._clock()
            self._sweep(now)
            return [
                {
                    "entity_id": r.entity_id,
                    "session_id": r.session_id,
                    "depth": r.depth,
                    "expires_in": round(r.expires_at - now, 3),
                }
                for r in self._locks.values()
            ]
