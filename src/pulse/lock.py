"""Per-entity chain lock and the lease that tracks who must release it.

One lock covers a whole chain of wakes, not a single wake. The scheduled
wake acquires it, each continuation refreshes it, and whoever handles the
terminal step releases it. The TTL is a safety net: if a worker dies
mid-chain the lock expires and a later scheduled wake may proceed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import TracebackType
from typing import Callable

from pulse.keys import lock_key
from services.kv_store import KeyValueStore
from time_utils import utc_now

LOGGER = logging.getLogger(__name__)


class PulseLock:
    """Mutual exclusion for one entity's chain, backed by SET NX EX."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        namespace: str,
        ttl_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def acquire(self, entity_id: str) -> bool:
        """Take the lock if nobody holds it; the value is the acquire time in ms."""
        holder = str(int(self._clock().timestamp() * 1000))
        return self._store.set_if_absent(
            key=lock_key(self._namespace, entity_id),
            value=holder,
            ttl_seconds=self._ttl_seconds,
        )

    def refresh(self, entity_id: str) -> bool:
        """Reset the TTL; returns False when the key had already expired."""
        return self._store.expire(
            key=lock_key(self._namespace, entity_id),
            ttl_seconds=self._ttl_seconds,
        )

    def release(self, entity_id: str) -> None:
        self._store.delete_value(key=lock_key(self._namespace, entity_id))


class PulseLockLease:
    """Ownership of a held lock within one job.

    The lease releases the lock when the job's block exits unless
    ``transfer()`` was called, which only happens after a continuation job
    has been enqueued successfully.
    """

    def __init__(self, lock: PulseLock, entity_id: str) -> None:
        self._lock = lock
        self._entity_id = entity_id
        self._held = True
        self._transferred = False

    @classmethod
    def acquire(cls, lock: PulseLock, entity_id: str) -> "PulseLockLease | None":
        """Acquire a fresh lease, or ``None`` when a chain already runs."""
        if not lock.acquire(entity_id):
            return None
        return cls(lock, entity_id)

    @classmethod
    def adopt(cls, lock: PulseLock, entity_id: str) -> "PulseLockLease":
        """Take over a lease handed on by the previous step and refresh its TTL."""
        if not lock.refresh(entity_id):
            LOGGER.warning(
                "Pulse lock for %s had expired before continuation; proceeding", entity_id
            )
        return cls(lock, entity_id)

    @property
    def released(self) -> bool:
        return not self._held

    @property
    def transferred(self) -> bool:
        return self._transferred

    def transfer(self) -> None:
        """Hand ownership to the next chain step; this lease will not release."""
        self._transferred = True

    def release(self) -> bool:
        """Release the lock unless it was transferred; returns whether it did."""
        if not self._held or self._transferred:
            return False
        self._held = False
        self._lock.release(self._entity_id)
        return True

    def __enter__(self) -> "PulseLockLease":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()
