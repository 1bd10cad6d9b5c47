"""Chain scheduler: job handlers around the orchestrator.

Lock ownership across a chain:

- a scheduled wake acquires the lock, or does nothing if a chain is running
- a continuation adopts the lock its predecessor handed on and refreshes it
- after the orchestrator returns ``continue``, the lock is handed to the next
  job only once that job is enqueued; a failed enqueue releases it
- every other path releases the lock when the handler exits
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config import PulseConfig
from pulse.domain import (
    PulseEntity,
    PulseJobPayload,
    PulseSignal,
    PulseWakeResult,
    WakeOptions,
    WakeType,
)
from pulse.entities import EntityStore
from pulse.lock import PulseLock, PulseLockLease
from pulse.orchestrator import PulseOrchestrator
from pulse.queue import PulseJobQueue

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainStepOutcome:
    """What one job handler did with the lock and the chain."""

    result: PulseWakeResult | None
    continued: bool
    lock_released: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "result": self.result.to_dict() if self.result is not None else None,
            "continued": self.continued,
            "lock_released": self.lock_released,
        }


class PulseChainScheduler:
    """Schedules repeating wakes and drives each chain step."""

    def __init__(
        self,
        *,
        entities: EntityStore,
        lock: PulseLock,
        orchestrator: PulseOrchestrator,
        queue: PulseJobQueue,
        config: PulseConfig,
    ) -> None:
        self._entities = entities
        self._lock = lock
        self._orchestrator = orchestrator
        self._queue = queue
        self._config = config

    def schedule_pulse_jobs(self) -> int:
        """Replace every repeating pulse entry and drop pending jobs.

        Returns the number of entities scheduled.
        """
        removed = self._queue.remove_repeating_jobs()
        purged = self._queue.purge_pending()
        LOGGER.info("Cleared %d repeating pulse entries and %d pending jobs", removed, purged)

        entities = self._entities.list_pulse_enabled()
        if not entities:
            LOGGER.info("No pulse-enabled entities; no jobs scheduled")
            return 0

        for entity in entities:
            interval = (
                entity.pulse.wake_interval_minutes
                or self._config.default_wake_interval_minutes
            )
            self._queue.schedule_repeating(entity, interval_minutes=interval)
            LOGGER.info("Scheduled %s every %d min", entity.name, interval)
        LOGGER.info("Scheduled %d entity pulse jobs", len(entities))
        return len(entities)

    def trigger_reschedule(self) -> None:
        """Ask a worker to rebuild the schedule after entity configs change."""
        self._queue.enqueue_reschedule(countdown=self._config.reschedule_delay_seconds)

    def handle_wake(self, payload: PulseJobPayload) -> ChainStepOutcome:
        """Handle a fired repeating wake."""
        lease = PulseLockLease.acquire(self._lock, payload.entity_id)
        if lease is None:
            LOGGER.info(
                "Skipping scheduled wake for %s; pulse already in progress",
                payload.entity_name or payload.entity_id,
            )
            return ChainStepOutcome(result=None, continued=False, lock_released=False)
        return self._run_step(
            lease,
            payload,
            WakeOptions(wake_type=WakeType.SCHEDULED, chain_depth=0),
        )

    def handle_continue(self, payload: PulseJobPayload) -> ChainStepOutcome:
        """Handle a continuation handed on by the previous chain step."""
        lease = PulseLockLease.adopt(self._lock, payload.entity_id)
        return self._run_step(
            lease,
            payload,
            WakeOptions(
                wake_type=WakeType.CONTINUE,
                chain_depth=payload.chain_depth,
                task_context=payload.task_context,
            ),
        )

    def _run_step(
        self,
        lease: PulseLockLease,
        payload: PulseJobPayload,
        options: WakeOptions,
    ) -> ChainStepOutcome:
        entity: PulseEntity | None = None
        result: PulseWakeResult | None = None
        continued = False
        with lease:
            try:
                entity = self._entities.get(payload.entity_id)
                if entity is None or not entity.pulse.enabled:
                    LOGGER.info(
                        "Entity %s no longer pulse-enabled; stopping",
                        payload.entity_name or payload.entity_id,
                    )
                else:
                    result = self._orchestrator.run_pulse_wake(entity, options)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Pulse step for %s failed before completing", payload.entity_id)
                result = PulseWakeResult.failed(str(exc) or type(exc).__name__)
            if (
                entity is not None
                and result is not None
                and result.signal == PulseSignal.CONTINUE
            ):
                continued = self._enqueue_continuation(entity, result)
                if continued:
                    lease.transfer()
        return ChainStepOutcome(
            result=result,
            continued=continued,
            lock_released=lease.released,
        )

    def _enqueue_continuation(self, entity: PulseEntity, result: PulseWakeResult) -> bool:
        next_payload = PulseJobPayload(
            entity_id=entity.id,
            entity_name=entity.name,
            wake_type=WakeType.CONTINUE,
            chain_depth=result.chain_depth or 0,
            task_context=result.task_context,
        )
        try:
            self._queue.enqueue_continuation(
                next_payload, countdown=self._config.continuation_delay_seconds
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "Failed to enqueue continuation for %s: %s", entity.name, exc, exc_info=True
            )
            return False
        return True
