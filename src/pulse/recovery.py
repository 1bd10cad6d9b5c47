"""Reclaim log rows left ``in_progress`` by crashed workers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from pulse.domain import EndSignal, FailedOutcome
from pulse.log_store import PulseLogStore
from time_utils import utc_now

LOGGER = logging.getLogger(__name__)


def crash_recovery_message(threshold_minutes: int) -> str:
    return (
        f"Pulse log stuck in_progress for more than {threshold_minutes} min; "
        "marked failed by cleanup"
    )


def cleanup_stuck_pulse_logs(
    log_store: PulseLogStore,
    entity_id: str,
    *,
    threshold_minutes: int = 15,
    clock: Callable[[], datetime] = utc_now,
) -> str | None:
    """Fail every stuck row with ``crash_recovery`` and salvage one task context.

    Rows are visited newest first; the first non-empty task context wins.
    """
    recovered: str | None = None
    message = crash_recovery_message(threshold_minutes)
    for record in log_store.find_stuck(entity_id, older_than_minutes=threshold_minutes):
        if record.task_context and recovered is None:
            recovered = record.task_context
        duration_ms = int((clock() - record.created_at).total_seconds() * 1000)
        log_store.update_terminal(
            record.id,
            FailedOutcome(
                end_signal=EndSignal.CRASH_RECOVERY,
                error=message,
                duration_ms=duration_ms,
            ),
        )
        LOGGER.warning(
            "Reclaimed stuck pulse log %s for entity %s (%d ms old)",
            record.id,
            entity_id,
            duration_ms,
        )
    return recovered
