"""Invocation log: one ``pulse_logs`` row per wake attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from models import PulseLog
from pulse.domain import (
    CompletedOutcome,
    EndSignal,
    FailedOutcome,
    PulseEntity,
    PulseStatus,
    SkippedOutcome,
    SkipReason,
    TerminalOutcome,
    WakeType,
)
from pulse.errors import PulseLogNotFoundError
from time_utils import ensure_aware, utc_now

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class PulseLogRecord:
    """Detached snapshot of a log row."""

    id: int
    entity_id: str
    entity_name: str | None
    wake_type: WakeType
    status: PulseStatus
    skip_reason: SkipReason | None
    chain_depth: int
    end_signal: EndSignal | None
    task_context: str | None
    reflection: str | None
    token_usage: dict[str, Any] | None
    tool_call_count: int
    error: str | None
    duration_ms: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PulseLogPage:
    """One page of log rows plus the total match count."""

    logs: list[PulseLogRecord]
    total: int


@dataclass(frozen=True)
class EntityLogSummary:
    """Log row count per entity for the admin entity filter."""

    entity_id: str
    entity_name: str | None
    count: int


def _to_record(row: PulseLog) -> PulseLogRecord:
    return PulseLogRecord(
        id=row.id,
        entity_id=row.entity_id,
        entity_name=row.entity_name,
        wake_type=WakeType(row.wake_type),
        status=PulseStatus(row.status),
        skip_reason=SkipReason(row.skip_reason) if row.skip_reason else None,
        chain_depth=row.chain_depth,
        end_signal=EndSignal(row.end_signal) if row.end_signal else None,
        task_context=row.task_context,
        reflection=row.reflection,
        token_usage=row.token_usage,
        tool_call_count=row.tool_call_count or 0,
        error=row.error,
        duration_ms=row.duration_ms,
        created_at=ensure_aware(row.created_at),
        updated_at=ensure_aware(row.updated_at),
    )


def _outcome_fields(outcome: TerminalOutcome) -> dict[str, Any]:
    """Column values for a terminal outcome; other outcome columns stay null."""
    fields: dict[str, Any] = {
        "status": outcome.status.value,
        "duration_ms": outcome.duration_ms,
    }
    if isinstance(outcome, SkippedOutcome):
        fields["skip_reason"] = outcome.reason.value
    elif isinstance(outcome, CompletedOutcome):
        fields["end_signal"] = outcome.end_signal.value
        fields["task_context"] = outcome.task_context
        fields["reflection"] = outcome.reflection
        fields["token_usage"] = outcome.token_usage
        fields["tool_call_count"] = outcome.tool_call_count
    elif isinstance(outcome, FailedOutcome):
        fields["end_signal"] = outcome.end_signal.value
        fields["error"] = outcome.error
    return fields


class PulseLogStore:
    """SQL-backed invocation log."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def create(
        self,
        entity: PulseEntity,
        *,
        wake_type: WakeType,
        chain_depth: int,
        task_context: str | None = None,
    ) -> int:
        """Insert an ``in_progress`` row for a starting attempt and return its id."""
        timestamp = self._clock()
        with self._session_factory() as session:
            row = PulseLog(
                entity_id=entity.id,
                entity_name=entity.name,
                wake_type=wake_type.value,
                status=PulseStatus.IN_PROGRESS.value,
                chain_depth=chain_depth,
                task_context=task_context,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(row)
            session.commit()
            return row.id

    def update_terminal(self, log_id: int, outcome: TerminalOutcome) -> bool:
        """Move an ``in_progress`` row to its terminal state.

        Returns False without writing when the row is already terminal.
        """
        fields = _outcome_fields(outcome)
        fields["updated_at"] = self._clock()
        with self._session_factory() as session:
            updated = (
                session.query(PulseLog)
                .filter(
                    PulseLog.id == log_id,
                    PulseLog.status == PulseStatus.IN_PROGRESS.value,
                )
                .update(fields, synchronize_session=False)
            )
            session.commit()
        if not updated:
            LOGGER.warning("Pulse log %s was not in progress; terminal update skipped", log_id)
        return bool(updated)

    def get(self, log_id: int) -> PulseLogRecord:
        with self._session_factory() as session:
            row = session.get(PulseLog, log_id)
            if row is None:
                raise PulseLogNotFoundError(
                    "pulse_log_not_found", f"Pulse log {log_id} not found."
                )
            return _to_record(row)

    def find_stuck(self, entity_id: str, older_than_minutes: int = 15) -> list[PulseLogRecord]:
        """Return ``in_progress`` rows older than the threshold, newest first."""
        cutoff = self._clock() - timedelta(minutes=older_than_minutes)
        with self._session_factory() as session:
            rows = (
                session.query(PulseLog)
                .filter(
                    PulseLog.entity_id == entity_id,
                    PulseLog.status == PulseStatus.IN_PROGRESS.value,
                    PulseLog.created_at < cutoff,
                )
                .order_by(PulseLog.created_at.desc(), PulseLog.id.desc())
                .all()
            )
            return [_to_record(row) for row in rows]

    def find_last_completed_or_skipped(self, entity_id: str) -> PulseLogRecord | None:
        with self._session_factory() as session:
            row = (
                session.query(PulseLog)
                .filter(
                    PulseLog.entity_id == entity_id,
                    PulseLog.status.in_(
                        [PulseStatus.COMPLETED.value, PulseStatus.SKIPPED.value]
                    ),
                )
                .order_by(PulseLog.created_at.desc(), PulseLog.id.desc())
                .first()
            )
            return _to_record(row) if row is not None else None

    def last_wake_time(self, entity_id: str) -> datetime | None:
        """Creation time of the most recent completed or skipped attempt."""
        record = self.find_last_completed_or_skipped(entity_id)
        return record.created_at if record is not None else None

    def list_logs(
        self,
        *,
        entity_id: str | None = None,
        status: PulseStatus | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> PulseLogPage:
        """Page through logs newest first, optionally filtered."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        with self._session_factory() as session:
            query = session.query(PulseLog)
            if entity_id:
                query = query.filter(PulseLog.entity_id == entity_id)
            if status is not None:
                query = query.filter(PulseLog.status == status.value)
            total = query.count()
            rows = (
                query.order_by(PulseLog.created_at.desc(), PulseLog.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return PulseLogPage(logs=[_to_record(row) for row in rows], total=total)

    def summarize_entities(self) -> list[EntityLogSummary]:
        """Count rows per entity, busiest first."""
        with self._session_factory() as session:
            count = func.count(PulseLog.id)
            rows = (
                session.query(PulseLog.entity_id, func.max(PulseLog.entity_name), count)
                .group_by(PulseLog.entity_id)
                .order_by(count.desc(), PulseLog.entity_id)
                .all()
            )
        return [
            EntityLogSummary(entity_id=entity_id, entity_name=name, count=int(total))
            for entity_id, name, total in rows
        ]
