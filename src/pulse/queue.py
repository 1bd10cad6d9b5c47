"""Pulse job queue: repeating wake entries in Celery Beat plus one-shot jobs.

Repeating entries live in the SQLAlchemy beat tables so they survive
restarts and can be replaced wholesale when entity configs change.
Continuations and reschedules are plain Celery messages with a countdown.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from celery import Celery
from sqlalchemy import delete, select

from celery_sqlalchemy_v2_scheduler import models
from celery_sqlalchemy_v2_scheduler.session import SessionManager, session_cleanup

from pulse.domain import PulseEntity, PulseJobPayload, WakeType
from pulse.errors import PulseQueueError
from time_utils import utc_now

LOGGER = logging.getLogger(__name__)
DEFAULT_SESSION_MANAGER = SessionManager()

WAKE_TASK_NAME = "pulse.wake"
CONTINUE_TASK_NAME = "pulse.continue"
RESCHEDULE_TASK_NAME = "pulse.reschedule"
ENTRY_PREFIX = "pulse-"


def entry_name(entity_id: str) -> str:
    """Beat entry name for an entity's repeating wake."""
    return f"{ENTRY_PREFIX}{entity_id}"


class PulseJobQueue(Protocol):
    """Queue operations the chain scheduler needs."""

    def remove_repeating_jobs(self) -> int:
        """Delete every repeating pulse entry and return how many went."""

    def purge_pending(self) -> int:
        """Drop queued, not yet started pulse jobs and return how many went."""

    def schedule_repeating(self, entity: PulseEntity, *, interval_minutes: int) -> None:
        """Create the repeating wake entry for one entity."""

    def enqueue_continuation(self, payload: PulseJobPayload, *, countdown: int) -> None:
        """Enqueue the next step of a chain."""

    def enqueue_reschedule(self, *, countdown: int) -> None:
        """Ask a worker to rebuild every repeating entry."""


class CeleryPulseQueue:
    """Pulse queue backed by Celery and celery_sqlalchemy_v2_scheduler."""

    def __init__(
        self,
        *,
        celery_app: Celery,
        db_uri: str,
        queue_name: str,
        startup_delay_seconds: int = 60,
        session_manager_override: SessionManager | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._celery_app = celery_app
        self._db_uri = db_uri
        self._queue_name = queue_name
        self._startup_delay = timedelta(seconds=startup_delay_seconds)
        self._session_manager = session_manager_override or DEFAULT_SESSION_MANAGER
        self._clock = clock

    def remove_repeating_jobs(self) -> int:
        try:
            session = self._session_manager.session_factory(self._db_uri)
            with session_cleanup(session):
                # Bulk delete; an ORM delete would try to null the interval primary key.
                result = session.execute(
                    delete(models.PeriodicTask).where(
                        models.PeriodicTask.name.like(f"{ENTRY_PREFIX}%")
                    )
                )
                models.PeriodicTaskChanged.update_changed(None, session.connection(), None)
                session.commit()
                return int(result.rowcount or 0)
        except Exception as exc:
            LOGGER.exception("Failed to remove repeating pulse entries")
            raise PulseQueueError(
                "beat_entry_delete_failed",
                "Could not remove repeating pulse entries.",
            ) from exc

    def purge_pending(self) -> int:
        with self._celery_app.connection_for_write() as connection:
            purged = connection.default_channel.queue_purge(self._queue_name)
        return int(purged or 0)

    def schedule_repeating(self, entity: PulseEntity, *, interval_minutes: int) -> None:
        payload = PulseJobPayload(
            entity_id=entity.id,
            entity_name=entity.name,
            wake_type=WakeType.SCHEDULED,
            chain_depth=0,
        )
        name = entry_name(entity.id)
        try:
            session = self._session_manager.session_factory(self._db_uri)
            with session_cleanup(session):
                task = session.execute(
                    select(models.PeriodicTask).filter_by(name=name)
                ).scalar_one_or_none()
                if task is None:
                    task = models.PeriodicTask(name=name)
                    session.add(task)
                task.task = WAKE_TASK_NAME
                task.args = json.dumps([])
                task.kwargs = json.dumps({"payload": payload.to_message()})
                task.enabled = True
                task.queue = self._queue_name
                task.one_off = False
                task.description = f"Pulse wake for {entity.name}"
                interval = _find_or_create_interval(session, interval_minutes, "minutes")
                session.flush()
                # The beat model joins schedules by id only, so link the columns.
                task.interval_id = interval.id
                task.crontab_id = None
                task.solar_id = None
                task.start_time = self._clock() + self._startup_delay
                session.commit()
        except Exception as exc:
            LOGGER.exception("Failed to persist beat entry: %s", name)
            raise PulseQueueError(
                "beat_entry_persistence_failed",
                "Failed to persist pulse beat entry.",
                {"entry_name": name},
            ) from exc

    def enqueue_continuation(self, payload: PulseJobPayload, *, countdown: int) -> None:
        self._celery_app.send_task(
            CONTINUE_TASK_NAME,
            kwargs={"payload": payload.to_message()},
            countdown=countdown,
            queue=self._queue_name,
        )

    def enqueue_reschedule(self, *, countdown: int) -> None:
        self._celery_app.send_task(
            RESCHEDULE_TASK_NAME,
            countdown=countdown,
            queue=self._queue_name,
        )


def _find_or_create_interval(
    session: Any,
    every: int,
    period: str,
) -> models.IntervalSchedule:
    """Find or create an interval schedule."""
    stmt = select(models.IntervalSchedule).filter_by(every=every, period=period)
    interval = session.execute(stmt).scalar_one_or_none()
    if interval is None:
        interval = models.IntervalSchedule(every=every, period=period)
        session.add(interval)
    return interval
