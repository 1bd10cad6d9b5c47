"""Unit tests for the Celery-backed pulse job queue."""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

import pytest
from celery_sqlalchemy_v2_scheduler import models
from celery_sqlalchemy_v2_scheduler.session import SessionManager, session_cleanup
from pulse_fakes import FixedClock
from sqlalchemy import select

from pulse.domain import EntityPulseConfig, PulseEntity, PulseJobPayload, WakeType
from pulse.errors import PulseQueueError
from pulse.queue import (
    CONTINUE_TASK_NAME,
    RESCHEDULE_TASK_NAME,
    WAKE_TASK_NAME,
    CeleryPulseQueue,
    entry_name,
)


class _StubChannel:
    def __init__(self, pending: int) -> None:
        self.pending = pending
        self.purged_queues: list[str] = []

    def queue_purge(self, queue: str) -> int:
        self.purged_queues.append(queue)
        purged, self.pending = self.pending, 0
        return purged


class _StubConnection:
    def __init__(self, channel: _StubChannel) -> None:
        self.default_channel = channel


class _StubCeleryApp:
    """Captures send_task calls and serves a purgeable channel."""

    def __init__(self, pending: int = 0) -> None:
        self.calls: list[dict[str, Any]] = []
        self.channel = _StubChannel(pending)

    def send_task(
        self,
        name: str,
        *,
        kwargs: dict | None = None,
        countdown: int | None = None,
        queue: str | None = None,
    ) -> None:
        self.calls.append(
            {"name": name, "kwargs": dict(kwargs or {}), "countdown": countdown, "queue": queue}
        )

    @contextmanager
    def connection_for_write(self):
        yield _StubConnection(self.channel)


def _build_queue(tmp_path, app=None, clock=None):
    app = app or _StubCeleryApp()
    manager = SessionManager()
    db_uri = f"sqlite:///{tmp_path / 'beat.db'}"
    queue = CeleryPulseQueue(
        celery_app=app,
        db_uri=db_uri,
        queue_name="pulse",
        startup_delay_seconds=60,
        session_manager_override=manager,
        clock=clock or FixedClock(),
    )
    return queue, manager, db_uri, app


def _task_names(manager: SessionManager, db_uri: str) -> list[str]:
    session = manager.session_factory(db_uri)
    with session_cleanup(session):
        return sorted(session.execute(select(models.PeriodicTask.name)).scalars().all())


def _entity(entity_id: str = "e1", name: str = "Ada") -> PulseEntity:
    return PulseEntity(id=entity_id, name=name, pulse=EntityPulseConfig(enabled=True))


def test_schedule_repeating_persists_interval_entry(tmp_path) -> None:
    """Each entity gets one interval entry carrying its wake payload."""
    clock = FixedClock()
    queue, manager, db_uri, _ = _build_queue(tmp_path, clock=clock)

    queue.schedule_repeating(_entity(), interval_minutes=30)

    session = manager.session_factory(db_uri)
    with session_cleanup(session):
        task = session.execute(
            select(models.PeriodicTask).filter_by(name=entry_name("e1"))
        ).scalar_one()
        assert task.task == WAKE_TASK_NAME
        assert task.queue == "pulse"
        assert task.enabled
        assert not task.one_off
        assert task.interval_id is not None
        assert task.interval.every == 30
        assert task.interval.period == "minutes"
        assert task.schedule.run_every == timedelta(minutes=30)
        assert task.start_time == (clock.now + timedelta(seconds=60)).replace(tzinfo=None)
        assert json.loads(task.kwargs) == {
            "payload": {
                "entityId": "e1",
                "entityName": "Ada",
                "wakeType": "scheduled",
                "chainDepth": 0,
            }
        }


def test_schedule_repeating_updates_existing_entry(tmp_path) -> None:
    """Rescheduling the same entity replaces its interval in place."""
    queue, manager, db_uri, _ = _build_queue(tmp_path)

    queue.schedule_repeating(_entity(), interval_minutes=30)
    queue.schedule_repeating(_entity(), interval_minutes=10)

    assert _task_names(manager, db_uri) == ["pulse-e1"]
    session = manager.session_factory(db_uri)
    with session_cleanup(session):
        task = session.execute(
            select(models.PeriodicTask).filter_by(name="pulse-e1")
        ).scalar_one()
        assert task.interval_id is not None
        assert task.interval.every == 10
        assert task.schedule.run_every == timedelta(minutes=10)


def test_remove_repeating_jobs_only_touches_pulse_entries(tmp_path) -> None:
    """Entries owned by other schedules survive the wipe."""
    queue, manager, db_uri, _ = _build_queue(tmp_path)
    queue.schedule_repeating(_entity("e1", "Ada"), interval_minutes=15)
    queue.schedule_repeating(_entity("e2", "Bea"), interval_minutes=15)
    session = manager.session_factory(db_uri)
    with session_cleanup(session):
        daily = models.IntervalSchedule(every=1, period="days")
        session.add(daily)
        session.flush()
        session.add(
            models.PeriodicTask(name="nightly-report", task="reports.run", interval_id=daily.id)
        )
        session.commit()

    removed = queue.remove_repeating_jobs()

    assert removed == 2
    assert _task_names(manager, db_uri) == ["nightly-report"]


def test_purge_pending_drops_waiting_jobs(tmp_path) -> None:
    """Pending messages on the pulse queue are purged."""
    app = _StubCeleryApp(pending=4)
    queue, _, _, _ = _build_queue(tmp_path, app=app)

    assert queue.purge_pending() == 4
    assert app.channel.purged_queues == ["pulse"]


def test_enqueue_continuation_sends_delayed_task(tmp_path) -> None:
    """Continuations go to the pulse queue with a countdown."""
    queue, _, _, app = _build_queue(tmp_path)
    payload = PulseJobPayload(
        entity_id="e1",
        entity_name="Ada",
        wake_type=WakeType.CONTINUE,
        chain_depth=2,
        task_context="go on",
    )

    queue.enqueue_continuation(payload, countdown=2)
    queue.enqueue_reschedule(countdown=5)

    assert app.calls == [
        {
            "name": CONTINUE_TASK_NAME,
            "kwargs": {"payload": payload.to_message()},
            "countdown": 2,
            "queue": "pulse",
        },
        {"name": RESCHEDULE_TASK_NAME, "kwargs": {}, "countdown": 5, "queue": "pulse"},
    ]


def test_persistence_failure_raises_queue_error(tmp_path) -> None:
    """Beat table failures surface as a queue error with the entry name."""

    class _BrokenManager(SessionManager):
        def session_factory(self, dburi, **kwargs):
            raise RuntimeError("no database")

    queue = CeleryPulseQueue(
        celery_app=_StubCeleryApp(),
        db_uri=f"sqlite:///{tmp_path / 'beat.db'}",
        queue_name="pulse",
        session_manager_override=_BrokenManager(),
    )

    with pytest.raises(PulseQueueError) as excinfo:
        queue.schedule_repeating(_entity(), interval_minutes=15)

    assert excinfo.value.code == "beat_entry_persistence_failed"
    assert excinfo.value.details == {"entry_name": "pulse-e1"}


def test_removed_entries_leave_interval_rows_intact(tmp_path) -> None:
    """Shared interval rows outlive the entries removed from them."""
    queue, manager, db_uri, _ = _build_queue(tmp_path)
    queue.schedule_repeating(_entity("e1", "Ada"), interval_minutes=20)
    queue.schedule_repeating(_entity("e2", "Bea"), interval_minutes=20)

    assert queue.remove_repeating_jobs() == 2

    queue.schedule_repeating(_entity("e1", "Ada"), interval_minutes=20)
    session = manager.session_factory(db_uri)
    with session_cleanup(session):
        intervals = session.execute(select(models.IntervalSchedule)).scalars().all()
        assert [(row.every, row.period) for row in intervals] == [(20, "minutes")]
        task = session.execute(
            select(models.PeriodicTask).filter_by(name="pulse-e1")
        ).scalar_one()
        assert task.interval_id == intervals[0].id
