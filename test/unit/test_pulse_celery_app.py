"""Unit tests for the Pulse Celery entry point."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

import pulse.celery_app as celery_module
from log_config import get_context
from pulse.chain import ChainStepOutcome
from pulse.domain import PulseJobPayload, PulseWakeResult
from pulse.queue import CONTINUE_TASK_NAME, RESCHEDULE_TASK_NAME, WAKE_TASK_NAME


def test_worker_never_redelivers_jobs() -> None:
    """A lost wake must not be retried: the agent call is not idempotent."""
    conf = celery_module.celery_app.conf

    assert conf.task_acks_late is False
    assert conf.task_reject_on_worker_lost is False
    assert conf.worker_prefetch_multiplier == 1
    assert conf.worker_concurrency == 5
    assert conf.task_default_queue == "pulse"
    assert conf.beat_scheduler.startswith("celery_sqlalchemy_v2_scheduler")


def test_tasks_are_registered() -> None:
    """Wake, continue, and reschedule tasks are registered by name."""
    tasks = celery_module.celery_app.tasks

    assert WAKE_TASK_NAME in tasks
    assert CONTINUE_TASK_NAME in tasks
    assert RESCHEDULE_TASK_NAME in tasks
    assert tasks[WAKE_TASK_NAME].acks_late is False


def test_run_pulse_job_binds_context_for_handler() -> None:
    """Job fields are visible to every log line the handler writes."""
    seen: dict[str, object] = {}

    def handler(job: PulseJobPayload) -> ChainStepOutcome:
        seen["job"] = job
        seen["context"] = get_context()
        return ChainStepOutcome(
            result=PulseWakeResult.continue_with(2, "draft"),
            continued=True,
            lock_released=False,
        )

    result = celery_module.run_pulse_job(
        job_id="job-1",
        job_name=CONTINUE_TASK_NAME,
        payload={"entityId": "e1", "entityName": "Ada", "wakeType": "continue", "chainDepth": 1},
        handler=handler,
    )

    context = seen["context"]
    assert isinstance(context, dict)
    assert context["job_id"] == "job-1"
    assert context["job_name"] == CONTINUE_TASK_NAME
    assert context["queue"] == "pulse"
    assert context["entity_id"] == "e1"
    assert "job_id" not in get_context()
    assert seen["job"] == PulseJobPayload(
        entity_id="e1", entity_name="Ada", wake_type="continue", chain_depth=1
    )
    assert result == {
        "result": {"signal": "continue", "chainDepth": 2, "taskContext": "draft"},
        "continued": True,
        "lock_released": False,
    }


def test_run_pulse_job_rejects_invalid_payload() -> None:
    """Payloads without an entity id never reach the handler."""
    calls: list[PulseJobPayload] = []

    with pytest.raises(ValidationError):
        celery_module.run_pulse_job(
            job_id=None,
            job_name=WAKE_TASK_NAME,
            payload={"chainDepth": -1},
            handler=lambda job: calls.append(job),
        )
    assert calls == []


class _FailingScheduler:
    def schedule_pulse_jobs(self) -> int:
        raise ConnectionError("database unavailable")


class _CountingScheduler:
    def __init__(self) -> None:
        self.reschedules = 0

    def schedule_pulse_jobs(self) -> int:
        return 3

    def trigger_reschedule(self) -> None:
        self.reschedules += 1


def test_schedule_on_startup_swallows_failures() -> None:
    """A broken entity list does not crash worker startup."""
    assert celery_module.schedule_on_startup(_FailingScheduler()) == 0
    assert celery_module.schedule_on_startup(_CountingScheduler()) == 3


def test_trigger_pulse_reschedule_uses_process_scheduler(monkeypatch: pytest.MonkeyPatch) -> None:
    """The public reschedule hook delegates to the process scheduler."""
    scheduler = _CountingScheduler()
    monkeypatch.setattr(celery_module, "_SCHEDULER", scheduler)

    celery_module.trigger_pulse_reschedule()

    assert scheduler.reschedules == 1


def test_reschedule_task_rebuilds_schedule(monkeypatch: pytest.MonkeyPatch) -> None:
    """The reschedule task reports how many entities were scheduled."""
    monkeypatch.setattr(celery_module, "_SCHEDULER", _CountingScheduler())

    assert celery_module.reschedule.run() == {"scheduled": 3}
