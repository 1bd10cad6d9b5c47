"""Celery entry point for the Pulse worker and beat.

Run the worker and beat with::

    celery -A pulse.celery_app worker -Q pulse
    celery -A pulse.celery_app beat -S celery_sqlalchemy_v2_scheduler.schedulers:DatabaseScheduler
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from celery import Celery
from celery.signals import setup_logging, worker_init, worker_ready
from pydantic import ValidationError

from config import Settings, settings
from log_config import configure_logging, log_context
from pulse.budget import BudgetLedger
from pulse.chain import ChainStepOutcome, PulseChainScheduler
from pulse.compass import CompassReader
from pulse.domain import PulseJobPayload
from pulse.end_signal import EndSignalMailbox
from pulse.entities import EntityStore
from pulse.liveness import ConversationLiveness
from pulse.lock import PulseLock
from pulse.log_store import PulseLogStore
from pulse.orchestrator import PulseOrchestrator
from pulse.queue import (
    CONTINUE_TASK_NAME,
    RESCHEDULE_TASK_NAME,
    WAKE_TASK_NAME,
    CeleryPulseQueue,
)
from pulse.task_context import TaskContextStore
from services.agent_client import AgentClient
from services.database import create_session_factory, run_migrations
from services.kv_store import RedisKeyValueStore

LOGGER = logging.getLogger(__name__)

celery_app = Celery("pulse")
celery_app.conf.broker_url = settings.celery.broker_url
celery_app.conf.result_backend = settings.celery.result_backend
celery_app.conf.task_default_queue = settings.pulse.queue_name
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"
# A wake is not safe to redeliver: the agent call is not idempotent.
celery_app.conf.worker_concurrency = settings.pulse.worker_concurrency
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.task_acks_late = False
celery_app.conf.task_reject_on_worker_lost = False
celery_app.conf.beat_scheduler = "celery_sqlalchemy_v2_scheduler.schedulers:DatabaseScheduler"
celery_app.conf.beat_dburi = settings.database_url


def build_chain_scheduler(app: Celery, config: Settings) -> PulseChainScheduler:
    """Wire every Pulse component from settings."""
    pulse = config.pulse
    namespace = pulse.redis_namespace
    store = RedisKeyValueStore(config=config.redis)
    session_factory = create_session_factory(config.database_url)
    log_store = PulseLogStore(session_factory)

    orchestrator = PulseOrchestrator(
        log_store=log_store,
        budget=BudgetLedger(
            store,
            namespace=namespace,
            default_wakes=pulse.default_daily_budget_wakes,
            default_tokens=pulse.default_daily_budget_tokens,
            ttl_seconds=pulse.budget_ttl_seconds,
        ),
        liveness=ConversationLiveness(
            store,
            namespace=namespace,
            window_minutes=pulse.active_conversation_window_minutes,
        ),
        task_contexts=TaskContextStore(
            store, namespace=namespace, ttl_seconds=pulse.task_context_ttl_seconds
        ),
        end_signals=EndSignalMailbox(
            store, namespace=namespace, ttl_seconds=pulse.end_signal_ttl_seconds
        ),
        compass=CompassReader(session_factory),
        agent=AgentClient(config.agent),
        config=pulse,
    )
    return PulseChainScheduler(
        entities=EntityStore(session_factory),
        lock=PulseLock(store, namespace=namespace, ttl_seconds=pulse.lock_ttl_seconds),
        orchestrator=orchestrator,
        queue=CeleryPulseQueue(
            celery_app=app,
            db_uri=config.database_url,
            queue_name=pulse.queue_name,
            startup_delay_seconds=pulse.startup_delay_seconds,
        ),
        config=pulse,
    )


_SCHEDULER = build_chain_scheduler(celery_app, settings)


@setup_logging.connect
def _configure_worker_logging(**_kwargs: Any) -> None:
    """Replace Celery's logging setup with the stdout JSON handler."""
    configure_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        service="pulse-worker",
    )


@worker_init.connect
def _migrate_on_init(**_kwargs: Any) -> None:
    """Bring the pulse tables up to date before the worker consumes jobs."""
    run_migrations(settings.database_url)


@worker_ready.connect
def _schedule_on_startup(**_kwargs: Any) -> None:
    """Rebuild repeating wake entries once the worker is ready."""
    schedule_on_startup(_SCHEDULER)


def schedule_on_startup(scheduler: PulseChainScheduler) -> int:
    """Schedule pulse jobs; failures are logged so the worker keeps running."""
    try:
        return scheduler.schedule_pulse_jobs()
    except Exception:  # noqa: BLE001
        LOGGER.exception("Failed to schedule pulse jobs")
        return 0


def trigger_pulse_reschedule() -> None:
    """Request a schedule rebuild after an entity's pulse config changes."""
    _SCHEDULER.trigger_reschedule()


def run_pulse_job(
    *,
    job_id: str | None,
    job_name: str,
    payload: dict[str, Any],
    handler: Callable[[PulseJobPayload], ChainStepOutcome],
) -> dict[str, Any]:
    """Validate a job payload and run it with job fields bound to every log line."""
    try:
        job = PulseJobPayload.model_validate(payload)
    except ValidationError as exc:
        LOGGER.error("Rejected %s job with invalid payload: %s", job_name, exc)
        raise
    with log_context(
        {
            "job_id": job_id,
            "job_name": job_name,
            "queue": settings.pulse.queue_name,
            "entity_id": job.entity_id,
        }
    ):
        outcome = handler(job)
        LOGGER.info(
            "Pulse job finished: continued=%s lock_released=%s",
            outcome.continued,
            outcome.lock_released,
        )
        return outcome.to_dict()


@celery_app.task(
    bind=True,
    name=WAKE_TASK_NAME,
    acks_late=False,
    autoretry_for=(),
    reject_on_worker_lost=False,
)
def wake(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Handle a repeating scheduled wake."""
    return run_pulse_job(
        job_id=getattr(self.request, "id", None),
        job_name=WAKE_TASK_NAME,
        payload=payload,
        handler=_SCHEDULER.handle_wake,
    )


@celery_app.task(
    bind=True,
    name=CONTINUE_TASK_NAME,
    acks_late=False,
    autoretry_for=(),
    reject_on_worker_lost=False,
)
def continue_chain(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Handle the next step of a chain."""
    return run_pulse_job(
        job_id=getattr(self.request, "id", None),
        job_name=CONTINUE_TASK_NAME,
        payload=payload,
        handler=_SCHEDULER.handle_continue,
    )


@celery_app.task(name=RESCHEDULE_TASK_NAME)
def reschedule() -> dict[str, int]:
    """Rebuild repeating entries after entity pulse configs change."""
    LOGGER.info("Rescheduling pulse jobs (config changed)")
    return {"scheduled": _SCHEDULER.schedule_pulse_jobs()}
