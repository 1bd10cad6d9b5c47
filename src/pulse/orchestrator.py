"""Single wake attempt: guards, prompt, agent call, accounting, and logging.

Every attempt writes exactly one log row. The row is created ``in_progress``
before anything else happens and finishes in one terminal state:

- ``skipped`` with the first guard that refused the wake
- ``completed`` with ``rest`` when the agent posted an end signal
- ``completed`` with ``tool_limit`` when it ran out of tool budget instead
- ``failed`` with ``error`` when anything raised after the row existed

Guards run in a fixed order (conversation, budget, hours, depth) and the
first refusal wins. Retrying and continuing are the chain scheduler's job;
the orchestrator only reports a signal.
"""

from __future__ import annotations

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from config import PulseConfig
from pulse import metrics
from pulse.active_hours import is_in_active_hours
from pulse.budget import BudgetLedger
from pulse.compass import CompassReader
from pulse.domain import (
    CompletedOutcome,
    EndSignal,
    FailedOutcome,
    PulseEntity,
    PulseWakeResult,
    SkippedOutcome,
    SkipReason,
    WakeOptions,
)
from pulse.end_signal import EndSignalMailbox
from pulse.liveness import ConversationLiveness
from pulse.log_store import PulseLogStore
from pulse.prompt import WakePromptOptions, build_wake_prompt
from pulse.recovery import cleanup_stuck_pulse_logs
from pulse.task_context import TaskContextStore
from pulse.usage import count_tool_calls, parse_token_usage
from services.agent_client import AgentClient, AgentRequest
from time_utils import utc_now

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _GuardRefusal:
    reason: SkipReason
    detail: str


class PulseOrchestrator:
    """Runs one wake attempt for one entity."""

    def __init__(
        self,
        *,
        log_store: PulseLogStore,
        budget: BudgetLedger,
        liveness: ConversationLiveness,
        task_contexts: TaskContextStore,
        end_signals: EndSignalMailbox,
        compass: CompassReader,
        agent: AgentClient,
        config: PulseConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._log_store = log_store
        self._budget = budget
        self._liveness = liveness
        self._task_contexts = task_contexts
        self._end_signals = end_signals
        self._compass = compass
        self._agent = agent
        self._config = config
        self._clock = clock

    def _max_chain_depth(self, entity: PulseEntity) -> int:
        if entity.pulse.max_chain_depth is not None:
            return entity.pulse.max_chain_depth
        return self._config.default_max_chain_depth

    def run_pulse_wake(
        self,
        entity: PulseEntity,
        options: WakeOptions,
        logger: logging.Logger | None = None,
    ) -> PulseWakeResult:
        """Run one attempt and return the signal for the chain scheduler.

        Log creation failures propagate; everything after is caught and
        recorded as ``failed:error``.
        """
        log = logger or LOGGER
        log_id = self._log_store.create(
            entity,
            wake_type=options.wake_type,
            chain_depth=options.chain_depth,
            task_context=options.task_context,
        )
        started = time.monotonic()

        try:
            refusal = self._check_guards(entity, options)
            if refusal is not None:
                self._log_store.update_terminal(
                    log_id,
                    SkippedOutcome(reason=refusal.reason, duration_ms=_elapsed_ms(started)),
                )
                log.info("Skipping pulse for %s: %s", entity.name, refusal.detail)
                metrics.record_wake("skipped", refusal.reason.value)
                return PulseWakeResult.skipped(refusal.reason)
            return self._wake(entity, options, log_id, started, log)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            log.error("Pulse for %s failed: %s", entity.name, message, exc_info=True)
            try:
                self._log_store.update_terminal(
                    log_id,
                    FailedOutcome(
                        end_signal=EndSignal.ERROR,
                        error=message,
                        duration_ms=_elapsed_ms(started),
                    ),
                )
            except Exception:  # noqa: BLE001
                LOGGER.exception("Could not record failure on pulse log %s", log_id)
            metrics.record_wake("error")
            return PulseWakeResult.failed(message)

    def _check_guards(
        self, entity: PulseEntity, options: WakeOptions
    ) -> _GuardRefusal | None:
        """Return the first guard that refuses the wake, if any."""
        if self._liveness.is_entity_active(entity.id):
            return _GuardRefusal(SkipReason.ACTIVE_CONVERSATION, "active conversation")

        budget = self._budget.check(entity.id, entity.pulse)
        if budget.exhausted:
            return _GuardRefusal(
                SkipReason.BUDGET_EXHAUSTED,
                f"daily budget exhausted ({budget.wakes} wakes, {budget.tokens} tokens)",
            )

        if not is_in_active_hours(entity.pulse, self._clock()):
            return _GuardRefusal(SkipReason.OUTSIDE_ACTIVE_HOURS, "outside active hours")

        max_chain_depth = self._max_chain_depth(entity)
        if options.chain_depth >= max_chain_depth:
            return _GuardRefusal(
                SkipReason.MAX_CHAIN_DEPTH,
                f"max chain depth ({options.chain_depth}/{max_chain_depth})",
            )
        return None

    def _gather_context(
        self, entity_id: str
    ) -> tuple[datetime | None, str | None, str | None]:
        """Fetch last wake time, persisted note, and compass concurrently."""
        calls = (
            (self._log_store.last_wake_time, entity_id),
            (self._task_contexts.get, entity_id),
            (self._compass.get_compass, entity_id),
        )
        with ThreadPoolExecutor(max_workers=len(calls)) as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, fn, arg) for fn, arg in calls
            ]
            last_wake_time, persisted, compass = (future.result() for future in futures)
        return last_wake_time, persisted, compass

    def _wake(
        self,
        entity: PulseEntity,
        options: WakeOptions,
        log_id: int,
        started: float,
        log: logging.Logger,
    ) -> PulseWakeResult:
        recovered = cleanup_stuck_pulse_logs(
            self._log_store,
            entity.id,
            threshold_minutes=self._config.stuck_log_threshold_minutes,
            clock=self._clock,
        )
        last_wake_time, persisted, compass = self._gather_context(entity.id)
        task_context = options.task_context or persisted or recovered

        prompt = build_wake_prompt(
            entity,
            WakePromptOptions(
                wake_type=options.wake_type,
                chain_depth=options.chain_depth,
                max_chain_depth=self._max_chain_depth(entity),
                task_context=task_context,
                last_wake_time=last_wake_time,
                compass=compass,
                recovery_notice=recovered is not None,
            ),
            now=self._clock(),
        )

        log.info(
            "Waking %s (%s, chain=%d)",
            entity.name,
            options.wake_type.value,
            options.chain_depth,
        )
        # A signal left over from an earlier failed call belongs to that attempt.
        if self._end_signals.consume(entity.id) is not None:
            log.info("Discarded a stale end signal for %s", entity.name)
        result = self._agent.invoke(
            AgentRequest(
                prompt=prompt,
                entity_id=entity.id,
                entity_name=entity.name,
                model=entity.resolve_model(self._config.default_model),
            )
        )
        duration_ms = _elapsed_ms(started)

        end_message = self._end_signals.consume(entity.id)

        usage = parse_token_usage(result.result_data)
        if usage.malformed:
            metrics.record_usage_parse_failure()
        self._budget.increment(entity.id, usage.total_tokens)
        metrics.record_tokens(usage.total_tokens)
        tool_call_count = count_tool_calls(result.result_data)

        if end_message is not None:
            self._log_store.update_terminal(
                log_id,
                CompletedOutcome(
                    end_signal=EndSignal.REST,
                    duration_ms=duration_ms,
                    task_context=end_message.task_context or None,
                    reflection=end_message.reflection or None,
                    token_usage=usage.to_log_payload(),
                    tool_call_count=tool_call_count,
                ),
            )
            self._task_contexts.clear_if_unchanged(entity.id, persisted)
            log.info(
                "%s resting%s",
                entity.name,
                " (has task context for next wake)" if end_message.task_context else "",
            )
            metrics.record_wake("rest")
            return PulseWakeResult.rest(end_message)

        auto_context = (result.result or "")[: self._config.auto_task_context_max_chars] or None
        self._task_contexts.set(entity.id, auto_context)
        self._log_store.update_terminal(
            log_id,
            CompletedOutcome(
                end_signal=EndSignal.TOOL_LIMIT,
                duration_ms=duration_ms,
                task_context=auto_context,
                token_usage=usage.to_log_payload(),
                tool_call_count=tool_call_count,
            ),
        )
        log.info("%s hit tool budget; will auto-continue", entity.name)
        metrics.record_wake("continue")
        return PulseWakeResult.continue_with(options.chain_depth + 1, auto_context)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
