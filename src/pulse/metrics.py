"""OpenTelemetry instruments for Pulse wakes.

The API is a no-op until an SDK meter provider is installed by the process.
"""

from __future__ import annotations

from opentelemetry import metrics

_METER = metrics.get_meter("pulse")

WAKES_TOTAL = _METER.create_counter(
    "pulse_wakes_total",
    description="Pulse wake attempts by returned signal and skip reason.",
)
USAGE_PARSE_FAILURES_TOTAL = _METER.create_counter(
    "pulse_usage_parse_failures_total",
    description="Agent results whose usage data could not be parsed.",
)
TOKENS_TOTAL = _METER.create_counter(
    "pulse_tokens_total",
    description="Tokens charged to entity budgets.",
)


def record_wake(signal: str, reason: str | None = None) -> None:
    WAKES_TOTAL.add(1, attributes={"signal": signal, "reason": reason or "none"})


def record_usage_parse_failure() -> None:
    USAGE_PARSE_FAILURES_TOTAL.add(1)


def record_tokens(count: int) -> None:
    # Unlabeled; per-entity totals live in the budget hashes and wake logs.
    if count > 0:
        TOKENS_TOTAL.add(count)
