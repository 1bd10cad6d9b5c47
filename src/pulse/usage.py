"""Token usage and tool-call extraction from agent result data.

Usage records come from several model providers, so each record may name
its counts differently:

- ``prompt_tokens`` / ``completion_tokens``
- ``input_tokens`` / ``output_tokens``
- ``promptTokenCount`` / ``candidatesTokenCount``

Bad data never fails a wake. It is charged as zero and flagged so the caller
can count it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)

PROMPT_FIELDS = ("prompt_tokens", "input_tokens", "promptTokenCount")
COMPLETION_FIELDS = ("completion_tokens", "output_tokens", "candidatesTokenCount")
TOOL_CALL_FIELDS = ("toolCalls", "tool_calls")


@dataclass(frozen=True)
class UsageSummary:
    """Token total across usage records."""

    total_tokens: int = 0
    record_count: int = 0
    malformed: bool = False

    def to_log_payload(self) -> dict[str, Any]:
        return {"total_tokens": self.total_tokens, "records": self.record_count}


class _MalformedUsage(ValueError):
    pass


def _decode(result_data: str | Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if result_data is None:
        return None
    if isinstance(result_data, str):
        if not result_data.strip():
            return None
        try:
            result_data = json.loads(result_data)
        except json.JSONDecodeError as exc:
            raise _MalformedUsage("result data is not JSON") from exc
    if not isinstance(result_data, Mapping):
        raise _MalformedUsage("result data is not an object")
    return result_data


def _first_count(record: Mapping[str, Any], fields: tuple[str, ...]) -> int:
    """First non-zero count among ``fields``."""
    for name in fields:
        value = record.get(name)
        if not value:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _MalformedUsage(f"{name} is not numeric")
        return int(value)
    return 0


def parse_token_usage(result_data: str | Mapping[str, Any] | None) -> UsageSummary:
    """Sum prompt plus completion tokens across every usage record."""
    try:
        data = _decode(result_data)
        if data is None:
            return UsageSummary()
        usage = data.get("usage")
        if usage is None:
            return UsageSummary()
        records = usage if isinstance(usage, list) else [usage]
        total = 0
        counted = 0
        for record in records:
            if record is None:
                continue
            if not isinstance(record, Mapping):
                raise _MalformedUsage("usage record is not an object")
            total += _first_count(record, PROMPT_FIELDS) + _first_count(record, COMPLETION_FIELDS)
            counted += 1
    except _MalformedUsage as exc:
        LOGGER.warning("Ignoring malformed usage data: %s", exc)
        return UsageSummary(malformed=True)
    return UsageSummary(total_tokens=total, record_count=counted)


def count_tool_calls(result_data: str | Mapping[str, Any] | None) -> int:
    """Number of tool calls reported in result data, zero when unknown."""
    try:
        data = _decode(result_data)
    except _MalformedUsage:
        return 0
    if data is None:
        return 0
    for name in TOOL_CALL_FIELDS:
        calls = data.get(name)
        if isinstance(calls, list):
            return len(calls)
    return 0
