"""Wake prompt assembly."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pulse.domain import PulseEntity, WakeType
from time_utils import ensure_aware, to_zone, utc_now

FOOTER = (
    "This is your time. You can think, write, build, explore, or rest.\n"
    "Use EndPulse when you're done with this wake."
)
RECOVERY_NOTICE = "Your previous cycle ended unexpectedly. Picking up where you left off."
CONTINUATION_NOTICE = "You are continuing from your previous cycle."


@dataclass(frozen=True)
class WakePromptOptions:
    """Everything about the attempt that shapes the prompt."""

    wake_type: WakeType
    chain_depth: int
    max_chain_depth: int
    task_context: str | None = None
    last_wake_time: datetime | None = None
    compass: str | None = None
    recovery_notice: bool = False


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_elapsed(last_wake_time: datetime | None, now: datetime) -> str:
    """Render time since the last wake, e.g. ``3 hours and 12 minutes``."""
    if last_wake_time is None:
        return "unknown"
    seconds = (ensure_aware(now) - ensure_aware(last_wake_time)).total_seconds()
    minutes = max(0, int(seconds // 60))
    if minutes < 60:
        return _plural(minutes, "minute")
    hours, remaining = divmod(minutes, 60)
    if remaining:
        return f"{_plural(hours, 'hour')} and {_plural(remaining, 'minute')}"
    return _plural(hours, "hour")


def format_timestamp(now: datetime, timezone_name: str | None) -> str:
    """Short wall-clock stamp like ``3:45 PM, Jun 5`` in the entity's timezone."""
    try:
        local = to_zone(now, timezone_name)
    except ValueError:
        local = to_zone(now, "UTC")
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {meridiem}, {local.strftime('%b')} {local.day}"


def build_wake_prompt(
    entity: PulseEntity,
    options: WakePromptOptions,
    *,
    now: datetime | None = None,
) -> str:
    """Compose the prompt for one wake; absent sections are left out."""
    moment = now or utc_now()
    active_hours = entity.pulse.active_hours
    timestamp = format_timestamp(moment, active_hours.timezone if active_hours else None)

    sections: list[str] = []
    if options.wake_type == WakeType.CONTINUE:
        sections.append(
            f"[PULSE WAKE - {timestamp} - cycle {options.chain_depth + 1} "
            f"of up to {options.max_chain_depth}]"
        )
        sections.append(CONTINUATION_NOTICE)
    else:
        sections.append(f"[PULSE WAKE - {timestamp}]")

    sections.append(f"You last woke {format_elapsed(options.last_wake_time, moment)} ago.")
    if options.recovery_notice:
        sections.append(RECOVERY_NOTICE)
    if entity.workspace_url:
        sections.append(f"Your workspace is available at {entity.workspace_url}.")
    if options.compass:
        sections.append(f"[Your Internal Compass]\n{options.compass}")
    if options.task_context:
        sections.append(f"You left yourself a note: {options.task_context}")
    sections.append(FOOTER)
    return "\n\n".join(sections)
