"""Time zone helpers for UTC storage and per-entity local presentation."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Return the current aware UTC time."""
    return datetime.now(timezone.utc)


def get_timezone(timezone_name: str | None) -> ZoneInfo:
    """Return the named timezone, defaulting to UTC when unset."""
    name = (timezone_name or "UTC").strip() or "UTC"
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {name}") from exc


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC, which is how they are stored."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_zone(value: datetime, timezone_name: str | None) -> datetime:
    """Convert a datetime to the named timezone."""
    return ensure_aware(value).astimezone(get_timezone(timezone_name))


def utc_date_key(value: datetime | None = None) -> str:
    """Return the UTC calendar day (YYYY-MM-DD) used to key daily counters."""
    moment = ensure_aware(value or utc_now())
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (accepting a trailing ``Z``) as aware UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return ensure_aware(datetime.fromisoformat(text))
