"""Active-hours window evaluation."""

from __future__ import annotations

from datetime import datetime

from pulse.domain import ActiveHours, EntityPulseConfig
from time_utils import to_zone, utc_now


def is_in_window(active_hours: ActiveHours | None, local_time: str) -> bool:
    """Compare an ``HH:MM`` wall-clock time against the window lexically.

    A window whose start sorts after its end wraps past midnight.
    """
    if active_hours is None or not active_hours.start or not active_hours.end:
        return True
    start, end = active_hours.start, active_hours.end
    if start <= end:
        return start <= local_time <= end
    return local_time >= start or local_time <= end


def is_in_active_hours(config: EntityPulseConfig, now: datetime | None = None) -> bool:
    """Return whether ``now`` falls inside the entity's active hours.

    Entities without a complete window are always active. An unknown
    timezone name raises ``ValueError``.
    """
    active_hours = config.active_hours
    if active_hours is None or not active_hours.start or not active_hours.end:
        return True
    local = to_zone(now or utc_now(), active_hours.timezone)
    return is_in_window(active_hours, local.strftime("%H:%M"))
