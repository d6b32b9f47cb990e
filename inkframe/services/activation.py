import os
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

DEFAULT_TIMEZONE = os.getenv("INKFRAME_TIMEZONE", "UTC").strip() or "UTC"

logger = logging.getLogger(__name__)


def resolve_zone(name: str | None) -> ZoneInfo:
    candidate = (name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", candidate, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_now(now: datetime, tz: str | None) -> datetime:
    """Convert `now` to wall-clock time in `tz`. Naive values are UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_zone(tz))


def day_of_week(moment: datetime) -> int:
    # 0 = Sunday .. 6 = Saturday
    return (moment.weekday() + 1) % 7


def time_in_window(current: time, active_from: time, active_until: time) -> bool:
    if active_from > active_until:
        return current >= active_from or current <= active_until
    return active_from <= current <= active_until


def is_active_at(
    now: datetime,
    tz: str | None,
    weekdays: list[int] | None = None,
    active_from: time | None = None,
    active_until: time | None = None,
) -> bool:
    local = local_now(now, tz)
    if weekdays is not None and day_of_week(local) not in {int(day) for day in weekdays}:
        return False
    if active_from is not None and active_until is not None:
        return time_in_window(local.time(), active_from, active_until)
    return True
