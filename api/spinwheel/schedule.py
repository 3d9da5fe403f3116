import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleStatus:
    open: bool
    next_open_display: str | None = None


def _to_minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def _format_time(hhmm: str) -> str:
    # "22:00" -> "10:00 PM"
    h, m = (int(x) for x in hhmm.split(":"))
    period = "PM" if h >= 12 else "AM"
    hour12 = 12 if h == 0 else (h - 12 if h > 12 else h)
    return f"{hour12}:{m:02d} {period}"


def is_open(
    schedule_start: str | None,
    schedule_end: str | None,
    tz: str | None = "America/New_York",
    now: datetime | None = None,
) -> ScheduleStatus:
    """Daily time-of-day window check; a window with start > end crosses midnight."""
    if not schedule_start or not schedule_end:
        return ScheduleStatus(open=True)

    now = now or datetime.now(timezone.utc)
    try:
        local = now.astimezone(ZoneInfo(tz or "America/New_York"))
    except ZoneInfoNotFoundError:
        logger.warning("Unknown schedule timezone %r, treating window as open", tz)
        return ScheduleStatus(open=True)

    current = local.hour * 60 + local.minute
    start = _to_minutes(schedule_start)
    end = _to_minutes(schedule_end)

    if start <= end:
        available = start <= current < end
    else:
        # e.g. 22:00 - 02:00
        available = current >= start or current < end

    return ScheduleStatus(
        open=available,
        next_open_display=None if available else _format_time(schedule_start),
    )
