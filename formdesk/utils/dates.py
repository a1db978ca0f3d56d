from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from formdesk.core.config import settings
from formdesk.core.errors import ValidationError

TIME_FILTERS = ("today", "month", "all")


def report_tz() -> ZoneInfo:
    return ZoneInfo(settings.REPORT_TIMEZONE)


def _to_naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def since_for(time_filter: str | None, now: datetime | None = None) -> datetime | None:
    """Start of "today" / "this month" in the report timezone, as naive UTC.

    "all" (or nothing) means no lower bound.
    """
    tf = (time_filter or "all").strip().lower()
    if tf not in TIME_FILTERS:
        raise ValidationError(f"timeFilter must be one of: {', '.join(TIME_FILTERS)}")
    if tf == "all":
        return None
    tz = report_tz()
    local = (now or datetime.now(timezone.utc)).astimezone(tz)
    if tf == "today":
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    else:
        start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return _to_naive_utc(start)


def parse_day(value: str | None, field: str) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")


def day_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """Inclusive [start day, end day] in the report timezone -> naive UTC [lo, hi)."""
    tz = report_tz()
    lo = hi = None
    d1 = parse_day(start, "startDate")
    d2 = parse_day(end, "endDate")
    if d1:
        lo = _to_naive_utc(datetime.combine(d1, time.min, tzinfo=tz))
    if d2:
        hi = _to_naive_utc(datetime.combine(d2 + timedelta(days=1), time.min, tzinfo=tz))
    if lo and hi and lo >= hi:
        raise ValidationError("startDate must not be after endDate")
    return lo, hi


def local_hour(dt: datetime) -> int:
    """Hour of day in the report timezone for a naive UTC timestamp."""
    return dt.replace(tzinfo=timezone.utc).astimezone(report_tz()).hour


def format_hour(hour: int) -> str:
    period = "PM" if hour >= 12 else "AM"
    display = hour % 12 or 12
    return f"{display} {period}"


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")
