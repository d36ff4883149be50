from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from together.settings import get_settings


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def app_zone() -> ZoneInfo:
    try:
        return ZoneInfo(get_settings().app_timezone)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def today() -> date:
    return datetime.now(app_zone()).date()


def parse_day(value) -> date:
    """Accept a date, a datetime or an ISO string and return the calendar day."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(app_zone()).date()
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValueError("Invalid date")
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_day(datetime.fromisoformat(text.replace("Z", "+00:00")))


def parse_timestamp(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def week_bounds(day: date) -> tuple[date, date]:
    # Weeks run Sunday through Saturday.
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def same_week(a: date, b: date) -> bool:
    return week_bounds(a)[0] == week_bounds(b)[0]


def timestamp_day(value) -> date | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(app_zone()).date()
