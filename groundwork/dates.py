"""Date bucket keys — day / week / month / year strings used by all analytics.

Keys are derived from local wall-clock fields only:
  day   "YYYY-MM-DD"
  week  day key of the Sunday that starts the week
  month "YYYY-MM"
  year  "YYYY"
"""

from datetime import date, datetime, timezone, timedelta

from groundwork.config import TIMEZONE_OFFSET_HOURS

TZ = timezone(timedelta(hours=TIMEZONE_OFFSET_HOURS))


def to_date_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def week_start(d: date) -> date:
    """Sunday on or before d, clamped to date.min."""
    if isinstance(d, datetime):
        d = d.date()
    # weekday(): Monday=0 … Sunday=6
    offset = (d.weekday() + 1) % 7
    if d.toordinal() <= offset:
        return date.min
    return d - timedelta(days=offset)


def week_end(ws: date) -> date:
    """Saturday closing the week that starts at ws, clamped to date.max."""
    if ws > date.max - timedelta(days=6):
        return date.max
    return ws + timedelta(days=6)


def week_start_key(d: date) -> str:
    return to_date_key(week_start(d))


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def year_key(d: date) -> str:
    return f"{d.year:04d}"


def sunday_index(d: date) -> int:
    """Day of week with Sunday=0 … Saturday=6."""
    return (d.weekday() + 1) % 7


def parse_date_key(key: str) -> date | None:
    try:
        return date.fromisoformat(key)
    except (TypeError, ValueError):
        return None


def parse_timestamp(raw) -> datetime | None:
    """Parse an ISO-8601 timestamp into a naive local datetime.

    Aware timestamps are shifted to the configured offset first; naive ones
    are taken as already local. Returns None for anything unparseable.
    """
    if not raw:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(raw).strip())
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(TZ).replace(tzinfo=None)
        except OverflowError:
            return None
    return parsed


def today_local() -> date:
    return datetime.now(TZ).date()


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative when end is earlier)."""
    return (end - start).days


def last_n_day_keys(today: date, n: int = 7) -> list[str]:
    """Day keys for the n days ending at today, oldest first."""
    return [to_date_key(today - timedelta(days=n - 1 - i)) for i in range(n)]
