import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

_YMD_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$", re.ASCII)
_YMD_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})", re.ASCII)
_MDY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", re.ASCII)

ONE_DAY = timedelta(days=1)


def parse_calendar_date(s: Any) -> Optional[date]:
    """
    Strict YYYY-MM-DD. Returns None (never raises) for anything else,
    including well-formed strings naming impossible dates like 2024-02-30.
    """
    if not isinstance(s, str):
        return None
    m = _YMD_RE.match(s.strip())
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def to_ymd(s: Any) -> str:
    if not s:
        return ""
    s = str(s).strip()
    # YYYY-MM-DD, possibly followed by a time part
    m1 = _YMD_PREFIX_RE.match(s)
    if m1:
        return f"{m1.group(1)}-{m1.group(2)}-{m1.group(3)}"
    # MM/DD/YYYY
    m2 = _MDY_RE.match(s)
    if m2:
        mm = m2.group(1).zfill(2)
        dd = m2.group(2).zfill(2)
        return f"{m2.group(3)}-{mm}-{dd}"
    return ""


def night_count(arrival: date, departure: date) -> int:
    return max(0, (departure - arrival).days)


def overlaps(arrival: date, departure: date, date_from: date, date_to: date) -> bool:
    """Stay [arrival, departure) against the inclusive range [date_from, date_to]."""
    return max(arrival, date_from) < min(departure, date_to + ONE_DAY)


def clamped_nights_in_range(arrival: date, departure: date, date_from: date, date_to: date) -> int:
    start = max(arrival, date_from)
    end = min(departure, date_to + ONE_DAY)
    return max(0, (end - start).days)


def format_display_date(d: Any) -> str:
    """MM/DD/YYYY in UTC; "" when the value is not a recognizable date."""
    if isinstance(d, datetime):
        if d.tzinfo is not None:
            d = d.astimezone(timezone.utc)
        d = d.date()
    elif not isinstance(d, date):
        d = _parse_isoish(d)
        if d is None:
            return ""
    return f"{d.month:02d}/{d.day:02d}/{d.year:04d}"


def _parse_isoish(value: Any) -> Optional[date]:
    if not value:
        return None
    s = str(value).strip()
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return parse_calendar_date(to_ymd(s))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date()
