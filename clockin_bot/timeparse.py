import datetime as dt
import re
from datetime import timedelta

from .errors import InvalidFormat

DATE_FMT = "%m/%d/%Y"

TIME_EXAMPLE = "7:30 AM"
DATE_EXAMPLE = "05/29/2024"
RANGE_EXAMPLE = "05/01/2024-05/31/2024"

# 7:30 AM | 7:30 | 730 AM | 19:30 | 7 | 7pm | 7:30 p.m.
TIME_RE = re.compile(r"^(\d{1,2})(?::?(\d{2}))?\s*(?:([ap])\.?\s*m\.?)?$", re.IGNORECASE)
US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")  # MM/DD/YYYY
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")  # YYYY-MM-DD
_DATE_TOKEN = r"(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2})"
RANGE_RE = re.compile(rf"^{_DATE_TOKEN}\s*(?:-|~|to)\s*{_DATE_TOKEN}$", re.IGNORECASE)

NAMED_RANGES = ("today", "yesterday", "this week", "last week", "this month", "last month")
MAX_RANGE_DAYS = 366


# =========================================================
# time of day
# =========================================================

def parse_clock(text: str) -> dt.time:
    """Parse free-form clock text into a time of day.

    Without a meridiem the hour decides: 0-11 is AM, 12-23 is PM (24-hour
    input). With a meridiem the hour must be 1-12.
    """
    m = TIME_RE.match((text or "").strip())
    if not m:
        raise InvalidFormat("time", TIME_EXAMPLE)
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    meridiem = (m.group(3) or "").lower()
    if minute > 59:
        raise InvalidFormat("time", TIME_EXAMPLE)

    if meridiem:
        if not 1 <= hour <= 12:
            raise InvalidFormat("time", TIME_EXAMPLE)
        if meridiem == "a":
            hour = 0 if hour == 12 else hour
        else:
            hour = 12 if hour == 12 else hour + 12
    elif hour > 23:
        raise InvalidFormat("time", TIME_EXAMPLE)

    return dt.time(hour, minute)


def format_clock(t: dt.time) -> str:
    h12 = t.hour % 12 or 12
    return f"{h12}:{t.minute:02d} {'AM' if t.hour < 12 else 'PM'}"


def canonical_time(text: str | None, now: dt.datetime | None = None) -> str:
    """Canonical ``h:mm AM/PM`` for ``text``; blank text means ``now``."""
    if not (text or "").strip():
        if now is None:
            raise InvalidFormat("time", TIME_EXAMPLE)
        return format_clock(now.time())
    return format_clock(parse_clock(text))


def clock_minutes(text: str) -> int | None:
    """Minutes since midnight for stored clock text, None when unparseable."""
    try:
        t = parse_clock(text)
    except InvalidFormat:
        return None
    return t.hour * 60 + t.minute


# =========================================================
# dates and ranges
# =========================================================

def parse_date(text: str) -> dt.date:
    s = (text or "").strip()
    m = US_DATE_RE.match(s)
    try:
        if m:
            return dt.date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        m = ISO_DATE_RE.match(s)
        if m:
            return dt.date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        pass
    raise InvalidFormat("date", DATE_EXAMPLE)


def format_date(d: dt.date) -> str:
    return d.strftime(DATE_FMT)


# --- Monday-based week containing d ---
def week_bounds(d: dt.date) -> tuple[dt.date, dt.date]:
    start = d - timedelta(days=d.weekday())
    return start, start + timedelta(days=6)


def month_bounds(d: dt.date) -> tuple[dt.date, dt.date]:
    start = d.replace(day=1)
    nxt = (start + timedelta(days=32)).replace(day=1)
    return start, nxt - timedelta(days=1)


def named_range(name: str, today: dt.date) -> tuple[dt.date, dt.date] | None:
    n = " ".join(name.lower().split())
    if n == "today":
        return today, today
    if n == "yesterday":
        y = today - timedelta(days=1)
        return y, y
    if n == "this week":
        return week_bounds(today)
    if n == "last week":
        return week_bounds(today - timedelta(days=7))
    if n == "this month":
        return month_bounds(today)
    if n == "last month":
        return month_bounds(today.replace(day=1) - timedelta(days=1))
    return None


def resolve_range(text: str | None, today: dt.date) -> tuple[dt.date, dt.date]:
    """Inclusive (start, end) for a date, ``start-end`` or a named range.

    Blank text means today.
    """
    s = (text or "").strip()
    if not s:
        return today, today

    named = named_range(s, today)
    if named:
        return named

    if ISO_DATE_RE.match(s) or US_DATE_RE.match(s):
        d = parse_date(s)
        return d, d

    m = RANGE_RE.match(s)
    if not m:
        raise InvalidFormat("date or range", RANGE_EXAMPLE)
    try:
        start, end = parse_date(m.group(1)), parse_date(m.group(2))
    except InvalidFormat:
        raise InvalidFormat("date or range", RANGE_EXAMPLE) from None
    if end < start:
        raise InvalidFormat("range (end is before start)", RANGE_EXAMPLE)
    if (end - start).days + 1 > MAX_RANGE_DAYS:
        raise InvalidFormat(f"range (at most {MAX_RANGE_DAYS} days)", RANGE_EXAMPLE)
    return start, end


def iter_dates(start: dt.date, end: dt.date):
    cur = start
    one = timedelta(days=1)
    while cur <= end:
        yield cur
        cur += one


def describe_range(start: dt.date, end: dt.date) -> str:
    if start == end:
        return format_date(start)
    return f"{format_date(start)} - {format_date(end)}"
