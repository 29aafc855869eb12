"""
Date Helpers

Parsing for the loosely formatted dates found in the schedule and yard feeds,
day/week arithmetic against "today", and the date windows used by the KPI
cards and the on-the-road list.

All results are naive local datetimes. Timezone-aware inputs (ISO strings
ending in Z or an offset) are converted to local time first.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Union

DateLike = Union[datetime, date, str, int, float, None]

_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")
_YMD_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")

# Tried after the dd/mm/yyyy and yyyy-mm-dd patterns and ISO parsing
_FALLBACK_FORMATS = (
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%a %b %d %Y",
)

PRESET_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}
DEFAULT_PRESET = "7d"

END_OF_DAY = time(23, 59, 59, 999000)


# =============================================================================
# PARSING
# =============================================================================

def _build_date(year: int, month: int, day: int) -> Optional[datetime]:
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def _from_epoch(value: float) -> Optional[datetime]:
    # Values below 1e12 are seconds, above are milliseconds
    seconds = value if abs(value) < 1e12 else value / 1000.0
    try:
        return datetime.fromtimestamp(seconds)
    except (OverflowError, OSError, ValueError):
        return None


def parse_iso_datetime(value: DateLike) -> Optional[datetime]:
    """
    Parse an ISO timestamp (or epoch number) to a naive local datetime.

    Args:
        value: ISO string, datetime, date, or epoch seconds/milliseconds

    Returns:
        datetime object or None if parsing fails
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        return _from_epoch(float(value))
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_flexible_date(text: DateLike) -> Optional[datetime]:
    """
    Parse the date formats that appear across the schedule feed.

    Accepts dd/mm/yyyy (a two digit year gets 2000 added), yyyy-mm-dd, ISO
    timestamps, and a few written formats. Calendar-invalid dates such as
    31/02/2024 return None rather than rolling over.

    Args:
        text: Raw date value

    Returns:
        datetime object or None if the value is empty or unparseable
    """
    if isinstance(text, (datetime, date, int, float)) and not isinstance(text, bool):
        return parse_iso_datetime(text)

    if text is None:
        return None

    raw = str(text).strip()
    if not raw:
        return None

    match = _DMY_RE.match(raw)
    if match:
        day, month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        return _build_date(year, month, day)

    match = _YMD_RE.match(raw)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _build_date(year, month, day)

    parsed = parse_iso_datetime(raw)
    if parsed:
        return parsed

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue

    return None


def parse_dd_mm_yyyy(text: DateLike) -> Optional[datetime]:
    """Parse the PGI feed's dd/mm/yyyy dates only."""
    if text is None:
        return None
    match = _DMY_RE.match(str(text).strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    return _build_date(year, month, day)


# =============================================================================
# ARITHMETIC
# =============================================================================

def _today(today: Optional[date]) -> date:
    if today is None:
        return date.today()
    if isinstance(today, datetime):
        return today.date()
    return today


def days_from_today(value: DateLike, today: Optional[date] = None) -> Optional[int]:
    """
    Signed whole days between a date and today, both taken at midnight.

    Returns:
        Positive for future dates, negative for past, None if unparseable
    """
    parsed = parse_flexible_date(value)
    if parsed is None:
        return None
    return (parsed.date() - _today(today)).days


def weeks_until(value: DateLike, today: Optional[date] = None) -> Optional[float]:
    """Fractional weeks until a date (negative when in the past)."""
    days = days_from_today(value, today)
    if days is None:
        return None
    return days / 7.0


def days_since(value: DateLike, now: Optional[datetime] = None) -> int:
    """
    Whole days elapsed since a timestamp, never negative.

    Missing or unparseable input counts as 0 days. Future timestamps
    (clock skew between devices) are clamped to 0.
    """
    parsed = parse_iso_datetime(value) or parse_flexible_date(value)
    if parsed is None:
        return 0
    elapsed = (now or datetime.now()) - parsed
    return max(0, elapsed.days)


def format_days_escaped(value: DateLike, now: Optional[datetime] = None) -> str:
    """Days since a date for display, '-' when the date can't be read."""
    parsed = parse_flexible_date(value)
    if parsed is None:
        return "-"
    return str(days_since(parsed, now))


def format_date_only(value: DateLike) -> str:
    parsed = parse_flexible_date(value)
    if parsed is None:
        return "-"
    return parsed.strftime("%d/%m/%Y")


def start_of_week_monday(value: Union[date, datetime]) -> datetime:
    """Midnight on the Monday of the week containing ``value``."""
    day = value.date() if isinstance(value, datetime) else value
    monday = day - timedelta(days=day.weekday())
    return datetime.combine(monday, time.min)


def is_within_range(
    value: Optional[datetime],
    start: Optional[datetime],
    end: Optional[datetime]
) -> bool:
    """Inclusive range check. Missing bounds are open, a missing value is out."""
    if value is None:
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


# =============================================================================
# DATE WINDOWS
# =============================================================================

class DateWindow:
    """
    An inclusive [start, end] window used for KPI and list filtering.

    Usage:
        >>> window = DateWindow.preset("30d")
        >>> window.contains(datetime.now())
        True
    """

    def __init__(self, start: datetime, end: datetime, label: str = "custom"):
        self.start = start
        self.end = end
        self.label = label

    @classmethod
    def preset(cls, name: str, today: Optional[date] = None) -> "DateWindow":
        """
        Build a 'last N days' window ending today.

        Args:
            name: One of '7d', '30d', '90d'

        Raises:
            ValueError: For an unknown preset name
        """
        if name not in PRESET_DAYS:
            raise ValueError(f"Unknown date preset '{name}'. Expected one of {list(PRESET_DAYS)}")

        day = _today(today)
        start = datetime.combine(day - timedelta(days=PRESET_DAYS[name] - 1), time.min)
        end = datetime.combine(day, END_OF_DAY)
        return cls(start, end, name)

    @classmethod
    def custom(cls, start: DateLike, end: DateLike) -> "DateWindow":
        """Custom window; the end is pushed to 23:59:59.999 of its day."""
        start_dt = parse_flexible_date(start)
        end_dt = parse_flexible_date(end)
        if start_dt is not None:
            start_dt = datetime.combine(start_dt.date(), time.min)
        if end_dt is not None:
            end_dt = datetime.combine(end_dt.date(), END_OF_DAY)
        return cls(start_dt, end_dt, "custom")

    @classmethod
    def default(cls, today: Optional[date] = None) -> "DateWindow":
        return cls.preset(DEFAULT_PRESET, today)

    def contains(self, value: Optional[datetime]) -> bool:
        return is_within_range(value, self.start, self.end)

    def __repr__(self):
        return (
            f"DateWindow(\n"
            f"  label={self.label}\n"
            f"  start={self.start}\n"
            f"  end={self.end}\n"
            f")"
        )


def filter_by_date_field(
    records: List[dict],
    date_field: Union[str, Callable[[dict], DateLike]],
    window: DateWindow,
    parser: Callable[[DateLike], Optional[datetime]] = parse_flexible_date
) -> List[dict]:
    """
    Keep records whose date field falls inside the window.

    Args:
        records: List of record dictionaries
        date_field: Field name, or a callable returning the raw date
        window: Inclusive date window
        parser: Function used to parse the raw value

    Returns:
        Filtered list of records (records with unreadable dates are dropped)
    """
    if not records:
        return []

    filtered = []
    for record in records:
        raw = date_field(record) if callable(date_field) else record.get(date_field)
        if window.contains(parser(raw)):
            filtered.append(record)
    return filtered
