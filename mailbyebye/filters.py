"""
Date filters: which messages a run targets.

A filter is either a cutoff (everything strictly before a day) or an
inclusive day range no longer than a year.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from mailbyebye.config import MAX_RANGE_DAYS
from mailbyebye.errors import ConflictingFilter, InvalidRange, ValidationError

MODE_CUTOFF = "cutoff"
MODE_RANGE = "range"

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d-%b-%Y")


@dataclass(frozen=True)
class DateFilter:
    mode: str
    cutoff: date = None
    start: date = None
    end: date = None

    def __post_init__(self):
        if self.mode == MODE_CUTOFF:
            if self.cutoff is None or self.start is not None or self.end is not None:
                raise ConflictingFilter("A cutoff filter takes a cutoff date only")
        elif self.mode == MODE_RANGE:
            if self.start is None or self.end is None:
                raise InvalidRange("A date range needs both a start and an end date")
            if self.cutoff is not None:
                raise ConflictingFilter("A range filter can't also carry a cutoff date")
            if self.start > self.end:
                raise InvalidRange(f"Start date {self.start} is after end date {self.end}")
            span = (self.end - self.start).days
            if span > MAX_RANGE_DAYS:
                raise InvalidRange(
                    f"Date range spans {span} days, the maximum is {MAX_RANGE_DAYS}"
                )
        else:
            raise ValidationError(f"Unknown filter mode: {self.mode!r}")

    @classmethod
    def before(cls, cutoff):
        return cls(MODE_CUTOFF, cutoff=cutoff)

    @classmethod
    def between(cls, start, end):
        return cls(MODE_RANGE, start=start, end=end)

    @property
    def is_range(self):
        return self.mode == MODE_RANGE

    def describe(self):
        if self.is_range:
            return f"{self.start.isoformat()} to {self.end.isoformat()}"
        return f"before {self.cutoff.isoformat()}"


def parse_date(value):
    """Parse a date string in any of the accepted formats."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationError(
        f"Can't read date {text!r}",
        usage="dates look like 2024-01-31, 2024/01/31 or 31-Jan-2024",
    )


def year_range(year):
    """Jan 1 - Dec 31 of a single year."""
    try:
        year = int(str(year).strip())
    except ValueError:
        raise ValidationError(f"Not a year: {year!r}", usage="--year YYYY")
    try:
        return date(year, 1, 1), date(year, 12, 31)
    except ValueError:
        raise ValidationError(f"Year {year} is out of range", usage="--year 2019")


def build_date_filter(days=None, cutoff=None, start=None, end=None, today=None):
    """
    Normalize the filter arguments into one DateFilter.

    Args:
        days: Age in days; everything older is matched
        cutoff: Absolute cutoff date; everything before it is matched
        start, end: Inclusive range, both required

    Returns:
        DateFilter

    Raises:
        ConflictingFilter: a range and a cutoff-style argument together,
            or both cutoff-style arguments
        InvalidRange: half a range, reversed range, or range over 365 days
        ValidationError: nothing given, or unreadable values
    """
    has_range = start is not None or end is not None
    has_cutoff = days is not None or cutoff is not None

    if has_range and has_cutoff:
        raise ConflictingFilter("A date range can't be combined with --days or --cutoff")
    if days is not None and cutoff is not None:
        raise ConflictingFilter("Use either --days or --cutoff, not both")

    if has_range:
        if start is None or end is None:
            raise InvalidRange("Both a start and an end date are required for a range")
        return DateFilter.between(parse_date(start), parse_date(end))

    if days is not None:
        try:
            days = int(days)
        except (TypeError, ValueError):
            raise ValidationError(f"--days must be a whole number, got {days!r}", usage="--days 365")
        if days < 1:
            raise ValidationError("--days must be at least 1", usage="--days 365")
        today = today or date.today()
        try:
            cutoff_day = today - timedelta(days=days)
        except OverflowError:
            raise ValidationError(f"--days {days} reaches past the earliest possible date", usage="--days 365")
        return DateFilter.before(cutoff_day)

    if cutoff is not None:
        return DateFilter.before(parse_date(cutoff))

    raise ValidationError(
        "No date filter given",
        usage="one of --days N, --cutoff DATE, --start DATE --end DATE, --year YYYY",
    )


def gmail_query(date_filter):
    """
    Gmail search terms for a filter.

    Gmail's after: is inclusive and before: is exclusive, so the inclusive
    range end becomes the following day.
    """
    if date_filter.is_range:
        after = date_filter.start.strftime('%Y/%m/%d')
        before = (date_filter.end + timedelta(days=1)).strftime('%Y/%m/%d')
        return f"after:{after} before:{before}"
    return f"before:{date_filter.cutoff.strftime('%Y/%m/%d')}"


def vault_time_bounds(date_filter):
    """(startTime, endTime) RFC3339 strings for a Vault query; start may be None."""
    if date_filter.is_range:
        start = f"{date_filter.start.isoformat()}T00:00:00Z"
        end = f"{(date_filter.end + timedelta(days=1)).isoformat()}T00:00:00Z"
        return start, end
    return None, f"{date_filter.cutoff.isoformat()}T00:00:00Z"
