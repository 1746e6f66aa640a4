import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def window(self) -> tuple[datetime, datetime]:
        """Inclusive timestamp bounds: start 00:00:00.000 through end 23:59:59.999."""
        return (
            datetime.combine(self.start, time.min),
            datetime.combine(self.end, END_OF_DAY),
        )


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    try:
        first = date(year, month, 1)
    except ValueError as exc:
        raise ValidationError(f"invalid year: {year}") from exc
    last_day = calendar.monthrange(year, month)[1]
    return Period("month", first, first.replace(day=last_day))


def parse_date_param(value: Optional[str], name: str = "date") -> date:
    """Accepts `YYYY-MM-DD` or a full ISO timestamp and keeps the calendar day."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return _to_local_naive(datetime.fromisoformat(raw)).date()
    except ValueError as exc:
        raise ValidationError(f"{name} must be a valid date (ISO format)") from exc


def parse_timestamp(value: object, name: str = "date") -> datetime:
    if isinstance(value, datetime):
        return _to_local_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    raw = str(value).strip()
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a valid date (ISO format)") from exc
    return _to_local_naive(parsed)


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    tz = ZoneInfo(get_settings().timezone)
    return value.astimezone(tz).replace(tzinfo=None)


def resolve_range(start: Optional[str], end: Optional[str]) -> Period:
    start_date = parse_date_param(start, "from")
    end_date = parse_date_param(end, "to")
    if start_date > end_date:
        raise ValidationError("from must not be after to")
    return Period("range", start_date, end_date)


def resolve_optional_range(
    start: Optional[str], end: Optional[str]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Open-ended variant used by list filters; either bound may be missing."""
    lower = None
    upper = None
    if start:
        lower = datetime.combine(parse_date_param(start, "from"), time.min)
    if end:
        upper = datetime.combine(parse_date_param(end, "to"), END_OF_DAY)
    return lower, upper
