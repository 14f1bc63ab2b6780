import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, moment: datetime) -> bool:
        return self.start <= to_utc(moment).date() <= self.end


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_key(moment: datetime) -> str:
    moment = to_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    try:
        year_str, month_str = key.split("-", 1)
        year = int(year_str)
        month = int(month_str)
    except ValueError as exc:
        raise ValueError(f"Month key must be YYYY-MM, got {key!r}") from exc
    if len(year_str) != 4 or len(month_str) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Month key must be YYYY-MM, got {key!r}")
    return year, month


def days_in_month(moment: datetime) -> int:
    moment = to_utc(moment)
    return calendar.monthrange(moment.year, moment.month)[1]


def resolve_month(key: Optional[str] = None, *, now: Optional[datetime] = None) -> Period:
    if key is None:
        key = month_key(now or utc_now())
    year, month = parse_month_key(key)
    first = date(year, month, 1)
    if month == 12:
        next_month = first.replace(year=year + 1, month=1)
    else:
        next_month = first.replace(month=month + 1)
    return Period(key, first, next_month - date.resolution)
