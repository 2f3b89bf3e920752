from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from aisecretary.core.config import get_settings
from aisecretary.core.errors import ValidationError


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def business_tz() -> ZoneInfo:
    return _zone(get_settings().business_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: datetime | date | str, *, field: str = "timestamp") -> datetime:
    # Accept ISO strings, dates and datetimes; naive values are read in the business zone.
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO-8601 date or datetime", field=field) from exc
    else:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime", field=field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=business_tz())
    return parsed


def parse_day(value: date | datetime | str, *, field: str = "date") -> date:
    # Day strings stay literal; datetimes resolve to their business-zone calendar day.
    if isinstance(value, datetime):
        return local_day(value)
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"{field} must be YYYY-MM-DD", field=field) from exc
    return local_day(parse_datetime(value, field=field))


def local_day(moment: datetime) -> date:
    return moment.astimezone(business_tz()).date()


def day_key(day: date) -> str:
    return day.isoformat()


def month_key(moment: datetime) -> str:
    # Usage months follow UTC so every process agrees on the rollover instant.
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def shift_month(moment: datetime, months_back: int) -> str:
    year = moment.astimezone(timezone.utc).year
    month = moment.astimezone(timezone.utc).month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return f"{year:04d}-{month:02d}"


def next_month_start(moment: datetime) -> datetime:
    current = moment.astimezone(timezone.utc)
    if current.month == 12:
        return datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)


def days_between(start: date, end: date) -> list[date]:
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
