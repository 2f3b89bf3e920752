from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence

from aisecretary.core.errors import ValidationError
from aisecretary.core.timeutil import business_tz


# Business hours as minutes from midnight (09:00-18:00).
BUSINESS_START_MINUTE = 540
BUSINESS_END_MINUTE = 1080
SLOT_STEP_MINUTES = 30
MINUTES_PER_DAY = 1440


@dataclass(frozen=True)
class TimeSlot:
    date: str
    start_time: str
    end_time: str
    duration: int
    available: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


def _clock(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def calculate_available_slots(
    day: date,
    busy_intervals: Iterable[tuple[int, int]],
    duration_minutes: int,
) -> list[TimeSlot]:
    """Return open slots of ``duration_minutes`` inside business hours.

    Candidates start every 30 minutes from 09:00; a candidate ``[t, t+d)`` is
    open when it overlaps no busy ``[start, end)`` interval. Busy intervals do
    not need to be sorted or disjoint.
    """
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise ValidationError("duration must be a positive number of minutes", field="duration")
    busy = list(busy_intervals)
    slots: list[TimeSlot] = []
    start = BUSINESS_START_MINUTE
    while start + duration_minutes <= BUSINESS_END_MINUTE:
        end = start + duration_minutes
        if not any(start < b_end and end > b_start for b_start, b_end in busy):
            slots.append(
                TimeSlot(
                    date=day.isoformat(),
                    start_time=_clock(start),
                    end_time=_clock(end),
                    duration=duration_minutes,
                )
            )
        start += SLOT_STEP_MINUTES
    return slots


def busy_intervals_for_day(day: date, events: Sequence) -> list[tuple[int, int]]:
    # Confirmed events only, clipped to the day in the business timezone.
    tz = business_tz()
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = day_start + timedelta(days=1)
    intervals: list[tuple[int, int]] = []
    for event in events:
        if event.status != "confirmed":
            continue
        start = event.start_time.astimezone(tz)
        end = event.end_time.astimezone(tz)
        if end <= day_start or start >= day_end:
            continue
        start_minute = max(0, int((start - day_start).total_seconds() // 60))
        end_minute = min(MINUTES_PER_DAY, int(-(-(end - day_start).total_seconds() // 60)))
        if end_minute > start_minute:
            intervals.append((start_minute, end_minute))
    return intervals
