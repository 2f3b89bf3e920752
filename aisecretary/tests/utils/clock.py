from __future__ import annotations

from datetime import datetime, timedelta, timezone


# 2026-10-19 10:00 in Asia/Tokyo.
DEFAULT_NOW = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now
