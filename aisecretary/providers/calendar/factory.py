from __future__ import annotations

from aisecretary.providers.calendar.base import CalendarProvider
from aisecretary.providers.calendar.google_oauth import GoogleOAuthClient


def get_calendar_provider() -> CalendarProvider:
    return GoogleOAuthClient()
