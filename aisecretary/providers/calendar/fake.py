from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from aisecretary.core.errors import CalendarAuthError
from aisecretary.providers.calendar.base import TokenGrant


class FakeCalendarProvider:
    def __init__(self, events: list[dict[str, Any]] | None = None, *, expires_in: int = 3600) -> None:
        # Deterministic tokens and a fixed event feed keep OAuth flows testable offline.
        self.events = list(events or [])
        self.expires_in = expires_in
        self.refresh_calls = 0
        self.fail_exchange = False

    def build_authorization_url(self, *, state: str, redirect_uri: str) -> str:
        return f"https://auth.example/authorize?{urlencode({'state': state, 'redirect_uri': redirect_uri})}"

    async def exchange_code(self, code: str, *, redirect_uri: str) -> TokenGrant:
        if self.fail_exchange:
            raise CalendarAuthError("fake exchange failure")
        return TokenGrant(access_token=f"access-{code}", expires_in=self.expires_in, refresh_token=f"refresh-{code}")

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls += 1
        return TokenGrant(access_token=f"refreshed-{self.refresh_calls}", expires_in=self.expires_in)

    async def list_events(
        self, access_token: str, *, time_min: datetime, time_max: datetime
    ) -> list[dict[str, Any]]:
        _ = (access_token, time_min, time_max)
        return list(self.events)
