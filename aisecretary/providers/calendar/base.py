from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: str | None = None


class CalendarProvider(Protocol):
    def build_authorization_url(self, *, state: str, redirect_uri: str) -> str:
        ...

    async def exchange_code(self, code: str, *, redirect_uri: str) -> TokenGrant:
        ...

    async def refresh(self, refresh_token: str) -> TokenGrant:
        ...

    async def list_events(
        self, access_token: str, *, time_min: datetime, time_max: datetime
    ) -> list[dict[str, Any]]:
        ...
