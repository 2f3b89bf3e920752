from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from aisecretary.core.config import get_settings
from aisecretary.core.errors import CalendarAuthError, ProviderConfigError
from aisecretary.providers.calendar.base import TokenGrant
from aisecretary.services.resilience import timed_call


SCOPES = (
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)
MAX_RESULTS = 100


class GoogleOAuthClient:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    def _credentials(self) -> tuple[str, str]:
        client_id = self._settings.google_client_id
        client_secret = self._settings.google_client_secret
        if not client_id or not client_secret:
            raise ProviderConfigError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required")
        return client_id, client_secret

    def build_authorization_url(self, *, state: str, redirect_uri: str) -> str:
        client_id, _secret = self._credentials()
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            # Offline access plus forced consent so Google always returns a refresh token.
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self._settings.google_auth_url}?{urlencode(params)}"

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        client = self._get_client()

        async def _call() -> httpx.Response:
            response = await client.post(self._settings.google_token_url, data=form)
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await timed_call("calendar.google.token", _call)
        except (httpx.HTTPError, TimeoutError) as exc:
            raise CalendarAuthError("Google token endpoint unreachable") from exc
        if response.status_code >= 400:
            raise CalendarAuthError(f"Google token request rejected: {response.status_code}")
        return response.json()

    async def exchange_code(self, code: str, *, redirect_uri: str) -> TokenGrant:
        client_id, client_secret = self._credentials()
        body = await self._token_request(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            }
        )
        return _grant(body)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        client_id, client_secret = self._credentials()
        body = await self._token_request(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        return _grant(body)

    async def list_events(
        self, access_token: str, *, time_min: datetime, time_max: datetime
    ) -> list[dict[str, Any]]:
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(MAX_RESULTS),
        }
        url = f"{self._settings.google_calendar_api_url.rstrip('/')}/calendars/primary/events"
        headers = {"Authorization": f"Bearer {access_token}"}
        client = self._get_client()

        async def _call() -> httpx.Response:
            response = await client.get(url, params=params, headers=headers)
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await timed_call("calendar.google.events", _call)
        except (httpx.HTTPError, TimeoutError) as exc:
            raise CalendarAuthError("Google Calendar API unreachable") from exc
        if response.status_code in {401, 403}:
            raise CalendarAuthError("Google Calendar rejected the access token")
        if response.status_code >= 400:
            raise CalendarAuthError(f"Google Calendar API error: {response.status_code}")
        return list(response.json().get("items") or [])


def _grant(body: dict[str, Any]) -> TokenGrant:
    try:
        return TokenGrant(
            access_token=str(body["access_token"]),
            expires_in=int(body.get("expires_in", 3600)),
            refresh_token=body.get("refresh_token"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise CalendarAuthError("Google token response is malformed") from exc
