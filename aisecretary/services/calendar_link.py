from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable

from aisecretary.core.config import get_settings
from aisecretary.core.errors import CalendarAuthError, NotFoundError, ValidationError
from aisecretary.core.timeutil import local_day, parse_datetime, utc_now
from aisecretary.domain.models import CalendarToken, EventCreate, Tenant
from aisecretary.persistence.keys import executive_key, tenant_info_key
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.providers.calendar.base import CalendarProvider, TokenGrant
from aisecretary.services.calendar import CalendarService


logger = logging.getLogger(__name__)

TOKEN_FACET = "google_token"
SYNC_CREATED_BY = "google_sync"
DEFAULT_SYNC_DAYS = 30


def callback_redirect_uri() -> str:
    return f"{get_settings().app_base_url.rstrip('/')}/v1/calendar/google/callback"


def encode_state(tenant_id: str, executive_id: str) -> str:
    # Tenant ids never contain ":" so the first separator splits the pair.
    return f"{tenant_id}:{executive_id}"


def decode_state(state: str) -> tuple[str, str]:
    tenant_id, _, executive_id = (state or "").partition(":")
    if not tenant_id or not executive_id:
        raise ValidationError("state must be '<tenant_id>:<executive_id>'", field="state")
    return tenant_id, executive_id


class CalendarLinkService:
    def __init__(
        self,
        store: KeyValueStore,
        provider: CalendarProvider,
        *,
        calendar: CalendarService | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._records = RecordStore(store)
        self._store = store
        self._provider = provider
        self._time_provider = time_provider or utc_now
        self._calendar = calendar or CalendarService(store, time_provider=self._time_provider)

    def _token_key(self, tenant_id: str, executive_id: str) -> str:
        return executive_key(tenant_id, executive_id, TOKEN_FACET)

    async def _require_tenant(self, tenant_id: str) -> None:
        if await self._records.get(tenant_info_key(tenant_id), Tenant) is None:
            raise NotFoundError("tenant", tenant_id)

    async def _save_token(self, tenant_id: str, executive_id: str, token: CalendarToken) -> None:
        ttl = get_settings().calendar_token_ttl_days * 86400
        await self._records.put(self._token_key(tenant_id, executive_id), token, ttl)

    def _token_from_grant(self, grant: TokenGrant, previous_refresh: str | None = None) -> CalendarToken:
        return CalendarToken(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or previous_refresh,
            expires_at=self._time_provider() + timedelta(seconds=grant.expires_in),
        )

    async def build_authorization_url(self, tenant_id: str, executive_id: str) -> str:
        # Validate both ids through the key helpers before they end up in the OAuth state.
        self._token_key(tenant_id, executive_id)
        await self._require_tenant(tenant_id)
        return self._provider.build_authorization_url(
            state=encode_state(tenant_id, executive_id),
            redirect_uri=callback_redirect_uri(),
        )

    async def complete_authorization(self, code: str, state: str) -> tuple[str, str]:
        if not code:
            raise ValidationError("code is required", field="code")
        tenant_id, executive_id = decode_state(state)
        await self._require_tenant(tenant_id)
        grant = await self._provider.exchange_code(code, redirect_uri=callback_redirect_uri())
        await self._save_token(tenant_id, executive_id, self._token_from_grant(grant))
        logger.info("calendar_connected tenant_id=%s executive_id=%s", tenant_id, executive_id)
        return tenant_id, executive_id

    async def check_connection(self, tenant_id: str, executive_id: str) -> dict[str, Any]:
        token = await self._records.get(self._token_key(tenant_id, executive_id), CalendarToken)
        if token is None:
            return {"connected": False, "expires_at": None, "expired": False}
        return {
            "connected": True,
            "expires_at": token.expires_at.isoformat(),
            "expired": self._time_provider() >= token.expires_at,
        }

    async def disconnect(self, tenant_id: str, executive_id: str) -> bool:
        removed = await self._store.delete(self._token_key(tenant_id, executive_id))
        logger.info("calendar_disconnected tenant_id=%s executive_id=%s", tenant_id, executive_id)
        return removed > 0

    async def get_access_token(self, tenant_id: str, executive_id: str) -> str:
        # Refresh expired tokens in place; the stored refresh token survives if Google omits a new one.
        key = self._token_key(tenant_id, executive_id)
        async with self._records.lock(key):
            token = await self._records.get(key, CalendarToken)
            if token is None:
                raise CalendarAuthError("Google Calendar is not connected")
            if self._time_provider() < token.expires_at:
                return token.access_token
            if not token.refresh_token:
                raise CalendarAuthError("Google access token expired and no refresh token is stored")
            grant = await self._provider.refresh(token.refresh_token)
            refreshed = self._token_from_grant(grant, previous_refresh=token.refresh_token)
            await self._save_token(tenant_id, executive_id, refreshed)
        logger.info("calendar_token_refreshed tenant_id=%s executive_id=%s", tenant_id, executive_id)
        return refreshed.access_token

    async def sync_events(
        self,
        tenant_id: str,
        executive_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, int]:
        """Import provider events into the internal calendar as confirmed meetings.

        Cancelled provider events are skipped, and events already imported in
        the window (matched on the provider event id) are not duplicated.
        """
        time_min = start or self._time_provider()
        time_max = end or time_min + timedelta(days=DEFAULT_SYNC_DAYS)
        if time_max <= time_min:
            raise ValidationError("end must be after start", field="end")
        access_token = await self.get_access_token(tenant_id, executive_id)
        items = await self._provider.list_events(access_token, time_min=time_min, time_max=time_max)

        existing = await self._calendar.get_events(
            tenant_id, local_day(time_min), local_day(time_max), executive_id
        )
        imported = {event.external_id for event in existing if event.external_id}
        synced = 0
        for item in items:
            if item.get("status") == "cancelled":
                continue
            external_id = item.get("id")
            if external_id and external_id in imported:
                continue
            fields = _to_event_fields(item)
            if fields is None:
                logger.warning("calendar_sync_item_skipped tenant_id=%s external_id=%s", tenant_id, external_id)
                continue
            await self._calendar.create_event(
                EventCreate(
                    tenant_id=tenant_id,
                    executive_id=executive_id,
                    created_by=SYNC_CREATED_BY,
                    external_id=external_id,
                    type="meeting",
                    status="confirmed",
                    **fields,
                )
            )
            if external_id:
                imported.add(external_id)
            synced += 1
        logger.info(
            "calendar_synced tenant_id=%s executive_id=%s synced=%s total=%s",
            tenant_id,
            executive_id,
            synced,
            len(items),
        )
        return {"synced_events": synced, "total_provider_events": len(items)}


def _to_event_fields(item: dict[str, Any]) -> dict[str, Any] | None:
    start = item.get("start") or {}
    end = item.get("end") or {}
    start_raw = start.get("dateTime") or start.get("date")
    end_raw = end.get("dateTime") or end.get("date")
    if not start_raw or not end_raw:
        return None
    try:
        start_time = parse_datetime(start_raw, field="start")
        end_time = parse_datetime(end_raw, field="end")
    except ValidationError:
        return None
    if end_time <= start_time:
        return None
    attendees = [
        attendee.get("displayName") or attendee.get("email")
        for attendee in item.get("attendees") or []
        if attendee.get("displayName") or attendee.get("email")
    ]
    return {
        "title": item.get("summary") or "無題",
        "description": item.get("description"),
        "start_time": start_time,
        "end_time": end_time,
        "location": item.get("location"),
        "attendees": attendees,
    }
