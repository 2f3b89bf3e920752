from __future__ import annotations

from datetime import date

import pytest

from aisecretary.core.errors import CalendarAuthError, NotFoundError, ValidationError
from aisecretary.domain.models import CalendarToken
from aisecretary.persistence.keys import executive_key
from aisecretary.persistence.memory_store import InMemoryKeyValueStore
from aisecretary.persistence.records import RecordStore
from aisecretary.providers.calendar.fake import FakeCalendarProvider
from aisecretary.services.calendar import CalendarService
from aisecretary.services.calendar_link import (
    SYNC_CREATED_BY,
    TOKEN_FACET,
    CalendarLinkService,
    callback_redirect_uri,
    decode_state,
    encode_state,
)
from aisecretary.tests.utils.clock import FixedClock
from aisecretary.tests.utils.seed import seed_company


GOOGLE_EVENTS = [
    {
        "id": "g1",
        "summary": "取締役会",
        "start": {"dateTime": "2026-10-20T10:00:00+09:00"},
        "end": {"dateTime": "2026-10-20T11:00:00+09:00"},
        "attendees": [{"email": "board@example.com"}, {"displayName": "山本"}, {}],
    },
    {
        "id": "g2",
        "status": "cancelled",
        "summary": "中止",
        "start": {"dateTime": "2026-10-20T13:00:00+09:00"},
        "end": {"dateTime": "2026-10-20T14:00:00+09:00"},
    },
    {"id": "g3", "start": {"date": "2026-10-21"}, "end": {"date": "2026-10-22"}},
    {"id": "g4", "summary": "壊れた予定", "start": {"dateTime": "soon"}, "end": {"dateTime": "later"}},
]


async def _setup(events=None):
    store = InMemoryKeyValueStore()
    clock = FixedClock()
    tenant, _, _ = await seed_company(store, clock)
    provider = FakeCalendarProvider(events)
    service = CalendarLinkService(store, provider, time_provider=clock)
    return tenant.tenant_id, store, clock, provider, service


def test_state_round_trip_and_rejects_malformed_values() -> None:
    assert decode_state(encode_state("acme-1", "E1")) == ("acme-1", "E1")
    for state in ("", "acme-1", ":E1", "acme-1:"):
        with pytest.raises(ValidationError):
            decode_state(state)


def test_callback_uri_points_at_versioned_route() -> None:
    assert callback_redirect_uri().endswith("/v1/calendar/google/callback")


@pytest.mark.asyncio
async def test_authorization_url_carries_state() -> None:
    tenant_id, _, _, _, service = await _setup()
    url = await service.build_authorization_url(tenant_id, "E1")
    assert url.startswith("https://auth.example/authorize?")
    assert f"state={tenant_id}%3AE1" in url

    with pytest.raises(NotFoundError):
        await service.build_authorization_url("missing", "E1")


@pytest.mark.asyncio
async def test_callback_stores_token_and_reports_connection() -> None:
    tenant_id, _, clock, _, service = await _setup()
    assert (await service.check_connection(tenant_id, "E1"))["connected"] is False

    connected = await service.complete_authorization("abc", encode_state(tenant_id, "E1"))

    assert connected == (tenant_id, "E1")
    status = await service.check_connection(tenant_id, "E1")
    assert status["connected"] is True and status["expired"] is False
    assert await service.get_access_token(tenant_id, "E1") == "access-abc"
    clock.advance(hours=2)
    assert (await service.check_connection(tenant_id, "E1"))["expired"] is True


@pytest.mark.asyncio
async def test_callback_requires_code_and_known_tenant() -> None:
    tenant_id, _, _, _, service = await _setup()
    with pytest.raises(ValidationError):
        await service.complete_authorization("", encode_state(tenant_id, "E1"))
    with pytest.raises(NotFoundError):
        await service.complete_authorization("abc", "missing:E1")


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once_and_keeps_refresh_token() -> None:
    tenant_id, store, clock, provider, service = await _setup()
    await service.complete_authorization("abc", encode_state(tenant_id, "E1"))
    clock.advance(hours=2)

    assert await service.get_access_token(tenant_id, "E1") == "refreshed-1"
    assert await service.get_access_token(tenant_id, "E1") == "refreshed-1"

    assert provider.refresh_calls == 1
    stored = await RecordStore(store).get(executive_key(tenant_id, "E1", TOKEN_FACET), CalendarToken)
    assert stored.refresh_token == "refresh-abc"


@pytest.mark.asyncio
async def test_access_token_requires_connection() -> None:
    tenant_id, _, _, _, service = await _setup()
    with pytest.raises(CalendarAuthError):
        await service.get_access_token(tenant_id, "E1")


@pytest.mark.asyncio
async def test_disconnect_removes_token() -> None:
    tenant_id, _, _, _, service = await _setup()
    await service.complete_authorization("abc", encode_state(tenant_id, "E1"))
    assert await service.disconnect(tenant_id, "E1") is True
    assert await service.disconnect(tenant_id, "E1") is False
    assert (await service.check_connection(tenant_id, "E1"))["connected"] is False


@pytest.mark.asyncio
async def test_sync_imports_live_events_once() -> None:
    tenant_id, store, clock, _, service = await _setup(GOOGLE_EVENTS)
    await service.complete_authorization("abc", encode_state(tenant_id, "E1"))

    first = await service.sync_events(tenant_id, "E1")
    second = await service.sync_events(tenant_id, "E1")

    assert first == {"synced_events": 2, "total_provider_events": 4}
    assert second == {"synced_events": 0, "total_provider_events": 4}
    events = await CalendarService(store, time_provider=clock).get_events(
        tenant_id, date(2026, 10, 19), date(2026, 10, 25), "E1"
    )
    by_external = {event.external_id: event for event in events}
    assert set(by_external) == {"g1", "g3"}
    board = by_external["g1"]
    assert (board.title, board.type, board.status, board.created_by) == ("取締役会", "meeting", "confirmed", SYNC_CREATED_BY)
    assert board.attendees == ["board@example.com", "山本"]
    assert by_external["g3"].title == "無題"


@pytest.mark.asyncio
async def test_sync_rejects_inverted_window() -> None:
    tenant_id, _, clock, _, service = await _setup()
    await service.complete_authorization("abc", encode_state(tenant_id, "E1"))
    with pytest.raises(ValidationError):
        await service.sync_events(tenant_id, "E1", start=clock(), end=clock())
