from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_calendar_link_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.services.calendar_link import CalendarLinkService


router = APIRouter(tags=["google-calendar"], responses=DEFAULT_ERROR_RESPONSES)


class ConnectRequest(BaseModel):
    executive_id: str

    model_config = {"extra": "forbid"}


class SyncRequest(BaseModel):
    executive_id: str
    start: datetime | None = None
    end: datetime | None = None

    model_config = {"extra": "forbid"}


@router.post("/tenants/{tenant_id}/calendar/google/connect", response_model=SuccessEnvelope[dict[str, str]])
async def connect(
    tenant_id: str,
    request: Request,
    payload: ConnectRequest,
    link: CalendarLinkService = Depends(get_calendar_link_service),
) -> dict:
    url = await link.build_authorization_url(tenant_id, payload.executive_id)
    return success_response(request=request, data={"authorization_url": url})


@router.get("/calendar/google/callback", response_model=SuccessEnvelope[dict[str, Any]])
async def callback(
    request: Request,
    code: str,
    state: str,
    link: CalendarLinkService = Depends(get_calendar_link_service),
) -> dict:
    tenant_id, executive_id = await link.complete_authorization(code, state)
    return success_response(
        request=request,
        data={"connected": True, "tenant_id": tenant_id, "executive_id": executive_id},
    )


@router.get("/tenants/{tenant_id}/calendar/google/status", response_model=SuccessEnvelope[dict[str, Any]])
async def status(
    tenant_id: str,
    request: Request,
    executive_id: str,
    link: CalendarLinkService = Depends(get_calendar_link_service),
) -> dict:
    return success_response(request=request, data=await link.check_connection(tenant_id, executive_id))


@router.delete("/tenants/{tenant_id}/calendar/google", response_model=SuccessEnvelope[dict[str, Any]])
async def disconnect(
    tenant_id: str,
    request: Request,
    executive_id: str,
    link: CalendarLinkService = Depends(get_calendar_link_service),
) -> dict:
    removed = await link.disconnect(tenant_id, executive_id)
    return success_response(request=request, data={"disconnected": removed})


@router.post("/tenants/{tenant_id}/calendar/google/sync", response_model=SuccessEnvelope[dict[str, int]])
async def sync(
    tenant_id: str,
    request: Request,
    payload: SyncRequest,
    link: CalendarLinkService = Depends(get_calendar_link_service),
) -> dict:
    result = await link.sync_events(tenant_id, payload.executive_id, start=payload.start, end=payload.end)
    return success_response(request=request, data=result)
