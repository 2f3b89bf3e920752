from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from aisecretary.apps.api.deps import get_message_service, get_tenant_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.services.messages import DEFAULT_RECENT_LIMIT, MessageService
from aisecretary.services.tenants import TenantService


router = APIRouter(prefix="/tenants/{tenant_id}", tags=["messages"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/messages", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def recent_messages(
    tenant_id: str,
    request: Request,
    limit: int = Query(default=DEFAULT_RECENT_LIMIT, gt=0, le=200),
    tenants: TenantService = Depends(get_tenant_service),
    messages: MessageService = Depends(get_message_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    return success_response(request=request, data=await messages.list_recent(tenant_id, limit))


@router.get("/dashboard", response_model=SuccessEnvelope[dict[str, Any]])
async def dashboard(
    tenant_id: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
    messages: MessageService = Depends(get_message_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    return success_response(request=request, data=await messages.dashboard_stats(tenant_id))
