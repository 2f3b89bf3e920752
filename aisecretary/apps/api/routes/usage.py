from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_usage_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.domain.models import PlanChange
from aisecretary.services.usage import PLANS, UsageService


router = APIRouter(tags=["usage"], responses=DEFAULT_ERROR_RESPONSES)


class PlanChangeRequest(BaseModel):
    new_plan: str

    model_config = {"extra": "forbid"}


class PlanChangeResponse(BaseModel):
    plan: dict[str, Any]
    history: list[PlanChange]


@router.get("/plans", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def list_plans(request: Request) -> dict:
    return success_response(request=request, data=[plan.to_dict() for plan in PLANS.values()])


@router.get("/tenants/{tenant_id}/usage", response_model=SuccessEnvelope[dict[str, Any]])
async def get_usage(
    tenant_id: str,
    request: Request,
    usage: UsageService = Depends(get_usage_service),
) -> dict:
    return success_response(request=request, data=await usage.get_usage(tenant_id))


@router.post("/tenants/{tenant_id}/usage/plan", response_model=SuccessEnvelope[PlanChangeResponse])
async def change_plan(
    tenant_id: str,
    request: Request,
    payload: PlanChangeRequest,
    usage: UsageService = Depends(get_usage_service),
) -> dict:
    plan = await usage.upgrade_plan(tenant_id, payload.new_plan)
    history = await usage.plan_history(tenant_id)
    return success_response(request=request, data={"plan": plan.to_dict(), "history": history})


@router.get("/tenants/{tenant_id}/usage/history", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def usage_history(
    tenant_id: str,
    request: Request,
    months: int = Query(default=3, gt=0, le=24),
    usage: UsageService = Depends(get_usage_service),
) -> dict:
    return success_response(request=request, data=await usage.usage_history(tenant_id, months))
