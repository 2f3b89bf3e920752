from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from aisecretary.apps.api.deps import Clock, get_calendar_service, get_clock, get_tenant_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.core.timeutil import local_day
from aisecretary.domain.models import CalendarEvent, EventCreate, EventUpdate, Task
from aisecretary.services.calendar import CalendarService
from aisecretary.services.tenants import TenantService


router = APIRouter(prefix="/tenants/{tenant_id}/calendar", tags=["calendar"], responses=DEFAULT_ERROR_RESPONSES)

DEFAULT_EVENT_WINDOW_DAYS = 7


class EventCreateRequest(EventCreate):
    model_config = {"extra": "forbid"}


class EventPatchRequest(EventUpdate):
    model_config = {"extra": "forbid"}


class CancelRequest(BaseModel):
    reason: str | None = None

    model_config = {"extra": "forbid"}


class DeriveTasksRequest(BaseModel):
    executive_id: str
    days: int = Field(default=30, gt=0, le=365)

    model_config = {"extra": "forbid"}


class DeriveTasksResponse(BaseModel):
    tasks_created: list[Task]
    events_analyzed: int


class SlotResponse(BaseModel):
    date: str
    start_time: str
    end_time: str
    duration: int
    available: bool


@router.post("/events", status_code=201, response_model=SuccessEnvelope[CalendarEvent])
async def create_event(
    tenant_id: str,
    request: Request,
    payload: EventCreateRequest,
    tenants: TenantService = Depends(get_tenant_service),
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    fields = payload.model_dump(exclude_unset=True)
    fields["tenant_id"] = tenant_id
    return success_response(request=request, data=await calendar.create_event(fields))


@router.get("/events", response_model=SuccessEnvelope[list[CalendarEvent]])
async def list_events(
    tenant_id: str,
    request: Request,
    start_date: date | None = None,
    end_date: date | None = None,
    executive_id: str | None = None,
    clock: Clock = Depends(get_clock),
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    start = start_date or local_day(clock())
    end = end_date or start + timedelta(days=DEFAULT_EVENT_WINDOW_DAYS)
    events = await calendar.get_events(tenant_id, start, end, executive_id)
    return success_response(request=request, data=events)


@router.get("/slots", response_model=SuccessEnvelope[list[SlotResponse]])
async def available_slots(
    tenant_id: str,
    request: Request,
    executive_id: str,
    day: date = Query(alias="date"),
    duration: int = 60,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    slots = await calendar.get_available_slots(tenant_id, executive_id, day, duration)
    return success_response(request=request, data=[slot.to_dict() for slot in slots])


@router.post("/derive-tasks", response_model=SuccessEnvelope[DeriveTasksResponse])
async def derive_tasks(
    tenant_id: str,
    request: Request,
    payload: DeriveTasksRequest,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    result = await calendar.derive_tasks_from_events(tenant_id, payload.executive_id, payload.days)
    return success_response(request=request, data=result)


@router.get("/events/{event_id}", response_model=SuccessEnvelope[CalendarEvent])
async def get_event(
    tenant_id: str,
    event_id: str,
    request: Request,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    return success_response(request=request, data=await calendar.get_event(tenant_id, event_id))


@router.patch("/events/{event_id}", response_model=SuccessEnvelope[CalendarEvent])
async def patch_event(
    tenant_id: str,
    event_id: str,
    request: Request,
    payload: EventPatchRequest,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    event = await calendar.update_event(tenant_id, event_id, payload.model_dump(exclude_unset=True))
    return success_response(request=request, data=event)


@router.post("/events/{event_id}/cancel", response_model=SuccessEnvelope[CalendarEvent])
async def cancel_event(
    tenant_id: str,
    event_id: str,
    request: Request,
    payload: CancelRequest | None = None,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    reason = payload.reason if payload else None
    return success_response(request=request, data=await calendar.cancel_event(tenant_id, event_id, reason))


@router.delete("/events/{event_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def delete_event(
    tenant_id: str,
    event_id: str,
    request: Request,
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    deleted = await calendar.delete_event(tenant_id, event_id)
    return success_response(request=request, data={"event_id": event_id, "deleted": deleted})
