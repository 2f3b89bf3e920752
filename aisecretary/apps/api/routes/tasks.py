from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import Clock, get_clock, get_task_service, get_tenant_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.core.timeutil import local_day
from aisecretary.domain.models import Task, TaskComment, TaskCreate, TaskPriority, TaskStatus, TaskUpdate
from aisecretary.services.tasks import TaskService
from aisecretary.services.tenants import TenantService


router = APIRouter(prefix="/tenants/{tenant_id}", tags=["tasks"], responses=DEFAULT_ERROR_RESPONSES)


class TaskCreateRequest(TaskCreate):
    # Tenant scope comes from the path only.
    model_config = {"extra": "forbid"}


class TaskPatchRequest(TaskUpdate):
    model_config = {"extra": "forbid"}


class CommentRequest(BaseModel):
    user_id: str
    text: str

    model_config = {"extra": "forbid"}


class UserTasksResponse(BaseModel):
    tasks: list[Task]
    total: int
    summary: dict[str, int]


@router.post("/tasks", status_code=201, response_model=SuccessEnvelope[Task])
async def create_task(
    tenant_id: str,
    request: Request,
    payload: TaskCreateRequest,
    tenants: TenantService = Depends(get_tenant_service),
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    fields = payload.model_dump(exclude_unset=True)
    fields["tenant_id"] = tenant_id
    return success_response(request=request, data=await tasks.create_task(fields))


@router.get("/tasks/due", response_model=SuccessEnvelope[list[Task]])
async def due_tasks(
    tenant_id: str,
    request: Request,
    day: date | None = Query(default=None, alias="date"),
    clock: Clock = Depends(get_clock),
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    day = day or local_day(clock())
    return success_response(request=request, data=await tasks.get_due_tasks(tenant_id, day))


@router.get("/tasks/overdue", response_model=SuccessEnvelope[list[Task]])
async def overdue_tasks(
    tenant_id: str,
    request: Request,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    return success_response(request=request, data=await tasks.get_overdue_tasks(tenant_id))


@router.get("/tasks/stats", response_model=SuccessEnvelope[dict[str, int]])
async def task_stats(
    tenant_id: str,
    request: Request,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    return success_response(request=request, data=await tasks.get_priority_stats(tenant_id))


@router.get("/tasks/{task_id}", response_model=SuccessEnvelope[Task])
async def get_task(
    tenant_id: str,
    task_id: str,
    request: Request,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    return success_response(request=request, data=await tasks.get_task(tenant_id, task_id))


@router.patch("/tasks/{task_id}", response_model=SuccessEnvelope[Task])
async def patch_task(
    tenant_id: str,
    task_id: str,
    request: Request,
    payload: TaskPatchRequest,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    task = await tasks.update_task(tenant_id, task_id, payload.model_dump(exclude_unset=True))
    return success_response(request=request, data=task)


@router.delete("/tasks/{task_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def delete_task(
    tenant_id: str,
    task_id: str,
    request: Request,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    deleted = await tasks.delete_task(tenant_id, task_id)
    return success_response(request=request, data={"task_id": task_id, "deleted": deleted})


@router.post("/tasks/{task_id}/comments", status_code=201, response_model=SuccessEnvelope[TaskComment])
async def add_comment(
    tenant_id: str,
    task_id: str,
    request: Request,
    payload: CommentRequest,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    comment = await tasks.add_comment(tenant_id, task_id, payload.user_id, payload.text)
    return success_response(request=request, data=comment)


@router.get("/users/{user_id}/tasks", response_model=SuccessEnvelope[UserTasksResponse])
async def user_tasks(
    tenant_id: str,
    user_id: str,
    request: Request,
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    tasks: TaskService = Depends(get_task_service),
) -> dict:
    result = await tasks.get_user_tasks(tenant_id, user_id, status=status, priority=priority)
    return success_response(request=request, data=result)
