from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_tenant_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.domain.models import Role, Tenant, User
from aisecretary.services.tenants import TenantService


router = APIRouter(prefix="/tenants", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class TenantCreateRequest(BaseModel):
    company_name: str
    admin_user_id: str
    admin_name: str

    model_config = {"extra": "forbid"}


class TenantCreateResponse(BaseModel):
    tenant: Tenant
    admin: User


class UserCreateRequest(BaseModel):
    user_id: str
    name: str
    department: str | None = None
    role: Role = "employee"
    is_admin: bool = False

    model_config = {"extra": "forbid"}


class UserPatchRequest(BaseModel):
    name: str | None = None
    department: str | None = None
    role: Role | None = None
    is_admin: bool | None = None

    model_config = {"extra": "forbid"}


@router.post("", status_code=201, response_model=SuccessEnvelope[TenantCreateResponse])
async def create_tenant(
    request: Request,
    payload: TenantCreateRequest,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    tenant, admin = await tenants.create_tenant(payload.company_name, payload.admin_user_id, payload.admin_name)
    return success_response(request=request, data={"tenant": tenant, "admin": admin})


@router.get("", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def list_tenants(request: Request, tenants: TenantService = Depends(get_tenant_service)) -> dict:
    return success_response(request=request, data=await tenants.list_tenants())


@router.get("/{tenant_id}", response_model=SuccessEnvelope[Tenant])
async def get_tenant(
    tenant_id: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    return success_response(request=request, data=await tenants.get_tenant(tenant_id))


@router.post("/{tenant_id}/users", status_code=201, response_model=SuccessEnvelope[User])
async def add_user(
    tenant_id: str,
    request: Request,
    payload: UserCreateRequest,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    user = await tenants.add_user_to_tenant(
        tenant_id,
        payload.user_id,
        payload.name,
        department=payload.department,
        role=payload.role,
        is_admin=payload.is_admin,
    )
    return success_response(request=request, data=user)


@router.get("/{tenant_id}/users", response_model=SuccessEnvelope[list[User]])
async def list_users(
    tenant_id: str,
    request: Request,
    role: Role | None = None,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    return success_response(request=request, data=await tenants.list_tenant_users(tenant_id, role=role))


@router.get("/{tenant_id}/users/{user_id}", response_model=SuccessEnvelope[User])
async def get_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    return success_response(request=request, data=await tenants.get_user(tenant_id, user_id))


@router.patch("/{tenant_id}/users/{user_id}", response_model=SuccessEnvelope[User])
async def patch_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    payload: UserPatchRequest,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    user = await tenants.update_user(tenant_id, user_id, payload.model_dump(exclude_unset=True))
    return success_response(request=request, data=user)


@router.delete("/{tenant_id}/users/{user_id}", response_model=SuccessEnvelope[dict[str, Any]])
async def delete_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    tenants: TenantService = Depends(get_tenant_service),
) -> dict:
    deleted = await tenants.delete_user(tenant_id, user_id)
    return success_response(request=request, data={"user_id": user_id, "deleted": deleted})
