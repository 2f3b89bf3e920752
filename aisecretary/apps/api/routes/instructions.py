from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_command_service, get_tenant_service
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.domain.models import InstructionStatus, RelayedInstruction
from aisecretary.services.commands import CommandService
from aisecretary.services.tenants import TenantService


router = APIRouter(prefix="/tenants/{tenant_id}/instructions", tags=["instructions"], responses=DEFAULT_ERROR_RESPONSES)


class InstructionRequest(BaseModel):
    executive_id: str
    message: str

    model_config = {"extra": "forbid"}


class InstructionStatusRequest(BaseModel):
    status: InstructionStatus
    reply_content: str | None = None

    model_config = {"extra": "forbid"}


@router.post("", status_code=201, response_model=SuccessEnvelope[dict[str, Any]])
async def relay_instruction(
    tenant_id: str,
    request: Request,
    payload: InstructionRequest,
    tenants: TenantService = Depends(get_tenant_service),
    commands: CommandService = Depends(get_command_service),
) -> dict:
    await tenants.get_tenant(tenant_id)
    result = await commands.send_to_employee(tenant_id, payload.executive_id, payload.message)
    return success_response(request=request, data=result)


@router.get("", response_model=SuccessEnvelope[list[RelayedInstruction]])
async def sent_instructions(
    tenant_id: str,
    request: Request,
    executive_id: str,
    commands: CommandService = Depends(get_command_service),
) -> dict:
    return success_response(request=request, data=await commands.get_sent_messages(tenant_id, executive_id))


@router.get("/{message_id}", response_model=SuccessEnvelope[RelayedInstruction])
async def instruction_status(
    tenant_id: str,
    message_id: str,
    request: Request,
    commands: CommandService = Depends(get_command_service),
) -> dict:
    return success_response(request=request, data=await commands.get_message_status(tenant_id, message_id))


@router.patch("/{message_id}", response_model=SuccessEnvelope[RelayedInstruction])
async def update_instruction(
    tenant_id: str,
    message_id: str,
    request: Request,
    payload: InstructionStatusRequest,
    commands: CommandService = Depends(get_command_service),
) -> dict:
    instruction = await commands.update_message_status(
        tenant_id, message_id, payload.status, reply_content=payload.reply_content
    )
    return success_response(request=request, data=instruction)
