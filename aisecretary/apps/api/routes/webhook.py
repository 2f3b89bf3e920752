from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from aisecretary.apps.api.deps import get_message_router
from aisecretary.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from aisecretary.apps.api.response import SuccessEnvelope, success_response
from aisecretary.core.config import get_settings
from aisecretary.providers.chat.line import verify_line_signature
from aisecretary.services.router import MessageRouter


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"], responses=DEFAULT_ERROR_RESPONSES)


class WebhookResult(BaseModel):
    processed: int


def _text_events(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    events = payload.get("events") or []
    return [
        event
        for event in events
        if isinstance(event, dict)
        and event.get("type") == "message"
        and (event.get("message") or {}).get("type") == "text"
    ]


@router.post("/webhook/line", response_model=SuccessEnvelope[WebhookResult])
async def line_webhook(
    request: Request,
    message_router: MessageRouter = Depends(get_message_router),
) -> dict:
    body = await request.body()
    secret = get_settings().line_channel_secret
    if secret and not verify_line_signature(secret, body, request.headers.get("X-Line-Signature")):
        logger.warning("line_webhook_rejected reason=bad_signature")
        raise HTTPException(status_code=401, detail={"code": "INVALID_SIGNATURE", "message": "Invalid signature"})
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Webhook body must be JSON") from exc

    processed = 0
    for event in _text_events(payload):
        sender_id = (event.get("source") or {}).get("userId")
        text = str(event["message"].get("text") or "")
        if not sender_id or not text.strip():
            continue
        await message_router.handle_text(sender_id, text, reply_token=event.get("replyToken"))
        processed += 1
    return success_response(request=request, data={"processed": processed})
