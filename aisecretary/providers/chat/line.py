from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any

import httpx

from aisecretary.core.config import get_settings
from aisecretary.providers.chat.base import DeliveryResult
from aisecretary.services.resilience import single_attempt_policy, timed_call


logger = logging.getLogger(__name__)

# LINE rejects text messages longer than this.
MAX_TEXT_LENGTH = 5000


def build_line_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_line_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(build_line_signature(secret, body), signature)


class LineNotificationSink:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def push_message(self, recipient_id: str, text: str) -> DeliveryResult:
        return await self._send("message/push", {"to": recipient_id, "messages": [_text(text)]})

    async def reply(self, reply_token: str, text: str) -> DeliveryResult:
        return await self._send("message/reply", {"replyToken": reply_token, "messages": [_text(text)]})

    async def _send(self, path: str, payload: dict[str, Any]) -> DeliveryResult:
        # Fire-and-forget: failures are logged and returned, never raised or retried.
        token = self._settings.line_channel_access_token
        if not token:
            logger.warning("line_send_skipped path=%s reason=missing_token", path)
            return DeliveryResult(sent=False, status_code=None, message="LINE access token is not configured")
        url = f"{self._settings.line_api_base_url.rstrip('/')}/{path}"
        headers = {"Authorization": f"Bearer {token}"}
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(url, json=payload, headers=headers)

        try:
            response = await timed_call("chat.line", _call, policy=single_attempt_policy())
        except Exception as exc:  # noqa: BLE001 - notification failures are non-fatal
            logger.warning("line_send_failed path=%s error=%s", path, type(exc).__name__)
            return DeliveryResult(sent=False, status_code=None, message=str(exc) or type(exc).__name__)
        if response.status_code >= 400:
            logger.warning("line_send_rejected path=%s status=%s", path, response.status_code)
            return DeliveryResult(
                sent=False,
                status_code=response.status_code,
                message=f"LINE responded with status {response.status_code}",
            )
        return DeliveryResult(sent=True, status_code=response.status_code, message="delivered")


def _text(text: str) -> dict[str, str]:
    return {"type": "text", "text": text[:MAX_TEXT_LENGTH]}
