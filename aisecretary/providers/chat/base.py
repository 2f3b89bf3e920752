from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DeliveryResult:
    # Outcome of a best-effort push or reply; callers log it and move on.
    sent: bool
    status_code: int | None
    message: str


class NotificationSink(Protocol):
    async def push_message(self, recipient_id: str, text: str) -> DeliveryResult:
        ...

    async def reply(self, reply_token: str, text: str) -> DeliveryResult:
        ...
