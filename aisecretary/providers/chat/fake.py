from __future__ import annotations

from dataclasses import dataclass

from aisecretary.providers.chat.base import DeliveryResult


@dataclass(frozen=True)
class SentMessage:
    kind: str
    target: str
    text: str


class RecordingNotificationSink:
    def __init__(self, *, fail: bool = False) -> None:
        # Record outgoing messages so tests can assert on pushes and replies.
        self.sent: list[SentMessage] = []
        self._fail = fail

    def pushes_to(self, recipient_id: str) -> list[str]:
        return [m.text for m in self.sent if m.kind == "push" and m.target == recipient_id]

    def replies(self) -> list[str]:
        return [m.text for m in self.sent if m.kind == "reply"]

    async def push_message(self, recipient_id: str, text: str) -> DeliveryResult:
        return self._record("push", recipient_id, text)

    async def reply(self, reply_token: str, text: str) -> DeliveryResult:
        return self._record("reply", reply_token, text)

    def _record(self, kind: str, target: str, text: str) -> DeliveryResult:
        if self._fail:
            return DeliveryResult(sent=False, status_code=None, message="recording sink set to fail")
        self.sent.append(SentMessage(kind=kind, target=target, text=text))
        return DeliveryResult(sent=True, status_code=200, message="recorded")
