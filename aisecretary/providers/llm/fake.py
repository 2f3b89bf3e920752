from __future__ import annotations

from typing import Any

from aisecretary.core.errors import ClassifierFailure


class FakeClassifier:
    def __init__(
        self,
        responses: list[dict[str, Any] | Exception] | None = None,
        *,
        default: dict[str, Any] | None = None,
    ) -> None:
        # Queued responses are consumed in order; the default answers once the queue drains.
        self._responses = list(responses or [])
        self._default = default
        self.calls: list[tuple[str, str]] = []

    def enqueue(self, response: dict[str, Any] | Exception) -> None:
        self._responses.append(response)

    async def classify(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        self.calls.append((system_prompt, user_prompt))
        if self._responses:
            response = self._responses.pop(0)
        elif self._default is not None:
            response = self._default
        else:
            response = ClassifierFailure("fake classifier has no scripted response")
        if isinstance(response, Exception):
            raise response
        return dict(response)
