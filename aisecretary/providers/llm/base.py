from __future__ import annotations

from typing import Any, Protocol


class Classifier(Protocol):
    async def classify(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        ...
