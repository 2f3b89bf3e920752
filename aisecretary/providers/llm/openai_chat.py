from __future__ import annotations

import json
from typing import Any

import httpx

from aisecretary.core.config import get_settings
from aisecretary.core.errors import ClassifierFailure, ProviderConfigError
from aisecretary.services.resilience import timed_call


class OpenAIClassifier:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def classify(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the OpenAI classifier")

        payload = {
            "model": self._settings.openai_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        client = self._get_client()
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"

        async def _call() -> httpx.Response:
            response = await client.post(url, json=payload, headers=headers)
            # Raise on 5xx inside the retried call so transient upstream errors get another attempt.
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await timed_call("llm.openai", _call)
        except (httpx.HTTPError, TimeoutError) as exc:
            raise ClassifierFailure("OpenAI classification request failed") from exc

        if response.status_code >= 400:
            raise ClassifierFailure(f"OpenAI classification error: {response.status_code}")
        try:
            content = response.json()["choices"][0]["message"]["content"]
            parsed = json.loads(content or "{}")
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ClassifierFailure("OpenAI returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise ClassifierFailure("OpenAI returned a non-object JSON payload")
        return parsed
