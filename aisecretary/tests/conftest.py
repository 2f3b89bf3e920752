from __future__ import annotations

import pytest

from aisecretary.core.config import get_settings
from aisecretary.persistence.factory import reset_store
from aisecretary.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch):
    # Keep every test on the in-memory store and offline providers.
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    monkeypatch.setenv("CHAT_PROVIDER", "fake")
    monkeypatch.setenv("BUSINESS_TIMEZONE", "Asia/Tokyo")
    for name in (
        "LINE_CHANNEL_SECRET",
        "LINE_CHANNEL_ACCESS_TOKEN",
        "OPENAI_API_KEY",
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_store()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_store()
    reset_telemetry()
