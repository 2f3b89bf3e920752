from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from aisecretary.apps.api.deps import (
    get_calendar_client,
    get_chat_sink,
    get_clock,
    get_kv_store,
    get_llm_classifier,
)
from aisecretary.apps.api.main import create_app
from aisecretary.persistence.memory_store import InMemoryKeyValueStore
from aisecretary.providers.calendar.fake import FakeCalendarProvider
from aisecretary.providers.chat.fake import RecordingNotificationSink
from aisecretary.providers.llm.fake import FakeClassifier
from aisecretary.tests.utils.clock import FixedClock


@dataclass
class ApiHarness:
    app: FastAPI
    store: InMemoryKeyValueStore = field(default_factory=InMemoryKeyValueStore)
    clock: FixedClock = field(default_factory=FixedClock)
    classifier: FakeClassifier = field(default_factory=FakeClassifier)
    sink: RecordingNotificationSink = field(default_factory=RecordingNotificationSink)
    calendar_provider: FakeCalendarProvider = field(default_factory=FakeCalendarProvider)

    def client(self) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=self.app), base_url="http://test")


def build_test_app(classifier: FakeClassifier | None = None) -> ApiHarness:
    # One shared store, clock and fake providers behind every dependency the routes resolve.
    harness = ApiHarness(app=create_app(), classifier=classifier or FakeClassifier())
    harness.app.dependency_overrides[get_kv_store] = lambda: harness.store
    harness.app.dependency_overrides[get_clock] = lambda: harness.clock
    harness.app.dependency_overrides[get_llm_classifier] = lambda: harness.classifier
    harness.app.dependency_overrides[get_chat_sink] = lambda: harness.sink
    harness.app.dependency_overrides[get_calendar_client] = lambda: harness.calendar_provider
    return harness
