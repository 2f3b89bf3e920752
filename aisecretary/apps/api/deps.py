from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends

from aisecretary.core.timeutil import utc_now
from aisecretary.persistence.factory import get_store
from aisecretary.persistence.store import KeyValueStore
from aisecretary.providers.calendar.base import CalendarProvider
from aisecretary.providers.calendar.factory import get_calendar_provider
from aisecretary.providers.chat.base import NotificationSink
from aisecretary.providers.chat.factory import get_notification_sink
from aisecretary.providers.llm.base import Classifier
from aisecretary.providers.llm.factory import get_classifier
from aisecretary.services.calendar import CalendarService
from aisecretary.services.calendar_link import CalendarLinkService
from aisecretary.services.commands import CommandService
from aisecretary.services.messages import MessageService
from aisecretary.services.router import MessageRouter
from aisecretary.services.tasks import TaskService
from aisecretary.services.tenants import TenantService
from aisecretary.services.usage import UsageService


Clock = Callable[[], datetime]


# Collaborator providers; tests swap these through app.dependency_overrides.
def get_kv_store() -> KeyValueStore:
    return get_store()


def get_llm_classifier() -> Classifier:
    return get_classifier()


def get_chat_sink() -> NotificationSink:
    return get_notification_sink()


def get_calendar_client() -> CalendarProvider:
    return get_calendar_provider()


def get_clock() -> Clock:
    return utc_now


def get_usage_service(
    store: KeyValueStore = Depends(get_kv_store),
    clock: Clock = Depends(get_clock),
) -> UsageService:
    return UsageService(store, time_provider=clock)


def get_tenant_service(
    store: KeyValueStore = Depends(get_kv_store),
    usage: UsageService = Depends(get_usage_service),
    clock: Clock = Depends(get_clock),
) -> TenantService:
    return TenantService(store, usage=usage, time_provider=clock)


def get_task_service(
    store: KeyValueStore = Depends(get_kv_store),
    clock: Clock = Depends(get_clock),
) -> TaskService:
    return TaskService(store, time_provider=clock)


def get_calendar_service(
    store: KeyValueStore = Depends(get_kv_store),
    tasks: TaskService = Depends(get_task_service),
    clock: Clock = Depends(get_clock),
) -> CalendarService:
    return CalendarService(store, tasks=tasks, time_provider=clock)


def get_message_service(
    store: KeyValueStore = Depends(get_kv_store),
    clock: Clock = Depends(get_clock),
) -> MessageService:
    return MessageService(store, time_provider=clock)


def get_command_service(
    store: KeyValueStore = Depends(get_kv_store),
    sink: NotificationSink = Depends(get_chat_sink),
    classifier: Classifier = Depends(get_llm_classifier),
    tenants: TenantService = Depends(get_tenant_service),
    clock: Clock = Depends(get_clock),
) -> CommandService:
    return CommandService(store, sink, classifier=classifier, tenants=tenants, time_provider=clock)


def get_calendar_link_service(
    store: KeyValueStore = Depends(get_kv_store),
    provider: CalendarProvider = Depends(get_calendar_client),
    calendar: CalendarService = Depends(get_calendar_service),
    clock: Clock = Depends(get_clock),
) -> CalendarLinkService:
    return CalendarLinkService(store, provider, calendar=calendar, time_provider=clock)


def get_message_router(
    store: KeyValueStore = Depends(get_kv_store),
    classifier: Classifier = Depends(get_llm_classifier),
    sink: NotificationSink = Depends(get_chat_sink),
    clock: Clock = Depends(get_clock),
) -> MessageRouter:
    return MessageRouter(store, classifier, sink, time_provider=clock)
