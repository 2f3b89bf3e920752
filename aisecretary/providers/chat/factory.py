from __future__ import annotations

from aisecretary.core.config import get_settings
from aisecretary.core.errors import ProviderConfigError
from aisecretary.providers.chat.base import NotificationSink
from aisecretary.providers.chat.fake import RecordingNotificationSink
from aisecretary.providers.chat.line import LineNotificationSink


def get_notification_sink() -> NotificationSink:
    settings = get_settings()
    provider = (settings.chat_provider or "line").lower()

    if provider == "fake":
        return RecordingNotificationSink()
    if provider == "line":
        return LineNotificationSink()

    raise ProviderConfigError(f"Unsupported chat provider: {provider}")
