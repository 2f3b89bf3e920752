from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable

from pydantic import ValidationError as SchemaError

from aisecretary.core.config import get_settings
from aisecretary.core.timeutil import day_key, local_day, month_key, utc_now
from aisecretary.domain.models import InboundMessage, MessageAnalysis, User
from aisecretary.persistence.keys import (
    KIND_ANALYSIS,
    KIND_EVENT,
    KIND_MESSAGE,
    KIND_TASK,
    KIND_USER,
    generate_entity_id,
    index_key,
    primary_key,
    tenant_collection_key,
    usage_key,
)
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.services.usage import USAGE_API_CALL, USAGE_MESSAGE


logger = logging.getLogger(__name__)

MESSAGES_COLLECTION = "messages"
DEFAULT_RECENT_LIMIT = 20


def default_analysis(text: str) -> MessageAnalysis:
    # Stand-in record used whenever the classifier cannot produce an analysis.
    return MessageAnalysis(
        priority="normal",
        category="report",
        summary=text[:100],
        required_action="",
        sentiment="neutral",
    )


class MessageService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._records = RecordStore(store)
        self._time_provider = time_provider or utc_now

    async def record_inbound(
        self,
        tenant_id: str,
        user_id: str,
        text: str,
        analysis: MessageAnalysis,
    ) -> InboundMessage:
        now = self._time_provider()
        message = InboundMessage(
            id=generate_entity_id(KIND_MESSAGE, now),
            tenant_id=tenant_id,
            user_id=user_id,
            text=text,
            timestamp=now,
            processed=True,
        )
        settings = get_settings()
        list_key = tenant_collection_key(tenant_id, MESSAGES_COLLECTION)
        await self._store.lpush(list_key, message.model_dump_json())
        await self._store.ltrim(list_key, 0, settings.message_list_max - 1)
        await self._records.put(
            primary_key(tenant_id, KIND_ANALYSIS, message.id),
            analysis,
            settings.analysis_ttl_s,
        )
        logger.info(
            "message_recorded tenant_id=%s message_id=%s priority=%s",
            tenant_id,
            message.id,
            analysis.priority,
        )
        return message

    async def _read_recent(self, tenant_id: str, limit: int) -> list[dict[str, Any]]:
        raw_items = await self._store.lrange(tenant_collection_key(tenant_id, MESSAGES_COLLECTION), 0, limit - 1)
        items: list[dict[str, Any]] = []
        users: dict[str, User | None] = {}
        for raw in raw_items:
            try:
                message = InboundMessage.model_validate_json(raw)
            except SchemaError:
                logger.warning("message_parse_failed tenant_id=%s", tenant_id)
                continue
            analysis = await self._records.get(primary_key(tenant_id, KIND_ANALYSIS, message.id), MessageAnalysis)
            if analysis is None:
                analysis = default_analysis(message.text)
            if message.user_id not in users:
                users[message.user_id] = await self._records.get(
                    primary_key(tenant_id, KIND_USER, message.user_id), User
                )
            user = users[message.user_id]
            items.append(
                {
                    "id": message.id,
                    "user_id": message.user_id,
                    "user_name": user.name if user else "不明",
                    "department": (user.department or "不明") if user else "不明",
                    "text": message.text,
                    "timestamp": message.timestamp.isoformat(),
                    "processed": message.processed,
                    **analysis.model_dump(),
                }
            )
        return items

    async def list_recent(self, tenant_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[dict[str, Any]]:
        # Fail soft: the dashboard renders an empty state instead of an error.
        limit = max(1, min(limit, get_settings().message_list_max))
        try:
            return await self._read_recent(tenant_id, limit)
        except Exception as exc:  # noqa: BLE001 - dashboard reads fail soft
            logger.warning("message_list_failed tenant_id=%s error=%s", tenant_id, type(exc).__name__)
            return []

    async def dashboard_stats(self, tenant_id: str) -> dict[str, Any]:
        try:
            return await self._collect_stats(tenant_id)
        except Exception as exc:  # noqa: BLE001 - dashboard reads fail soft
            logger.warning("dashboard_stats_failed tenant_id=%s error=%s", tenant_id, type(exc).__name__)
            return _empty_stats()

    async def _collect_stats(self, tenant_id: str) -> dict[str, Any]:
        now = self._time_provider()
        recent = await self._read_recent(tenant_id, get_settings().message_list_max)
        priorities = [item["priority"] for item in recent]
        month = month_key(now)
        message_usage = await self._store.get(usage_key(tenant_id, month, USAGE_MESSAGE))
        api_usage = await self._store.get(usage_key(tenant_id, month, USAGE_API_CALL))
        return {
            "messages": {
                "total": await self._store.llen(tenant_collection_key(tenant_id, MESSAGES_COLLECTION)),
                "urgent": priorities.count("urgent"),
                "high": priorities.count("high"),
            },
            "users": {
                "executives": await self._store.scard(index_key(tenant_id, KIND_USER, "role", "executive")),
                "employees": await self._store.scard(index_key(tenant_id, KIND_USER, "role", "employee")),
            },
            "tasks": {
                "urgent": await self._store.scard(index_key(tenant_id, KIND_TASK, "priority", "urgent")),
                "high": await self._store.scard(index_key(tenant_id, KIND_TASK, "priority", "high")),
            },
            "today_events": await self._store.scard(
                index_key(tenant_id, KIND_EVENT, "date", day_key(local_day(now)))
            ),
            "usage": {
                "messages": int(message_usage or 0),
                "api_calls": int(api_usage or 0),
            },
        }


def _empty_stats() -> dict[str, Any]:
    return {
        "messages": {"total": 0, "urgent": 0, "high": 0},
        "users": {"executives": 0, "employees": 0},
        "tasks": {"urgent": 0, "high": 0},
        "today_events": 0,
        "usage": {"messages": 0, "api_calls": 0},
    }
