from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
from typing import Any, Callable

from aisecretary.core.config import get_settings
from aisecretary.core.errors import NotFoundError, ValidationError
from aisecretary.core.timeutil import day_key, days_between, local_day, utc_now
from aisecretary.domain.models import (
    CalendarEvent,
    EventCancellation,
    EventCreate,
    EventUpdate,
    Task,
    TaskCreate,
    parse_payload,
)
from aisecretary.persistence.keys import KIND_EVENT, cancellation_key, generate_entity_id, index_key, primary_key
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.services.availability import TimeSlot, busy_intervals_for_day, calculate_available_slots
from aisecretary.services.tasks import TaskService


logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("tenant_id", "executive_id", "title", "start_time", "end_time")

# Title keywords that call for a preparation task: (keywords, title suffix, description, priority).
_PREPARATION_RULES: tuple[tuple[tuple[str, ...], str, str, str], ...] = (
    (("プレゼン", "発表"), "の資料作成", "{title}のプレゼンテーション資料を作成する", "high"),
    (("面接", "面談"), "の準備", "{title}に向けて質問項目と評価基準を準備する", "normal"),
)
_MEETING_RULE = ("の事前準備", "会議「{title}」に向けて資料準備と議題の整理を行う", "high")
# Preparation tasks are due this long before the event starts.
PREPARATION_LEAD = timedelta(hours=2)


def event_index_keys(event: CalendarEvent) -> list[str]:
    return [
        index_key(event.tenant_id, KIND_EVENT, "date", day_key(local_day(event.start_time))),
        index_key(event.tenant_id, KIND_EVENT, "executive", event.executive_id),
    ]


def _preparation_plan(event: CalendarEvent) -> tuple[str, str, str] | None:
    for keywords, suffix, description, priority in _PREPARATION_RULES:
        if any(keyword in event.title for keyword in keywords):
            return f"{event.title}{suffix}", description.format(title=event.title), priority
    if event.type == "meeting":
        suffix, description, priority = _MEETING_RULE
        return f"{event.title}{suffix}", description.format(title=event.title), priority
    return None


class CalendarService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        tasks: TaskService | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._records = RecordStore(store)
        self._time_provider = time_provider or utc_now
        self._tasks = tasks or TaskService(store, time_provider=self._time_provider)

    @staticmethod
    def _ttl_seconds() -> int:
        return get_settings().event_ttl_days * 86400

    def _key(self, tenant_id: str, event_id: str) -> str:
        return primary_key(tenant_id, KIND_EVENT, event_id)

    async def create_event(self, fields: EventCreate | dict[str, Any]) -> CalendarEvent:
        payload = parse_payload(EventCreate, fields)
        for name in _REQUIRED_FIELDS:
            value = getattr(payload, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"{name} is required", field=name)
        if payload.end_time <= payload.start_time:
            raise ValidationError("end_time must be after start_time", field="end_time")

        now = self._time_provider()
        event = CalendarEvent(
            id=generate_entity_id(KIND_EVENT, now),
            tenant_id=payload.tenant_id,
            executive_id=payload.executive_id,
            title=payload.title.strip(),
            description=payload.description,
            start_time=payload.start_time,
            end_time=payload.end_time,
            location=payload.location,
            attendees=payload.attendees,
            type=payload.type,
            status=payload.status,
            created_by=payload.created_by or payload.executive_id,
            created_at=now,
            updated_at=now,
            external_id=payload.external_id,
        )
        key = self._key(event.tenant_id, event.id)
        indexes = event_index_keys(event)
        await self._records.put_indexed(
            key,
            event,
            entity_id=event.id,
            index_keys=indexes,
            ttl_seconds=self._ttl_seconds(),
        )
        logger.info(
            "event_created tenant_id=%s event_id=%s executive_id=%s",
            event.tenant_id,
            event.id,
            event.executive_id,
        )
        return event

    async def get_event(self, tenant_id: str, event_id: str) -> CalendarEvent:
        event = await self._records.get(self._key(tenant_id, event_id), CalendarEvent)
        if event is None:
            raise NotFoundError("event", event_id)
        return event

    async def _events_on(self, tenant_id: str, day: date) -> list[CalendarEvent]:
        ids = await self._records.members_of(index_key(tenant_id, KIND_EVENT, "date", day_key(day)))
        return await self._records.fetch_many(
            ids, lambda event_id: self._key(tenant_id, event_id), CalendarEvent
        )

    async def get_events(
        self,
        tenant_id: str,
        start_day: date,
        end_day: date,
        executive_id: str | None = None,
    ) -> list[CalendarEvent]:
        if end_day < start_day:
            raise ValidationError("end_date must not be before start_date", field="end_date")
        events: dict[str, CalendarEvent] = {}
        for day in days_between(start_day, end_day):
            for event in await self._events_on(tenant_id, day):
                if executive_id and event.executive_id != executive_id:
                    continue
                events[event.id] = event
        return sorted(events.values(), key=lambda event: (event.start_time, event.id))

    async def get_available_slots(
        self,
        tenant_id: str,
        executive_id: str,
        day: date,
        duration: int = 60,
    ) -> list[TimeSlot]:
        # The previous day is included so events crossing midnight still block the morning.
        candidates = await self.get_events(tenant_id, day - timedelta(days=1), day, executive_id)
        return calculate_available_slots(day, busy_intervals_for_day(day, candidates), duration)

    async def update_event(self, tenant_id: str, event_id: str, patch: EventUpdate | dict[str, Any]) -> CalendarEvent:
        updates = parse_payload(EventUpdate, patch)
        changes = {name: value for name, value in updates.model_dump(exclude_unset=True).items() if value is not None}
        key = self._key(tenant_id, event_id)
        async with self._records.lock(key):
            current = await self.get_event(tenant_id, event_id)
            if "title" in changes and not str(changes["title"]).strip():
                raise ValidationError("title must not be empty", field="title")
            changes["updated_at"] = self._time_provider()
            updated = CalendarEvent.model_validate({**current.model_dump(), **changes})
            if updated.end_time <= updated.start_time:
                raise ValidationError("end_time must be after start_time", field="end_time")
            await self._records.put(key, updated, self._ttl_seconds())
            await self._records.reindex(
                key,
                entity_id=event_id,
                old_index_keys=event_index_keys(current),
                new_index_keys=event_index_keys(updated),
                ttl_seconds=self._ttl_seconds(),
            )
        logger.info("event_updated tenant_id=%s event_id=%s", tenant_id, event_id)
        return updated

    async def cancel_event(self, tenant_id: str, event_id: str, reason: str | None = None) -> CalendarEvent:
        key = self._key(tenant_id, event_id)
        async with self._records.lock(key):
            current = await self.get_event(tenant_id, event_id)
            now = self._time_provider()
            cancelled = current.model_copy(update={"status": "cancelled", "updated_at": now})
            await self._records.put(key, cancelled, self._ttl_seconds())
        if reason:
            await self._records.put(
                cancellation_key(tenant_id, event_id),
                EventCancellation(event_id=event_id, reason=reason, cancelled_at=now),
                get_settings().event_cancellation_ttl_days * 86400,
            )
        logger.info("event_cancelled tenant_id=%s event_id=%s", tenant_id, event_id)
        return cancelled

    async def get_cancellation(self, tenant_id: str, event_id: str) -> EventCancellation | None:
        return await self._records.get(cancellation_key(tenant_id, event_id), EventCancellation)

    async def delete_event(self, tenant_id: str, event_id: str) -> bool:
        key = self._key(tenant_id, event_id)
        async with self._records.lock(key):
            await self.get_event(tenant_id, event_id)
            deleted = await self._records.delete_record(key, entity_id=event_id)
            await self._store.delete(cancellation_key(tenant_id, event_id))
        logger.info("event_deleted tenant_id=%s event_id=%s", tenant_id, event_id)
        return deleted

    async def get_today_count(self, tenant_id: str) -> int:
        return await self._store.scard(
            index_key(tenant_id, KIND_EVENT, "date", day_key(local_day(self._time_provider())))
        )

    async def derive_tasks_from_events(
        self,
        tenant_id: str,
        executive_id: str,
        days: int = 30,
    ) -> dict[str, Any]:
        """Create preparation tasks for upcoming events that do not have one yet.

        Presentations and interviews are matched on title keywords, other
        meetings get a generic preparation task. Each task is assigned to the
        executive and falls due two hours before the event starts.
        """
        if days <= 0:
            raise ValidationError("days must be positive", field="days")
        now = self._time_provider()
        today = local_day(now)
        events = await self.get_events(tenant_id, today, today + timedelta(days=days), executive_id)
        existing = (await self._tasks.get_user_tasks(tenant_id, executive_id))["tasks"]
        created: list[Task] = []
        for event in events:
            if event.status == "cancelled" or event.start_time <= now:
                continue
            plan = _preparation_plan(event)
            if plan is None:
                continue
            if any(_covers(task, event) for task in existing + created):
                continue
            title, description, priority = plan
            task = await self._tasks.create_task(
                TaskCreate(
                    tenant_id=tenant_id,
                    assigned_to=executive_id,
                    created_by="system",
                    title=title,
                    description=description,
                    priority=priority,
                    category="meeting",
                    due_date=event.start_time - PREPARATION_LEAD,
                    related_event_id=event.id,
                )
            )
            created.append(task)
        logger.info(
            "event_tasks_derived tenant_id=%s executive_id=%s created=%s analyzed=%s",
            tenant_id,
            executive_id,
            len(created),
            len(events),
        )
        return {"tasks_created": created, "events_analyzed": len(events)}


def _covers(task: Task, event: CalendarEvent) -> bool:
    if task.related_event_id:
        return task.related_event_id == event.id
    return event.title in task.title or event.title in (task.description or "")
