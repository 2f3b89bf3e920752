from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
import logging
from typing import Any, Callable, Iterable

from aisecretary.core.config import get_settings
from aisecretary.core.errors import InvalidTransition, NotFoundError, ValidationError
from aisecretary.core.timeutil import day_key, local_day, utc_now
from aisecretary.domain.models import ReminderRecord, Task, TaskComment, TaskCreate, TaskUpdate, parse_payload
from aisecretary.persistence.keys import KIND_TASK, generate_entity_id, index_key, primary_key, reminder_key
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore


logger = logging.getLogger(__name__)

PRIORITIES = ("urgent", "high", "normal", "low")
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

# Forward-only status moves; same-status updates are allowed and idempotent.
_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"pending", "in_progress", "completed", "cancelled"}),
    "in_progress": frozenset({"in_progress", "completed", "cancelled"}),
    "completed": frozenset({"completed"}),
    "cancelled": frozenset({"cancelled"}),
}

_REQUIRED_FIELDS = ("tenant_id", "assigned_to", "created_by", "title")


def task_index_keys(task: Task) -> list[str]:
    keys = [
        index_key(task.tenant_id, KIND_TASK, "assignee", task.assigned_to),
        index_key(task.tenant_id, KIND_TASK, "priority", task.priority),
    ]
    if task.due_date is not None:
        keys.append(index_key(task.tenant_id, KIND_TASK, "due", day_key(local_day(task.due_date))))
    return keys


def _sort_by_due(tasks: Iterable[Task]) -> list[Task]:
    # Ascending due date; undated tasks go last, ties keep id order.
    return sorted(
        tasks,
        key=lambda task: (task.due_date is None, task.due_date.timestamp() if task.due_date else 0.0, task.id),
    )


def _status_summary(tasks: Iterable[Task]) -> dict[str, int]:
    counts = Counter(task.status for task in tasks)
    return {status: counts.get(status, 0) for status in ("pending", "in_progress", "completed")}


class TaskService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._records = RecordStore(store)
        self._time_provider = time_provider or utc_now

    @staticmethod
    def _ttl_seconds() -> int:
        return get_settings().task_ttl_days * 86400

    def _key(self, tenant_id: str, task_id: str) -> str:
        return primary_key(tenant_id, KIND_TASK, task_id)

    async def create_task(self, fields: TaskCreate | dict[str, Any]) -> Task:
        payload = parse_payload(TaskCreate, fields)
        for name in _REQUIRED_FIELDS:
            value = getattr(payload, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required", field=name)

        now = self._time_provider()
        task = Task(
            id=generate_entity_id(KIND_TASK, now),
            tenant_id=payload.tenant_id,
            assigned_to=payload.assigned_to,
            created_by=payload.created_by,
            title=payload.title.strip(),
            description=payload.description,
            priority=payload.priority,
            category=payload.category,
            due_date=payload.due_date,
            reminder=payload.reminder,
            related_event_id=payload.related_event_id,
            created_at=now,
            updated_at=now,
        )
        # Derive every key up front so a malformed component fails before any write.
        key = self._key(task.tenant_id, task.id)
        indexes = task_index_keys(task)
        await self._records.put_indexed(
            key,
            task,
            entity_id=task.id,
            index_keys=indexes,
            ttl_seconds=self._ttl_seconds(),
        )
        await self._schedule_reminders(task)
        logger.info(
            "task_created tenant_id=%s task_id=%s priority=%s", task.tenant_id, task.id, task.priority
        )
        return task

    async def _schedule_reminders(self, task: Task) -> int:
        # Best-effort: a reminder failure is logged and never fails the task write.
        if task.reminder is None or not task.reminder.enabled:
            return 0
        written = 0
        ttl = get_settings().reminder_ttl_days * 86400
        for fire_at in task.reminder.timing:
            try:
                record = ReminderRecord(
                    task_id=task.id,
                    tenant_id=task.tenant_id,
                    assigned_to=task.assigned_to,
                    title=task.title,
                    due_date=task.due_date,
                    scheduled_at=fire_at,
                )
                await self._records.put(
                    reminder_key(task.tenant_id, task.id, int(fire_at.timestamp())), record, ttl
                )
                written += 1
            except Exception as exc:  # noqa: BLE001 - reminders are best-effort
                logger.warning(
                    "task_reminder_failed tenant_id=%s task_id=%s error=%s",
                    task.tenant_id,
                    task.id,
                    type(exc).__name__,
                )
        return written

    async def get_task(self, tenant_id: str, task_id: str) -> Task:
        task = await self._records.get(self._key(tenant_id, task_id), Task)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def update_task(self, tenant_id: str, task_id: str, patch: TaskUpdate | dict[str, Any]) -> Task:
        updates = parse_payload(TaskUpdate, patch)
        changes = updates.model_dump(exclude_unset=True)
        key = self._key(tenant_id, task_id)
        async with self._records.lock(key):
            current = await self.get_task(tenant_id, task_id)
            for name in ("title", "assigned_to"):
                if name in changes and (changes[name] is None or not str(changes[name]).strip()):
                    raise ValidationError(f"{name} must not be empty", field=name)
            for name in ("priority", "status", "category"):
                if name in changes and changes[name] is None:
                    changes.pop(name)

            new_status = changes.get("status", current.status)
            if new_status not in _ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransition(
                    f"Cannot move task from {current.status} to {new_status}", field="status"
                )

            now = self._time_provider()
            changes["updated_at"] = now
            if new_status == "completed" and current.completed_at is None:
                changes["completed_at"] = now
            updated = Task.model_validate({**current.model_dump(), **changes})

            await self._records.put(key, updated, self._ttl_seconds())
            await self._records.reindex(
                key,
                entity_id=task_id,
                old_index_keys=task_index_keys(current),
                new_index_keys=task_index_keys(updated),
                ttl_seconds=self._ttl_seconds(),
            )
        if "reminder" in changes or "due_date" in changes:
            await self._schedule_reminders(updated)
        logger.info("task_updated tenant_id=%s task_id=%s status=%s", tenant_id, task_id, updated.status)
        return updated

    async def add_comment(self, tenant_id: str, task_id: str, user_id: str, text: str) -> TaskComment:
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not text or not text.strip():
            raise ValidationError("text is required", field="text")
        key = self._key(tenant_id, task_id)
        async with self._records.lock(key):
            task = await self.get_task(tenant_id, task_id)
            now = self._time_provider()
            comment = TaskComment(
                id=f"comment_{int(now.timestamp() * 1000)}_{len(task.comments) + 1}",
                user_id=user_id,
                text=text.strip(),
                created_at=now,
            )
            updated = task.model_copy(update={"comments": [*task.comments, comment], "updated_at": now})
            await self._records.put(key, updated, self._ttl_seconds())
        return comment

    async def delete_task(self, tenant_id: str, task_id: str) -> bool:
        # Ledger-driven removal from every index the task was ever inserted into.
        key = self._key(tenant_id, task_id)
        async with self._records.lock(key):
            await self.get_task(tenant_id, task_id)
            deleted = await self._records.delete_record(key, entity_id=task_id)
        logger.info("task_deleted tenant_id=%s task_id=%s", tenant_id, task_id)
        return deleted

    async def _tasks_in_index(self, tenant_id: str, index: str) -> list[Task]:
        ids = await self._records.members_of(index)
        return await self._records.fetch_many(ids, lambda task_id: self._key(tenant_id, task_id), Task)

    async def get_user_tasks(
        self,
        tenant_id: str,
        user_id: str,
        *,
        status: str | None = None,
        priority: str | None = None,
    ) -> dict[str, Any]:
        tasks = await self._tasks_in_index(tenant_id, index_key(tenant_id, KIND_TASK, "assignee", user_id))
        if status:
            tasks = [task for task in tasks if task.status == status]
        if priority:
            tasks = [task for task in tasks if task.priority == priority]
        ordered = _sort_by_due(tasks)
        return {"tasks": ordered, "total": len(ordered), "summary": _status_summary(ordered)}

    async def get_due_tasks(self, tenant_id: str, day: date) -> list[Task]:
        tasks = await self._tasks_in_index(tenant_id, index_key(tenant_id, KIND_TASK, "due", day_key(day)))
        return _sort_by_due(task for task in tasks if task.status not in TERMINAL_STATUSES)

    async def get_overdue_tasks(self, tenant_id: str) -> list[Task]:
        # Only the configured lookback window is scanned; older due days are ignored.
        today = local_day(self._time_provider())
        seen: dict[str, Task] = {}
        for offset in range(1, get_settings().overdue_lookback_days + 1):
            for task in await self.get_due_tasks(tenant_id, today - timedelta(days=offset)):
                seen.setdefault(task.id, task)
        return _sort_by_due(seen.values())

    async def get_priority_stats(self, tenant_id: str) -> dict[str, int]:
        stats: dict[str, int] = {}
        for priority in PRIORITIES:
            stats[priority] = await self._store.scard(index_key(tenant_id, KIND_TASK, "priority", priority))
        return stats
