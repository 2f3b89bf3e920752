from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from aisecretary.core.errors import ValidationError
from aisecretary.core.timeutil import parse_datetime


PlanId = Literal["free", "basic", "premium", "enterprise"]
Role = Literal["executive", "employee"]
TaskPriority = Literal["urgent", "high", "normal", "low"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TaskCategory = Literal["meeting", "document", "approval", "review", "other"]
EventType = Literal["meeting", "task", "reminder", "other"]
EventStatus = Literal["confirmed", "tentative", "cancelled"]
UsageType = Literal["message", "api_call"]
InstructionStatus = Literal["sent", "delivered", "read", "replied"]
PendingActionType = Literal["task_creation", "schedule_creation", "employee_instruction"]
PendingActionStatus = Literal["pending", "approved", "rejected"]
Intent = Literal["task_creation", "schedule_management", "employee_instruction", "general_inquiry"]

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _coerce_moment(value: Any) -> Any:
    # Naive or date-only inputs are read in the business timezone.
    if isinstance(value, (datetime, str)):
        try:
            return parse_datetime(value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
    return value


def _coerce_moments(value: Any) -> Any:
    if isinstance(value, list):
        return [_coerce_moment(item) for item in value]
    return value


class Record(BaseModel):
    # Unknown keys from older payloads are dropped instead of failing the read.
    model_config = ConfigDict(extra="ignore")


class NotificationHours(Record):
    start: int = 9
    end: int = 22


class TenantSettings(Record):
    notification_hours: NotificationHours = Field(default_factory=NotificationHours)
    urgent_always_notify: bool = True
    language: str = "ja"


class Tenant(Record):
    tenant_id: str
    company_name: str
    created_at: datetime
    plan: PlanId = "free"
    plan_updated_at: datetime | None = None
    is_active: bool = True
    settings: TenantSettings = Field(default_factory=TenantSettings)


class PlanChange(Record):
    from_plan: PlanId
    to_plan: PlanId
    timestamp: datetime


class User(Record):
    user_id: str
    name: str
    department: str = ""
    tenant_id: str
    role: Role
    is_admin: bool = False
    registered_at: datetime
    updated_at: datetime | None = None


class UserDirectoryEntry(Record):
    tenant_id: str
    role: Role


class TaskReminder(Record):
    enabled: bool = False
    # Absolute fire times.
    timing: list[datetime] = Field(default_factory=list)

    normalize_timing = field_validator("timing", mode="before")(_coerce_moments)


class TaskComment(Record):
    id: str
    user_id: str
    text: str
    created_at: datetime


class Task(Record):
    id: str
    tenant_id: str
    assigned_to: str
    created_by: str
    title: str
    description: str | None = None
    priority: TaskPriority = "normal"
    status: TaskStatus = "pending"
    category: TaskCategory = "other"
    due_date: datetime | None = None
    reminder: TaskReminder | None = None
    comments: list[TaskComment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    related_event_id: str | None = None

    normalize_due_date = field_validator("due_date", mode="before")(_coerce_moment)


class TaskCreate(BaseModel):
    tenant_id: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    title: str | None = None
    description: str | None = None
    priority: TaskPriority = "normal"
    category: TaskCategory = "other"
    due_date: datetime | None = None
    reminder: TaskReminder | None = None
    related_event_id: str | None = None

    normalize_due_date = field_validator("due_date", mode="before")(_coerce_moment)


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    assigned_to: str | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    category: TaskCategory | None = None
    due_date: datetime | None = None
    reminder: TaskReminder | None = None

    normalize_due_date = field_validator("due_date", mode="before")(_coerce_moment)


class ReminderRecord(Record):
    task_id: str
    tenant_id: str
    assigned_to: str
    title: str
    due_date: datetime | None = None
    scheduled_at: datetime


class CalendarEvent(Record):
    id: str
    tenant_id: str
    executive_id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    type: EventType = "meeting"
    status: EventStatus = "confirmed"
    created_by: str
    created_at: datetime
    updated_at: datetime
    external_id: str | None = None

    normalize_times = field_validator("start_time", "end_time", mode="before")(_coerce_moment)


class EventCreate(BaseModel):
    tenant_id: str | None = None
    executive_id: str | None = None
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    type: EventType = "meeting"
    status: EventStatus = "confirmed"
    created_by: str | None = None
    external_id: str | None = None

    normalize_times = field_validator("start_time", "end_time", mode="before")(_coerce_moment)


class EventUpdate(BaseModel):
    executive_id: str | None = None
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] | None = None
    type: EventType | None = None
    status: EventStatus | None = None

    normalize_times = field_validator("start_time", "end_time", mode="before")(_coerce_moment)


class EventCancellation(Record):
    event_id: str
    reason: str
    cancelled_at: datetime


class MessageAnalysis(Record):
    priority: TaskPriority = "normal"
    category: str = "report"
    summary: str = ""
    required_action: str = ""
    sentiment: str = "neutral"


class InboundMessage(Record):
    id: str
    tenant_id: str
    user_id: str
    text: str
    timestamp: datetime
    processed: bool = False


class MessageWithAnalysis(Record):
    message: InboundMessage
    analysis: MessageAnalysis | None = None


class RelayedInstruction(Record):
    message_id: str
    tenant_id: str
    from_user_id: str
    to_name: str
    to_user_id: str
    content: str
    delivered_text: str
    sent_at: datetime
    status: InstructionStatus = "sent"
    read_at: datetime | None = None
    reply_content: str | None = None
    replied_at: datetime | None = None


class IntentAnalysis(Record):
    intent: Intent = "general_inquiry"
    confidence: float = 0.0
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    suggested_action: str = ""
    needs_confirmation: bool = False


class PendingAction(Record):
    id: str
    tenant_id: str
    executive_id: str
    type: PendingActionType
    original_message: str
    analysis: IntentAnalysis
    suggested_action: str
    created_at: datetime
    status: PendingActionStatus = "pending"


class ThinkingEntry(Record):
    timestamp: datetime
    message: str
    intent: Intent
    confidence: float


class CalendarToken(Record):
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime


class UsageCheck(Record):
    allowed: bool
    usage: int
    limit: int
    remaining: int


def parse_payload(model: type[PayloadT], payload: Any) -> PayloadT:
    # Service entry points accept models or plain dicts; schema errors become ValidationError.
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except SchemaError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(first.get("msg", "Invalid value"), field=field) from exc
