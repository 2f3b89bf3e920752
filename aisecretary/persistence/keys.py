from __future__ import annotations

from datetime import datetime
import secrets
import string

from aisecretary.core.errors import ValidationError


SEPARATOR = ":"
TENANT_PREFIX = "tenant"

KIND_TASK = "task"
KIND_EVENT = "event"
KIND_USER = "user"
KIND_MESSAGE = "message"
KIND_ANALYSIS = "analysis"
KIND_INSTRUCTION = "instruction"
KIND_PENDING_ACTION = "pending_action"

ALL_TENANTS_KEY = "all_tenants"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _component(name: str, value: str) -> str:
    # Reject separators so (tenant, kind, id) -> key stays injective.
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} is required", field=name)
    if SEPARATOR in value:
        raise ValidationError(f"{name} must not contain '{SEPARATOR}'", field=name)
    return value


def tenant_scope(tenant_id: str) -> str:
    return f"{TENANT_PREFIX}:{_component('tenant_id', tenant_id)}"


def primary_key(tenant_id: str, kind: str, entity_id: str) -> str:
    return SEPARATOR.join(
        [tenant_scope(tenant_id), _component("kind", kind), _component(f"{kind}_id", entity_id)]
    )


def index_key(tenant_id: str, kind: str, dimension: str, value: str) -> str:
    # Secondary indexes live under a fixed "idx" segment so they never collide with primaries.
    return SEPARATOR.join(
        [
            tenant_scope(tenant_id),
            "idx",
            _component("kind", kind),
            _component("dimension", dimension),
            _component(dimension, value),
        ]
    )


def ledger_key(record_key: str) -> str:
    # Set of index keys a record was inserted into; drives deterministic deletion.
    return f"{record_key}{SEPARATOR}indexes"


def tenant_info_key(tenant_id: str) -> str:
    return f"{tenant_scope(tenant_id)}{SEPARATOR}info"


def tenant_collection_key(tenant_id: str, collection: str) -> str:
    # Tenant-wide lists and sets: users, messages, plan_history.
    return f"{tenant_scope(tenant_id)}{SEPARATOR}{_component('collection', collection)}"


def user_directory_key(user_id: str) -> str:
    # Global sender -> tenant lookup used by the chat webhook.
    return f"{KIND_USER}{SEPARATOR}{_component('user_id', user_id)}"


def usage_key(tenant_id: str, month_key: str, usage_type: str) -> str:
    return SEPARATOR.join(
        [
            tenant_scope(tenant_id),
            "usage",
            _component("month", month_key),
            _component("usage_type", usage_type),
        ]
    )


def executive_key(tenant_id: str, executive_id: str, facet: str) -> str:
    # Per-executive singletons: google_token, thinking log, latest pending action.
    return SEPARATOR.join(
        [
            tenant_scope(tenant_id),
            "executive",
            _component("executive_id", executive_id),
            _component("facet", facet),
        ]
    )


def reminder_key(tenant_id: str, task_id: str, fire_at_epoch_s: int) -> str:
    # Epoch seconds keep the key separator-free and lexically sortable per tenant.
    return SEPARATOR.join(
        [tenant_scope(tenant_id), "reminder", str(int(fire_at_epoch_s)), _component("task_id", task_id)]
    )


def cancellation_key(tenant_id: str, event_id: str) -> str:
    return f"{primary_key(tenant_id, KIND_EVENT, event_id)}{SEPARATOR}cancellation"


def generate_entity_id(kind: str, now: datetime) -> str:
    # Uniqueness is probabilistic: epoch millis plus nine random [a-z0-9] chars.
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{kind}_{int(now.timestamp() * 1000)}_{suffix}"
