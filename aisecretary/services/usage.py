from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
import logging
from typing import Any, Callable

from aisecretary.core.config import get_settings
from aisecretary.core.errors import NotFoundError, PlanLimitExceeded, ValidationError
from aisecretary.core.timeutil import month_key, next_month_start, shift_month, utc_now
from aisecretary.domain.models import PlanChange, Tenant, UsageCheck
from aisecretary.persistence.keys import (
    KIND_USER,
    index_key,
    tenant_collection_key,
    tenant_info_key,
    usage_key,
)
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore


logger = logging.getLogger(__name__)

UNLIMITED = -1

USAGE_MESSAGE = "message"
USAGE_API_CALL = "api_call"
USAGE_TYPES = (USAGE_MESSAGE, USAGE_API_CALL)

PLAN_HISTORY_COLLECTION = "plan_history"


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    monthly_message_limit: int
    employee_limit: int
    price: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Static plan table; -1 means unlimited.
PLANS: dict[str, Plan] = {
    "free": Plan("free", "フリープラン", 100, 5, 0),
    "basic": Plan("basic", "ベーシックプラン", 1000, 20, 5000),
    "premium": Plan("premium", "プレミアムプラン", 10000, 100, 20000),
    "enterprise": Plan("enterprise", "エンタープライズプラン", UNLIMITED, UNLIMITED, 50000),
}


def resolve_plan(plan_id: str | None) -> Plan:
    # Unknown or missing plans fall back to the free tier.
    return PLANS.get(plan_id or "free", PLANS["free"])


def _remaining(limit: int, used: int) -> int:
    if limit == UNLIMITED:
        return UNLIMITED
    return max(0, limit - used)


class UsageService:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        # Allow time injection for deterministic month rollover tests.
        self._store = store
        self._records = RecordStore(store)
        self._time_provider = time_provider or utc_now

    def _current_month(self) -> str:
        return month_key(self._time_provider())

    async def _load_tenant(self, tenant_id: str) -> Tenant | None:
        return await self._records.get(tenant_info_key(tenant_id), Tenant)

    async def _read_counter(self, tenant_id: str, month: str, usage_type: str) -> int:
        raw = await self._store.get(usage_key(tenant_id, month, usage_type))
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning("usage_counter_invalid tenant_id=%s month=%s type=%s", tenant_id, month, usage_type)
            return 0

    async def _user_count(self, tenant_id: str) -> int:
        executives = await self._store.scard(index_key(tenant_id, KIND_USER, "role", "executive"))
        employees = await self._store.scard(index_key(tenant_id, KIND_USER, "role", "employee"))
        return executives + employees

    async def record_usage(self, tenant_id: str, usage_type: str) -> int:
        # Counter TTL is refreshed on every increment and is independent of billing months.
        if usage_type not in USAGE_TYPES:
            raise ValidationError(f"Unknown usage type: {usage_type}", field="usage_type")
        key = usage_key(tenant_id, self._current_month(), usage_type)
        count = await self._store.incr(key)
        await self._store.expire(key, get_settings().usage_ttl_days * 86400)
        return count

    async def check_usage_limit(self, tenant_id: str) -> UsageCheck:
        tenant = await self._load_tenant(tenant_id)
        if tenant is None:
            return UsageCheck(allowed=False, usage=0, limit=0, remaining=0)
        plan = resolve_plan(tenant.plan)
        usage = await self._read_counter(tenant_id, self._current_month(), USAGE_MESSAGE)
        limit = plan.monthly_message_limit
        if limit == UNLIMITED:
            return UsageCheck(allowed=True, usage=usage, limit=UNLIMITED, remaining=UNLIMITED)
        return UsageCheck(allowed=usage < limit, usage=usage, limit=limit, remaining=_remaining(limit, usage))

    async def gate(self, tenant_id: str) -> UsageCheck:
        # Fail open: a broken limit check must not block legitimate traffic.
        try:
            return await self.check_usage_limit(tenant_id)
        except Exception as exc:  # noqa: BLE001 - fail-open gate
            logger.warning("usage_gate_fail_open tenant_id=%s error=%s", tenant_id, type(exc).__name__)
            return UsageCheck(allowed=True, usage=0, limit=UNLIMITED, remaining=UNLIMITED)

    async def get_usage(self, tenant_id: str) -> dict[str, Any]:
        tenant = await self._load_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        plan = resolve_plan(tenant.plan)
        now = self._time_provider()
        month = month_key(now)
        messages = await self._read_counter(tenant_id, month, USAGE_MESSAGE)
        api_calls = await self._read_counter(tenant_id, month, USAGE_API_CALL)
        users = await self._user_count(tenant_id)
        limit = plan.monthly_message_limit
        percentage = 0.0 if limit in (UNLIMITED, 0) else (messages / limit) * 100
        return {
            "plan": {"current": plan.id, "details": plan.to_dict()},
            "usage": {
                "messages": {
                    "used": messages,
                    "limit": limit,
                    "remaining": _remaining(limit, messages),
                    "percentage": round(percentage, 2),
                },
                "users": {
                    "used": users,
                    "limit": plan.employee_limit,
                    "remaining": _remaining(plan.employee_limit, users),
                },
                "api_calls": api_calls,
            },
            "billing": {
                "current_month": month,
                "next_billing_date": next_month_start(now).isoformat(),
            },
        }

    async def upgrade_plan(self, tenant_id: str, new_plan: str) -> Plan:
        if new_plan not in PLANS:
            raise ValidationError(f"Invalid plan: {new_plan}", field="new_plan")
        info_key = tenant_info_key(tenant_id)
        async with self._records.lock(info_key):
            tenant = await self._load_tenant(tenant_id)
            if tenant is None:
                raise NotFoundError("tenant", tenant_id)
            now = self._time_provider()
            previous = tenant.plan
            updated = tenant.model_copy(update={"plan": new_plan, "plan_updated_at": now})
            await self._records.put(info_key, updated)
        history_key = tenant_collection_key(tenant_id, PLAN_HISTORY_COLLECTION)
        change = PlanChange(from_plan=previous, to_plan=new_plan, timestamp=now)
        await self._store.lpush(history_key, change.model_dump_json())
        await self._store.ltrim(history_key, 0, get_settings().plan_history_max - 1)
        logger.info("plan_changed tenant_id=%s from=%s to=%s", tenant_id, previous, new_plan)
        return PLANS[new_plan]

    async def plan_history(self, tenant_id: str) -> list[PlanChange]:
        raw = await self._store.lrange(tenant_collection_key(tenant_id, PLAN_HISTORY_COLLECTION), 0, -1)
        return [PlanChange.model_validate_json(item) for item in raw]

    async def usage_history(self, tenant_id: str, months: int = 3) -> list[dict[str, Any]]:
        # Oldest month first; counters past their TTL read as zero.
        if months <= 0:
            raise ValidationError("months must be positive", field="months")
        now = self._time_provider()
        history: list[dict[str, Any]] = []
        for offset in range(months - 1, -1, -1):
            month = shift_month(now, offset)
            history.append(
                {
                    "month": month,
                    "messages": await self._read_counter(tenant_id, month, USAGE_MESSAGE),
                    "api_calls": await self._read_counter(tenant_id, month, USAGE_API_CALL),
                }
            )
        return history

    async def enforce_user_limit(self, tenant_id: str) -> None:
        tenant = await self._load_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        limit = resolve_plan(tenant.plan).employee_limit
        if limit == UNLIMITED:
            return
        used = await self._user_count(tenant_id)
        if used >= limit:
            raise PlanLimitExceeded(
                f"Plan '{tenant.plan}' allows at most {limit} users",
                limit=limit,
                used=used,
            )
