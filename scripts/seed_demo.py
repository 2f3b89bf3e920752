from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta

from aisecretary.core.timeutil import business_tz, local_day, utc_now
from aisecretary.persistence.factory import get_store
from aisecretary.services.calendar import CalendarService
from aisecretary.services.tasks import TaskService
from aisecretary.services.tenants import TenantService


DEMO_COMPANY = "デモ商事"
DEMO_EXECUTIVE = ("U_demo_ceo", "山田社長")


@dataclass(frozen=True)
class DemoEmployee:
    user_id: str
    name: str
    department: str


@dataclass(frozen=True)
class DemoEvent:
    # Offsets are relative to tomorrow so the calendar always shows upcoming items.
    title: str
    event_type: str
    day_offset: int
    hour: int
    duration_minutes: int


DEMO_EMPLOYEES = (
    DemoEmployee("U_demo_sales", "田中一郎", "営業部"),
    DemoEmployee("U_demo_dev", "鈴木花子", "開発部"),
)

DEMO_EVENTS = (
    DemoEvent("週次経営会議", "meeting", 0, 10, 60),
    DemoEvent("新製品プレゼン", "meeting", 1, 14, 90),
    DemoEvent("採用面接", "meeting", 2, 16, 45),
)


async def seed_demo() -> int:
    store = get_store()
    tenants = TenantService(store)
    existing = await tenants.find_tenant_by_company(DEMO_COMPANY)
    if existing is not None:
        print(f"Demo tenant already seeded ({existing.tenant_id}); skipping.")
        return 0

    tenant, executive = await tenants.create_tenant(DEMO_COMPANY, *DEMO_EXECUTIVE)
    for employee in DEMO_EMPLOYEES:
        await tenants.add_user_to_tenant(
            tenant.tenant_id, employee.user_id, employee.name, department=employee.department
        )

    tomorrow = local_day(utc_now()) + timedelta(days=1)
    calendar = CalendarService(store)
    for event in DEMO_EVENTS:
        day = tomorrow + timedelta(days=event.day_offset)
        start = datetime(day.year, day.month, day.day, event.hour, tzinfo=business_tz())
        await calendar.create_event(
            {
                "tenant_id": tenant.tenant_id,
                "executive_id": executive.user_id,
                "title": event.title,
                "type": event.event_type,
                "start_time": start,
                "end_time": start + timedelta(minutes=event.duration_minutes),
                "created_by": executive.user_id,
            }
        )
    derived = await calendar.derive_tasks_from_events(tenant.tenant_id, executive.user_id, days=7)

    tasks = TaskService(store)
    await tasks.create_task(
        {
            "tenant_id": tenant.tenant_id,
            "assigned_to": DEMO_EMPLOYEES[0].user_id,
            "created_by": executive.user_id,
            "title": "月次売上レポート作成",
            "priority": "high",
            "category": "document",
            "due_date": datetime(tomorrow.year, tomorrow.month, tomorrow.day, 17, tzinfo=business_tz()),
        }
    )
    print(
        f"Seeded tenant {tenant.tenant_id} with {len(DEMO_EMPLOYEES) + 1} users, "
        f"{len(DEMO_EVENTS)} events and {len(derived['tasks_created']) + 1} tasks."
    )
    return 0


def main() -> int:
    # Surface clear failures and exit non-zero so dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or store errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
