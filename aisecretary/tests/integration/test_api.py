from __future__ import annotations

import pytest

from aisecretary.tests.utils.api import build_test_app


async def _create_company(client) -> str:
    response = await client.post(
        "/v1/tenants",
        json={"company_name": "Acme", "admin_user_id": "E1", "admin_name": "佐藤社長"},
    )
    assert response.status_code == 201
    tenant_id = response.json()["data"]["tenant"]["tenant_id"]
    employee = await client.post(
        f"/v1/tenants/{tenant_id}/users",
        json={"user_id": "U1", "name": "田中一郎", "department": "営業部"},
    )
    assert employee.status_code == 201
    return tenant_id


@pytest.mark.asyncio
async def test_health_and_request_id_header() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-123"
    body = response.json()
    assert body["data"] == {"status": "ok", "store": "ok"}
    assert body["meta"] == {"request_id": "req-123", "api_version": "v1"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        response = await client.get("/v1/nowhere")
    assert response.status_code == 404
    body = response.json()
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["meta"]["request_id"]


@pytest.mark.asyncio
async def test_tenant_directory_routes() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        listed = await client.get("/v1/tenants")
        users = await client.get(f"/v1/tenants/{tenant_id}/users", params={"role": "employee"})
        patched = await client.patch(f"/v1/tenants/{tenant_id}/users/U1", json={"department": "企画部"})
        missing = await client.get(f"/v1/tenants/{tenant_id}/users/U9")

    [entry] = listed.json()["data"]
    assert (entry["tenant_id"], entry["executive_count"], entry["employee_count"]) == (tenant_id, 1, 1)
    assert [user["user_id"] for user in users.json()["data"]] == ["U1"]
    assert patched.json()["data"]["department"] == "企画部"
    assert missing.status_code == 404
    assert missing.json()["error"]["details"] == {"kind": "user", "id": "U9"}


@pytest.mark.asyncio
async def test_task_lifecycle_over_http() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        created = await client.post(
            f"/v1/tenants/{tenant_id}/tasks",
            json={
                "title": "Draft report",
                "assigned_to": "U1",
                "created_by": "E1",
                "priority": "high",
                "due_date": "2026-10-20T17:00:00",
            },
        )
        task_id = created.json()["data"]["id"]
        listed = await client.get(f"/v1/tenants/{tenant_id}/users/U1/tasks")
        due = await client.get(f"/v1/tenants/{tenant_id}/tasks/due", params={"date": "2026-10-20"})
        completed = await client.patch(f"/v1/tenants/{tenant_id}/tasks/{task_id}", json={"status": "completed"})
        reopened = await client.patch(f"/v1/tenants/{tenant_id}/tasks/{task_id}", json={"status": "pending"})
        stats = await client.get(f"/v1/tenants/{tenant_id}/tasks/stats")
        deleted = await client.delete(f"/v1/tenants/{tenant_id}/tasks/{task_id}")
        gone = await client.get(f"/v1/tenants/{tenant_id}/tasks/{task_id}")

    assert created.status_code == 201
    assert created.json()["data"]["status"] == "pending"
    assert listed.json()["data"]["total"] == 1
    assert [task["id"] for task in due.json()["data"]] == [task_id]
    assert completed.status_code == 200
    assert completed.json()["data"]["completed_at"] is not None
    assert reopened.status_code == 409
    assert reopened.json()["error"]["code"] == "INVALID_TRANSITION"
    assert stats.json()["data"]["high"] == 1
    assert deleted.json()["data"] == {"task_id": task_id, "deleted": True}
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_request_validation_maps_to_400() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        unknown_field = await client.post(
            f"/v1/tenants/{tenant_id}/tasks",
            json={"title": "x", "assigned_to": "U1", "created_by": "E1", "bogus": True},
        )
        missing_title = await client.post(
            f"/v1/tenants/{tenant_id}/tasks",
            json={"assigned_to": "U1", "created_by": "E1"},
        )
        bad_month_window = await client.get(f"/v1/tenants/{tenant_id}/usage/history", params={"months": 0})

    for response in (unknown_field, missing_title, bad_month_window):
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert missing_title.json()["error"]["details"] == {"field": "title"}


@pytest.mark.asyncio
async def test_unknown_tenant_is_404() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        response = await client.post(
            "/v1/tenants/missing/tasks",
            json={"title": "x", "assigned_to": "U1", "created_by": "E1"},
        )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_plan_limits_and_upgrade() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        for index in range(2, 5):
            added = await client.post(f"/v1/tenants/{tenant_id}/users", json={"user_id": f"U{index}", "name": f"社員{index}"})
            assert added.status_code == 201
        blocked = await client.post(f"/v1/tenants/{tenant_id}/users", json={"user_id": "U5", "name": "社員5"})
        upgraded = await client.post(f"/v1/tenants/{tenant_id}/usage/plan", json={"new_plan": "basic"})
        allowed = await client.post(f"/v1/tenants/{tenant_id}/users", json={"user_id": "U5", "name": "社員5"})
        usage = await client.get(f"/v1/tenants/{tenant_id}/usage")
        unknown_plan = await client.post(f"/v1/tenants/{tenant_id}/usage/plan", json={"new_plan": "platinum"})
        plans = await client.get("/v1/plans")

    assert blocked.status_code == 402
    assert blocked.json()["error"]["code"] == "PLAN_LIMIT_EXCEEDED"
    assert blocked.json()["error"]["details"] == {"limit": 5, "used": 5}
    assert upgraded.json()["data"]["plan"]["id"] == "basic"
    assert allowed.status_code == 201
    assert usage.json()["data"]["plan"]["current"] == "basic"
    assert usage.json()["data"]["usage"]["users"]["used"] == 6
    assert unknown_plan.status_code == 400
    assert [plan["id"] for plan in plans.json()["data"]] == ["free", "basic", "premium", "enterprise"]


@pytest.mark.asyncio
async def test_calendar_routes() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        created = await client.post(
            f"/v1/tenants/{tenant_id}/calendar/events",
            json={
                "executive_id": "E1",
                "title": "役員会議",
                "type": "meeting",
                "start_time": "2026-10-20T09:00:00",
                "end_time": "2026-10-20T10:00:00",
                "created_by": "E1",
            },
        )
        event_id = created.json()["data"]["id"]
        slots = await client.get(
            f"/v1/tenants/{tenant_id}/calendar/slots",
            params={"executive_id": "E1", "date": "2026-10-20", "duration": 60},
        )
        listed = await client.get(f"/v1/tenants/{tenant_id}/calendar/events")
        derived = await client.post(f"/v1/tenants/{tenant_id}/calendar/derive-tasks", json={"executive_id": "E1"})
        cancelled = await client.post(
            f"/v1/tenants/{tenant_id}/calendar/events/{event_id}/cancel", json={"reason": "延期"}
        )
        inverted = await client.post(
            f"/v1/tenants/{tenant_id}/calendar/events",
            json={
                "executive_id": "E1",
                "title": "逆転",
                "start_time": "2026-10-20T12:00:00",
                "end_time": "2026-10-20T11:00:00",
                "created_by": "E1",
            },
        )

    assert created.status_code == 201
    assert slots.json()["data"][0]["start_time"] == "10:00"
    assert [event["id"] for event in listed.json()["data"]] == [event_id]
    assert derived.json()["data"]["events_analyzed"] == 1
    assert len(derived.json()["data"]["tasks_created"]) == 1
    assert cancelled.json()["data"]["status"] == "cancelled"
    assert inverted.status_code == 400


@pytest.mark.asyncio
async def test_instruction_relay_routes() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        sent = await client.post(
            f"/v1/tenants/{tenant_id}/instructions",
            json={"executive_id": "E1", "message": "田中さんに資料を送ってと伝えて"},
        )
        message_id = sent.json()["data"]["instruction"]["message_id"]
        listed = await client.get(f"/v1/tenants/{tenant_id}/instructions", params={"executive_id": "E1"})
        replied = await client.patch(
            f"/v1/tenants/{tenant_id}/instructions/{message_id}",
            json={"status": "replied", "reply_content": "承知しました"},
        )
        not_a_command = await client.post(
            f"/v1/tenants/{tenant_id}/instructions",
            json={"executive_id": "E1", "message": "今日の天気は？"},
        )

    assert sent.status_code == 201
    assert sent.json()["data"]["instruction"]["status"] == "delivered"
    assert len(harness.sink.pushes_to("U1")) == 1
    assert [item["message_id"] for item in listed.json()["data"]] == [message_id]
    assert replied.json()["data"]["status"] == "replied"
    assert len(harness.sink.pushes_to("E1")) == 1
    assert not_a_command.status_code == 400


@pytest.mark.asyncio
async def test_dashboard_routes() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        dashboard = await client.get(f"/v1/tenants/{tenant_id}/dashboard")
        messages = await client.get(f"/v1/tenants/{tenant_id}/messages")
        missing = await client.get("/v1/tenants/missing/dashboard")

    assert dashboard.status_code == 200
    assert dashboard.json()["data"]["users"] == {"executives": 1, "employees": 1}
    assert messages.json()["data"] == []
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_google_calendar_routes() -> None:
    harness = build_test_app()
    harness.calendar_provider.events = [
        {
            "id": "g1",
            "summary": "取締役会",
            "start": {"dateTime": "2026-10-21T10:00:00+09:00"},
            "end": {"dateTime": "2026-10-21T11:00:00+09:00"},
        }
    ]
    async with harness.client() as client:
        tenant_id = await _create_company(client)
        before = await client.post(f"/v1/tenants/{tenant_id}/calendar/google/sync", json={"executive_id": "E1"})
        connect = await client.post(f"/v1/tenants/{tenant_id}/calendar/google/connect", json={"executive_id": "E1"})
        callback = await client.get(
            "/v1/calendar/google/callback", params={"code": "abc", "state": f"{tenant_id}:E1"}
        )
        status = await client.get(f"/v1/tenants/{tenant_id}/calendar/google/status", params={"executive_id": "E1"})
        synced = await client.post(f"/v1/tenants/{tenant_id}/calendar/google/sync", json={"executive_id": "E1"})
        removed = await client.delete(f"/v1/tenants/{tenant_id}/calendar/google", params={"executive_id": "E1"})
        bad_state = await client.get("/v1/calendar/google/callback", params={"code": "abc", "state": "nope"})

    assert before.status_code == 400
    assert before.json()["error"]["code"] == "CALENDAR_AUTH_FAILED"
    assert "state=" in connect.json()["data"]["authorization_url"]
    assert callback.json()["data"] == {"connected": True, "tenant_id": tenant_id, "executive_id": "E1"}
    assert status.json()["data"]["connected"] is True
    assert synced.json()["data"] == {"synced_events": 1, "total_provider_events": 1}
    assert removed.json()["data"] == {"disconnected": True}
    assert bad_state.status_code == 400


@pytest.mark.asyncio
async def test_metrics_report_request_latency() -> None:
    harness = build_test_app()
    async with harness.client() as client:
        await client.get("/v1/tenants/missing/usage")
        response = await client.get("/v1/health/metrics")

    data = response.json()["data"]
    assert data["window_s"] == 300
    assert set(data["p95_latency_ms"]) == {"api"}
    assert data["counters"] == {}
    assert data["external_failure_ratio"]["llm.openai"] is None
