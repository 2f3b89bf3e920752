from __future__ import annotations

from datetime import date

import pytest

from aisecretary.core.errors import ClassifierFailure
from aisecretary.core.timeutil import local_day
from aisecretary.persistence.keys import executive_key, usage_key
from aisecretary.persistence.memory_store import InMemoryKeyValueStore
from aisecretary.providers.chat.fake import RecordingNotificationSink
from aisecretary.providers.llm.fake import FakeClassifier
from aisecretary.services.calendar import CalendarService
from aisecretary.services.messages import MessageService
from aisecretary.services.router import (
    INTENT_APOLOGY,
    NO_PENDING_ACTION,
    REGISTRATION_HELP,
    MessageRouter,
    coerce_analysis,
    coerce_intent,
)
from aisecretary.services.tasks import TaskService
from aisecretary.services.tenants import TenantService
from aisecretary.tests.utils.clock import FixedClock
from aisecretary.tests.utils.seed import seed_company


class Harness:
    def __init__(self, responses=None) -> None:
        self.store = InMemoryKeyValueStore()
        self.clock = FixedClock()
        self.classifier = FakeClassifier(responses)
        self.sink = RecordingNotificationSink()
        self.router = MessageRouter(self.store, self.classifier, self.sink, time_provider=self.clock)
        self.tenant_id = ""

    async def seed(self) -> "Harness":
        tenant, _, _ = await seed_company(self.store, self.clock)
        self.tenant_id = tenant.tenant_id
        return self

    async def executive_tasks(self) -> list:
        result = await TaskService(self.store, time_provider=self.clock).get_user_tasks(self.tenant_id, "E1")
        return result["tasks"]


def _intent(intent: str, **fields) -> dict:
    return {"intent": intent, "confidence": 90, **fields}


def test_coerce_analysis_accepts_camel_case_and_rejects_garbage() -> None:
    analysis = coerce_analysis({"priority": "high", "requiredAction": "確認", "summary": "s"}, "text")
    assert analysis.required_action == "確認"
    fallback = coerce_analysis({"priority": "critical"}, "本文")
    assert (fallback.priority, fallback.summary) == ("normal", "本文")


def test_coerce_intent_defaults_unknown_intents() -> None:
    intent = coerce_intent({"intent": "world_domination", "suggestedAction": "x", "needsConfirmation": True})
    assert intent.intent == "general_inquiry"
    assert intent.needs_confirmation is True
    broken = coerce_intent({"intent": "task_creation", "confidence": "very"})
    assert broken.intent == "general_inquiry"
    assert broken.suggested_action == INTENT_APOLOGY


# unknown senders


@pytest.mark.asyncio
async def test_unknown_sender_gets_registration_help() -> None:
    harness = Harness()
    result = await harness.router.handle_text("X1", "こんにちは", reply_token="rt-1")
    assert (result.role, result.action) == ("unknown", "registration_help")
    assert harness.sink.replies() == [REGISTRATION_HELP]


@pytest.mark.asyncio
async def test_executive_then_employee_self_registration() -> None:
    harness = Harness()
    router = harness.router

    created = await router.handle_text("E9", "佐藤一郎です。Acme商事の社長です。")
    joined = await router.handle_text("U9", "田中一郎です。acme商事の営業部です。")
    missing = await router.handle_text("U8", "鈴木です。Globexの営業部です。")

    assert created.action == "executive_registered"
    assert joined.action == "employee_registered"
    assert joined.tenant_id == created.tenant_id
    assert missing.action == "company_not_found"
    tenants = TenantService(harness.store, time_provider=harness.clock)
    assert (await tenants.resolve_sender("E9")).role == "executive"
    employee = await tenants.get_user(created.tenant_id, "U9")
    assert (employee.role, employee.department) == ("employee", "営業部")
    assert await tenants.resolve_sender("U8") is None


@pytest.mark.asyncio
async def test_self_registration_respects_user_limit() -> None:
    harness = Harness()
    created = await harness.router.handle_text("E9", "佐藤です。Acmeの代表です。")
    tenants = TenantService(harness.store, time_provider=harness.clock)
    for index in range(4):
        await tenants.add_user_to_tenant(created.tenant_id, f"U{index}", f"社員{index}")

    result = await harness.router.handle_text("U9", "田中です。Acmeの営業部です。")
    assert result.action == "user_limit_reached"


# employees


@pytest.mark.asyncio
async def test_urgent_report_alerts_executives() -> None:
    harness = await Harness(
        [
            {"priority": "urgent", "category": "issue", "summary": "サーバー障害", "requiredAction": "至急対応"},
            {"reply": "ご報告ありがとうございます。"},
        ]
    ).seed()

    result = await harness.router.handle_text("U1", "サーバーが落ちました", reply_token="rt-2")

    assert result.action == "reported_urgent"
    assert result.reply.startswith("ご報告ありがとうございます。")
    assert "緊急案件として経営者に通知済み" in result.reply
    alerts = harness.sink.pushes_to("E1")
    assert len(alerts) == 1 and alerts[0].startswith("🚨 緊急報告があります")
    assert "田中一郎（営業部）" in alerts[0]
    recent = await MessageService(harness.store, time_provider=harness.clock).list_recent(harness.tenant_id)
    assert recent[0]["summary"] == "サーバー障害"
    assert await harness.store.get(usage_key(harness.tenant_id, "2026-10", "message")) == "1"


@pytest.mark.asyncio
async def test_report_without_classifier_uses_defaults() -> None:
    harness = await Harness([ClassifierFailure("down"), ClassifierFailure("down")]).seed()

    result = await harness.router.handle_text("U1", "週報を提出しました")

    assert result.action == "reported_normal"
    assert "「週報を提出しました」について承知いたしました。" in result.reply
    assert harness.sink.pushes_to("E1") == []


@pytest.mark.asyncio
async def test_over_limit_employee_is_told_and_not_classified() -> None:
    harness = await Harness().seed()
    await harness.store.set(usage_key(harness.tenant_id, "2026-10", "message"), "100")

    result = await harness.router.handle_text("U1", "報告です", reply_token="rt-3")

    assert result.action == "limit_reached"
    assert "100件" in result.reply
    assert harness.classifier.calls == []
    assert harness.sink.replies() == [result.reply]


# executives


@pytest.mark.asyncio
async def test_task_intent_creates_task_immediately() -> None:
    harness = await Harness(
        [
            _intent(
                "task_creation",
                extractedData={"task_title": "見積書作成", "deadline": "2026-10-25", "priority": "high"},
            )
        ]
    ).seed()

    result = await harness.router.handle_text("E1", "来週までに見積書を作っておいて")

    assert result.action == "task_created"
    assert result.reply == "タスク「見積書作成」を作成しました。"
    tasks = await harness.executive_tasks()
    assert [(task.title, task.priority) for task in tasks] == [("見積書作成", "high")]
    assert local_day(tasks[0].due_date) == date(2026, 10, 25)


@pytest.mark.asyncio
async def test_blank_task_title_falls_back_to_message_text() -> None:
    harness = await Harness([_intent("task_creation", extractedData={"task_title": "   "})]).seed()

    result = await harness.router.handle_text("E1", "資料を作って")

    assert result.action == "task_created"
    assert result.reply == "タスク「資料を作って」を作成しました。"
    assert [task.title for task in await harness.executive_tasks()] == ["資料を作って"]


@pytest.mark.asyncio
async def test_confirmed_task_waits_for_approval() -> None:
    harness = await Harness(
        [
            _intent(
                "task_creation",
                extracted_data={"task_title": "契約書レビュー"},
                suggested_action="契約書レビューのタスクを作成します",
                needs_confirmation=True,
            )
        ]
    ).seed()

    proposed = await harness.router.handle_text("E1", "契約書を確認するタスクを作って")
    assert proposed.action == "pending_task_creation"
    assert "契約書レビューのタスクを作成します" in proposed.reply
    assert await harness.executive_tasks() == []

    approved = await harness.router.handle_text("E1", "はい")
    assert approved.action == "pending_approved"
    assert [task.title for task in await harness.executive_tasks()] == ["契約書レビュー"]
    assert await harness.store.get(executive_key(harness.tenant_id, "E1", "pending_action")) is None

    again = await harness.router.handle_text("E1", "OK")
    assert (again.action, again.reply) == ("no_pending_action", NO_PENDING_ACTION)


@pytest.mark.asyncio
async def test_rejected_proposal_creates_nothing() -> None:
    harness = await Harness(
        [_intent("task_creation", extracted_data={"task_title": "x"}, needs_confirmation=True)]
    ).seed()

    await harness.router.handle_text("E1", "タスクを作って")
    rejected = await harness.router.handle_text("E1", "キャンセル")

    assert rejected.action == "pending_rejected"
    assert await harness.executive_tasks() == []


@pytest.mark.asyncio
async def test_schedule_intent_lists_free_slots() -> None:
    harness = await Harness(
        [_intent("schedule_management", extracted_data={"scheduled_date": "2026-10-20", "estimated_duration": 60})]
    ).seed()
    await CalendarService(harness.store, time_provider=harness.clock).create_event(
        {
            "tenant_id": harness.tenant_id,
            "executive_id": "E1",
            "title": "朝会",
            "start_time": "2026-10-20T09:00:00",
            "end_time": "2026-10-20T10:00:00",
        }
    )

    result = await harness.router.handle_text("E1", "明日空いている時間は？")

    assert result.action == "slots_listed"
    assert "2026-10-20の空き時間（60分）" in result.reply
    assert "・10:00-11:00" in result.reply
    assert "・09:00-10:00" not in result.reply
    assert result.reply.count("・") == 5


@pytest.mark.asyncio
async def test_confirmed_schedule_creates_event() -> None:
    harness = await Harness(
        [
            _intent(
                "schedule_management",
                extracted_data={
                    "scheduled_date": "2026-10-20",
                    "scheduled_time": "14:00",
                    "task_title": "打ち合わせ",
                    "estimated_duration": 30,
                },
                suggested_action="10/20 14:00に打ち合わせを登録します",
                needs_confirmation=True,
            )
        ]
    ).seed()

    proposed = await harness.router.handle_text("E1", "明日14時に打ち合わせを入れて")
    approved = await harness.router.handle_text("E1", "yes")

    assert proposed.action == "pending_schedule_creation"
    assert approved.reply == "予定「打ち合わせ」を登録しました。"
    events = await CalendarService(harness.store, time_provider=harness.clock).get_events(
        harness.tenant_id, date(2026, 10, 20), date(2026, 10, 20)
    )
    assert [(event.title, (event.end_time - event.start_time).seconds) for event in events] == [("打ち合わせ", 1800)]


@pytest.mark.asyncio
async def test_instruction_intent_relays_to_employee() -> None:
    harness = await Harness([_intent("employee_instruction", extracted_data={"employee_name": "田中"})]).seed()

    result = await harness.router.handle_text("E1", "田中さんに資料を送ってと伝えて")

    assert result.action == "instruction_relayed"
    assert "田中一郎さんに指示を送信しました" in result.reply
    assert len(harness.sink.pushes_to("U1")) == 1


@pytest.mark.asyncio
async def test_instruction_to_unknown_employee_is_reported() -> None:
    harness = await Harness([_intent("employee_instruction", extracted_data={"employee_name": "山田"})]).seed()

    result = await harness.router.handle_text("E1", "山田さんに電話してと伝えて")

    assert result.action == "instruction_relayed"
    assert result.reply == "「山田」という従業員が見つかりませんでした。"


@pytest.mark.asyncio
async def test_intent_failure_apologizes() -> None:
    harness = await Harness([ClassifierFailure("down")]).seed()
    result = await harness.router.handle_text("E1", "売上はどう？")
    assert (result.action, result.reply) == ("intent_unavailable", INTENT_APOLOGY)


@pytest.mark.asyncio
async def test_general_inquiry_answers_and_logs_thinking() -> None:
    harness = await Harness([_intent("general_inquiry", suggested_action="今月の売上は順調です。")]).seed()

    result = await harness.router.handle_text("E1", "売上はどう？")

    assert (result.action, result.reply) == ("answered", "今月の売上は順調です。")
    log = await harness.store.lrange(executive_key(harness.tenant_id, "E1", "thinking"), 0, -1)
    assert len(log) == 1 and "売上はどう？" in log[0]
