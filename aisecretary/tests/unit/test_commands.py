from __future__ import annotations

import pytest

from aisecretary.core.errors import ClassifierFailure, NotFoundError, ValidationError
from aisecretary.persistence.memory_store import InMemoryKeyValueStore
from aisecretary.providers.chat.fake import RecordingNotificationSink
from aisecretary.providers.llm.fake import FakeClassifier
from aisecretary.services.commands import (
    RELAY_FOOTER,
    CommandService,
    parse_executive_command,
    polite_template,
)
from aisecretary.tests.utils.clock import FixedClock
from aisecretary.tests.utils.seed import seed_company


@pytest.mark.parametrize(
    ("text", "target", "command"),
    [
        ("田中さんに資料を明日までに送ってと伝えて", "田中", "資料を明日までに送って"),
        ("鈴木に対して会議室の予約を伝えて", "鈴木", "会議室の予約"),
        ("山本へ見積書を送って", "山本", "見積書"),
        ("高橋に議事録の作成をお願い", "高橋", "議事録の作成"),
        ("佐々木に電話して", "佐々木", "電話して"),
    ],
)
def test_parse_direct_commands(text: str, target: str, command: str) -> None:
    parsed = parse_executive_command(text)
    assert parsed.is_direct_command
    assert parsed.target_employee == target
    assert parsed.command == command


@pytest.mark.parametrize("text", ["今日の予定を教えて", "明日に会議を入れて", "売上の報告書を確認したい"])
def test_non_commands_are_not_direct(text: str) -> None:
    parsed = parse_executive_command(text)
    assert not parsed.is_direct_command
    assert parsed.command == text


def test_polite_template_names_recipient_and_ends_with_footer() -> None:
    text = polite_template("資料を送って", "田中一郎")
    assert text.startswith("【田中一郎様への連絡】")
    assert "資料を送って" in text
    assert text.endswith(RELAY_FOOTER)


async def _setup(classifier=None, sink=None):
    store, clock = InMemoryKeyValueStore(), FixedClock()
    tenant, _, _ = await seed_company(
        store, clock, employees=(("U1", "田中一郎", "営業部"), ("U2", "鈴木花子", "総務部"))
    )
    sink = sink or RecordingNotificationSink()
    service = CommandService(store, sink, classifier=classifier, time_provider=clock)
    return tenant.tenant_id, service, sink, clock


@pytest.mark.asyncio
async def test_send_to_employee_delivers_polite_text() -> None:
    classifier = FakeClassifier([{"message": "田中様、お疲れ様です。資料のご送付をお願いいたします。"}])
    tenant_id, service, sink, _ = await _setup(classifier)

    result = await service.send_to_employee(tenant_id, "E1", "田中さんに資料を送ってと伝えて")

    instruction = result["instruction"]
    assert instruction.status == "delivered"
    assert instruction.to_user_id == "U1"
    assert instruction.content == "資料を送って"
    pushed = sink.pushes_to("U1")
    assert len(pushed) == 1
    assert pushed[0].startswith("田中様、お疲れ様です。")
    assert pushed[0].endswith(RELAY_FOOTER)
    assert "田中一郎さんに指示を送信しました" in result["message"]


@pytest.mark.asyncio
async def test_classifier_failure_uses_template() -> None:
    tenant_id, service, sink, _ = await _setup(FakeClassifier([ClassifierFailure("down")]))

    await service.send_to_employee(tenant_id, "E1", "鈴木さんに来週の予定を確認してと伝えて")

    assert sink.pushes_to("U2") == [polite_template("来週の予定を確認して", "鈴木花子")]


@pytest.mark.asyncio
async def test_failed_push_keeps_sent_status() -> None:
    tenant_id, service, _, _ = await _setup(sink=RecordingNotificationSink(fail=True))
    result = await service.send_to_employee(tenant_id, "E1", "田中さんに電話してと伝えて")
    assert result["instruction"].status == "sent"


class RaisingSink(RecordingNotificationSink):
    async def push_message(self, recipient_id: str, text: str):
        raise ConnectionError("chat api unreachable")


@pytest.mark.asyncio
async def test_raising_sink_is_logged_not_surfaced() -> None:
    tenant_id, service, _, _ = await _setup(sink=RaisingSink())

    result = await service.send_to_employee(tenant_id, "E1", "田中さんに電話してと伝えて")
    assert result["instruction"].status == "sent"

    updated = await service.update_message_status(tenant_id, result["instruction"].message_id, "read")
    assert updated.status == "read"
    assert updated.read_at is not None


@pytest.mark.asyncio
async def test_send_rejects_unparsed_and_unknown_targets() -> None:
    tenant_id, service, sink, _ = await _setup()
    with pytest.raises(ValidationError) as excinfo:
        await service.send_to_employee(tenant_id, "E1", "今日の予定は？")
    assert excinfo.value.field == "message"
    with pytest.raises(NotFoundError):
        await service.send_to_employee(tenant_id, "E1", "山田さんに電話してと伝えて")
    assert sink.sent == []


@pytest.mark.asyncio
async def test_sent_messages_newest_first() -> None:
    tenant_id, service, _, clock = await _setup()
    first = await service.send_to_employee(tenant_id, "E1", "田中さんに電話してと伝えて")
    clock.advance(minutes=5)
    second = await service.send_to_employee(tenant_id, "E1", "鈴木さんに資料を送ってと伝えて")

    sent = await service.get_sent_messages(tenant_id, "E1")
    assert [item.message_id for item in sent] == [
        second["instruction"].message_id,
        first["instruction"].message_id,
    ]
    assert await service.get_sent_messages(tenant_id, "E2") == []


@pytest.mark.asyncio
async def test_status_updates_notify_sender() -> None:
    tenant_id, service, sink, _ = await _setup()
    sent = await service.send_to_employee(tenant_id, "E1", "田中さんに電話してと伝えて")
    message_id = sent["instruction"].message_id

    read = await service.update_message_status(tenant_id, message_id, "read")
    replied = await service.update_message_status(tenant_id, message_id, "replied", reply_content="承知しました")

    assert read.read_at is not None
    assert replied.reply_content == "承知しました"
    assert replied.replied_at is not None
    notices = sink.pushes_to("E1")
    assert notices[0].startswith("✓ 田中一郎さんがメッセージを確認しました")
    assert notices[1].startswith("💬 田中一郎さんから返信がありました")
    assert (await service.get_message_status(tenant_id, message_id)).status == "replied"


@pytest.mark.asyncio
async def test_status_update_validation() -> None:
    tenant_id, service, _, _ = await _setup()
    with pytest.raises(NotFoundError):
        await service.get_message_status(tenant_id, "instruction_missing")
    with pytest.raises(ValidationError):
        await service.update_message_status(tenant_id, "instruction_missing", "archived")
