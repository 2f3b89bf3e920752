from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Any, Callable

from aisecretary.core.config import get_settings
from aisecretary.core.errors import NotFoundError, ValidationError
from aisecretary.core.timeutil import utc_now
from aisecretary.domain.models import RelayedInstruction, User
from aisecretary.persistence.keys import KIND_INSTRUCTION, generate_entity_id, index_key, primary_key
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.providers.chat.base import NotificationSink
from aisecretary.providers.llm.base import Classifier
from aisecretary.services.tenants import TenantService


logger = logging.getLogger(__name__)

# Tried in order; the last one accepts any "<name>に<text>".
_COMMAND_PATTERNS = (
    re.compile(r"(.+?)に対して(.+?)(?:を)?(?:伝えて|言って|連絡して|知らせて)"),
    re.compile(r"(.+?)(?:さん|くん|ちゃん)?に(.+?)(?:と)?(?:伝えて|言って|連絡して|知らせて)"),
    re.compile(r"(.+?)へ(.+?)(?:を)?(?:送って|送信して)"),
    re.compile(r"(.+?)に(.+?)(?:を)?(?:お願い|頼んで|やってもらって|してもらって)"),
    re.compile(r"(.+?)に(.+)"),
)
_NOT_A_NAME = re.compile(r"今日|明日|来週|至急|すぐ|早く|ちょっと")

INSTRUCTION_STATUSES = ("sent", "delivered", "read", "replied")

POLITE_SYSTEM_PROMPT = "あなたは有能な秘書として、経営者の指示を従業員に丁寧に伝える専門家です。"
RELAY_FOOTER = "※このメッセージは経営者からの指示をAI秘書が伝達しています。"


@dataclass(frozen=True)
class ParsedCommand:
    command: str
    target_employee: str | None = None

    @property
    def is_direct_command(self) -> bool:
        return self.target_employee is not None


def parse_executive_command(text: str) -> ParsedCommand:
    message = (text or "").strip()
    for pattern in _COMMAND_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        target = match.group(1).strip()
        command = match.group(2).strip()
        if 2 <= len(target) <= 4 and not _NOT_A_NAME.search(target):
            return ParsedCommand(command=command, target_employee=target)
    return ParsedCommand(command=message)


def polite_template(command: str, employee_name: str) -> str:
    return (
        f"【{employee_name}様への連絡】\n\n"
        "お疲れ様です。経営者より以下の依頼がございます。\n\n"
        f"{command}\n\n"
        "お忙しい中恐れ入りますが、どうぞよろしくお願いいたします。\n\n"
        f"{RELAY_FOOTER}"
    )


def _polite_prompt(command: str, employee_name: str) -> str:
    return (
        "あなたは経営者の秘書です。経営者からの以下の雑な指示を、従業員への丁寧な依頼文に変換してください。\n\n"
        f'経営者からの指示: "{command}"\n'
        f"宛先: {employee_name}様\n\n"
        "敬語を使い、挨拶とクッション言葉を含め、依頼内容と期限を明確にしてください。\n"
        '次のJSON形式で回答してください: {"message": "依頼文"}'
    )


def _status_notice(instruction: RelayedInstruction) -> str:
    if instruction.status == "read":
        return f"✓ {instruction.to_name}さんがメッセージを確認しました\n\n内容:「{instruction.content}」"
    return (
        f"💬 {instruction.to_name}さんから返信がありました\n\n"
        f"送信内容:「{instruction.content}」\n\n"
        f"返信:「{instruction.reply_content or ''}」"
    )


class CommandService:
    def __init__(
        self,
        store: KeyValueStore,
        sink: NotificationSink,
        *,
        classifier: Classifier | None = None,
        tenants: TenantService | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._records = RecordStore(store)
        self._sink = sink
        self._classifier = classifier
        self._time_provider = time_provider or utc_now
        self._tenants = tenants or TenantService(store, time_provider=self._time_provider)

    @staticmethod
    def _ttl_seconds() -> int:
        return get_settings().instruction_ttl_days * 86400

    def _key(self, tenant_id: str, message_id: str) -> str:
        return primary_key(tenant_id, KIND_INSTRUCTION, message_id)

    async def find_employee(self, tenant_id: str, name: str) -> User | None:
        # Substring match in registration order; the first hit wins.
        needle = (name or "").strip()
        if not needle:
            return None
        for user in await self._tenants.list_employees(tenant_id):
            if needle in user.name:
                return user
        return None

    async def _politely(self, command: str, employee_name: str) -> str:
        if self._classifier is None:
            return polite_template(command, employee_name)
        try:
            result = await self._classifier.classify(POLITE_SYSTEM_PROMPT, _polite_prompt(command, employee_name))
        except Exception as exc:  # noqa: BLE001 - classifier failures fall back to the template
            logger.warning("instruction_polite_fallback error=%s", type(exc).__name__)
            return polite_template(command, employee_name)
        text = result.get("message")
        if not isinstance(text, str) or not text.strip():
            return polite_template(command, employee_name)
        if RELAY_FOOTER not in text:
            text = f"{text.strip()}\n\n{RELAY_FOOTER}"
        return text

    async def send_to_employee(self, tenant_id: str, executive_id: str, message: str) -> dict[str, Any]:
        if not executive_id:
            raise ValidationError("executive_id is required", field="executive_id")
        parsed = parse_executive_command(message)
        if not parsed.is_direct_command:
            raise ValidationError(
                "従業員への指示が認識できませんでした。「〇〇さんに〜と伝えて」の形式でお願いします。",
                field="message",
            )
        await self._tenants.get_tenant(tenant_id)
        employee = await self.find_employee(tenant_id, parsed.target_employee or "")
        if employee is None:
            raise NotFoundError("employee", parsed.target_employee or "")

        delivered_text = await self._politely(parsed.command, employee.name)
        now = self._time_provider()
        instruction = RelayedInstruction(
            message_id=generate_entity_id(KIND_INSTRUCTION, now),
            tenant_id=tenant_id,
            from_user_id=executive_id,
            to_name=employee.name,
            to_user_id=employee.user_id,
            content=parsed.command,
            delivered_text=delivered_text,
            sent_at=now,
        )
        if await self._push(employee.user_id, delivered_text):
            instruction = instruction.model_copy(update={"status": "delivered"})
        else:
            logger.warning(
                "instruction_push_failed tenant_id=%s message_id=%s", tenant_id, instruction.message_id
            )
        await self._records.put_indexed(
            self._key(tenant_id, instruction.message_id),
            instruction,
            entity_id=instruction.message_id,
            index_keys=[index_key(tenant_id, KIND_INSTRUCTION, "sender", executive_id)],
            ttl_seconds=self._ttl_seconds(),
        )
        logger.info(
            "instruction_sent tenant_id=%s message_id=%s to_user_id=%s",
            tenant_id,
            instruction.message_id,
            employee.user_id,
        )
        summary = (
            f"{employee.name}さんに指示を送信しました。\n\n"
            f"【あなたの指示】\n「{parsed.command}」\n\n"
            "【送信内容】\n丁寧なビジネスマナーに沿った形で伝達しました。"
        )
        return {"message": summary, "instruction": instruction, "employee": employee}

    async def _push(self, recipient_id: str, text: str) -> bool:
        try:
            result = await self._sink.push_message(recipient_id, text)
        except Exception as exc:  # noqa: BLE001 - sink failures are never surfaced
            logger.warning("chat_push_failed recipient_id=%s error=%s", recipient_id, type(exc).__name__)
            return False
        if not result.sent:
            logger.warning("chat_push_failed recipient_id=%s status=%s", recipient_id, result.status_code)
        return result.sent

    async def get_message_status(self, tenant_id: str, message_id: str) -> RelayedInstruction:
        instruction = await self._records.get(self._key(tenant_id, message_id), RelayedInstruction)
        if instruction is None:
            raise NotFoundError("instruction", message_id)
        return instruction

    async def get_sent_messages(self, tenant_id: str, executive_id: str) -> list[RelayedInstruction]:
        ids = await self._records.members_of(index_key(tenant_id, KIND_INSTRUCTION, "sender", executive_id))
        instructions = await self._records.fetch_many(
            ids, lambda message_id: self._key(tenant_id, message_id), RelayedInstruction
        )
        return sorted(instructions, key=lambda item: item.sent_at, reverse=True)

    async def update_message_status(
        self,
        tenant_id: str,
        message_id: str,
        new_status: str,
        reply_content: str | None = None,
    ) -> RelayedInstruction:
        if new_status not in INSTRUCTION_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}", field="status")
        key = self._key(tenant_id, message_id)
        async with self._records.lock(key):
            current = await self.get_message_status(tenant_id, message_id)
            now = self._time_provider()
            changes: dict[str, Any] = {"status": new_status}
            if new_status == "read":
                changes["read_at"] = now
            elif new_status == "replied" and reply_content:
                changes["reply_content"] = reply_content
                changes["replied_at"] = now
            updated = current.model_copy(update=changes)
            await self._records.put(key, updated, self._ttl_seconds())

        if new_status in ("read", "replied"):
            if not await self._push(updated.from_user_id, _status_notice(updated)):
                logger.warning(
                    "instruction_status_notify_failed tenant_id=%s message_id=%s", tenant_id, message_id
                )
        logger.info("instruction_status_updated tenant_id=%s message_id=%s status=%s", tenant_id, message_id, new_status)
        return updated
