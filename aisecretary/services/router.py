from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
import re
from typing import Any, Callable

from pydantic import ValidationError as SchemaError

from aisecretary.core.config import get_settings
from aisecretary.core.errors import NotFoundError, PlanLimitExceeded, ValidationError
from aisecretary.core.timeutil import local_day, parse_datetime, parse_day, utc_now
from aisecretary.domain.models import (
    EventCreate,
    IntentAnalysis,
    MessageAnalysis,
    PendingAction,
    TaskCreate,
    ThinkingEntry,
    User,
)
from aisecretary.persistence.keys import (
    KIND_PENDING_ACTION,
    KIND_USER,
    executive_key,
    generate_entity_id,
    primary_key,
)
from aisecretary.persistence.records import RecordStore
from aisecretary.persistence.store import KeyValueStore
from aisecretary.providers.chat.base import NotificationSink
from aisecretary.providers.llm.base import Classifier
from aisecretary.services.calendar import CalendarService
from aisecretary.services.commands import CommandService
from aisecretary.services.messages import MessageService, default_analysis
from aisecretary.services.tasks import PRIORITIES, TaskService
from aisecretary.services.tenants import TenantService
from aisecretary.services.usage import USAGE_MESSAGE, UsageService


logger = logging.getLogger(__name__)

REGISTRATION_PATTERN = re.compile(r"^(.+?)です。(.+?)の(.+?)(?:をしています|です)。?$")
EXECUTIVE_KEYWORDS = ("CEO", "社長", "経営者", "代表")

CONFIRM_WORDS = frozenset({"はい", "承認", "yes", "ok"})
CANCEL_WORDS = frozenset({"いいえ", "キャンセル", "却下", "no", "cancel"})

PENDING_FACET = "pending_action"
THINKING_FACET = "thinking"
MAX_SLOTS_IN_REPLY = 5

REGISTRATION_HELP = (
    "はじめまして。AI秘書システムです。\n\n"
    "ご利用を開始するには、以下の情報をお送りください：\n"
    "1. お名前\n"
    "2. 会社名・部署\n"
    "3. 役職\n\n"
    "例：「山田太郎です。ABC商事の営業部で部長をしています。」"
)
INTENT_APOLOGY = "申し訳ございませんが、意図を正確に把握できませんでした。詳細をお聞かせください。"
NO_PENDING_ACTION = "承認待ちのアクションはありません。"
ACTION_CANCELLED = "アクションをキャンセルしました。他にご用件はございますか？"

ANALYSIS_SYSTEM_PROMPT = "あなたは経営者の秘書として、従業員からのメッセージを分析・要約する専門家です。"
REPLY_SYSTEM_PROMPT = "あなたは経営者の代わりに従業員とコミュニケーションを取る有能なAI秘書です。"
INTENT_SYSTEM_PROMPT = "あなたは経営者の有能な秘書です。経営者の指示を正確に理解し、適切なアクションを提案してください。"

_INTENTS = ("task_creation", "schedule_management", "employee_instruction", "general_inquiry")


@dataclass(frozen=True)
class RouteResult:
    role: str
    action: str
    reply: str
    tenant_id: str | None = None


def _analysis_prompt(text: str, user: User | None) -> str:
    return (
        "以下の従業員からのメッセージを分析してください。\n\n"
        "従業員情報:\n"
        f"- 名前: {user.name if user else '不明'}\n"
        f"- 部署: {(user.department or '不明') if user else '不明'}\n\n"
        f"メッセージ: {text}\n\n"
        "以下のJSON形式で回答してください:\n"
        '{"priority": "urgent/high/normal/low", "category": "report/consultation/proposal/issue", '
        '"summary": "経営者向けの3行以内の要約", "required_action": "必要なアクション（ない場合は空文字）", '
        '"sentiment": "positive/neutral/negative"}'
    )


def _reply_prompt(text: str, user: User | None, analysis: MessageAnalysis) -> str:
    stance = "緊急対応していることを伝える" if analysis.priority == "urgent" else "適切なタイミングで対応することを伝える"
    return (
        "あなたは有能なAI秘書です。従業員からの以下のメッセージに対して、適切で親切な返信を作成してください。\n\n"
        f"従業員: {user.name if user else '社員'}（{(user.department or '部署不明') if user else '部署不明'}）\n"
        f"メッセージ: {text}\n\n"
        f"分析結果:\n- 優先度: {analysis.priority}\n- カテゴリ: {analysis.category}\n"
        f"- 要約: {analysis.summary}\n- 必要なアクション: {analysis.required_action}\n\n"
        f"共感的で丁寧に、次のステップを提案し、{stance}。3-5文程度で簡潔に。\n"
        '次のJSON形式で回答してください: {"reply": "返信メッセージ"}'
    )


def _intent_prompt(text: str, history: list[str]) -> str:
    recent = "\n".join(history[:5])
    return (
        "あなたは経営者の秘書として、経営者からの指示・質問の意図を分析してください。\n\n"
        f'経営者からのメッセージ: "{text}"\n\n'
        f"過去の経営者の傾向:\n{recent}\n\n"
        "JSON形式で回答してください。intent は task_creation / employee_instruction / "
        "schedule_management / general_inquiry のいずれか、confidence は0-100、"
        "extracted_data には task_title, employee_name, deadline (YYYY-MM-DD), priority, description, "
        "scheduled_date, scheduled_time (HH:MM), estimated_duration（分）のうち該当するもの、"
        "suggested_action は推奨アクション、needs_confirmation は実行前の確認要否です。"
    )


def coerce_analysis(raw: dict[str, Any], text: str) -> MessageAnalysis:
    """Turn a classifier answer into a MessageAnalysis, or the default record if unusable."""
    fields = dict(raw)
    if "requiredAction" in fields and "required_action" not in fields:
        fields["required_action"] = fields.pop("requiredAction")
    try:
        return MessageAnalysis.model_validate(fields)
    except SchemaError:
        logger.warning("classifier_analysis_invalid")
        return default_analysis(text)


def coerce_intent(raw: dict[str, Any]) -> IntentAnalysis:
    fields = dict(raw)
    for camel, snake in (
        ("extractedData", "extracted_data"),
        ("suggestedAction", "suggested_action"),
        ("needsConfirmation", "needs_confirmation"),
    ):
        if camel in fields and snake not in fields:
            fields[snake] = fields.pop(camel)
    if fields.get("intent") not in _INTENTS:
        fields["intent"] = "general_inquiry"
    try:
        return IntentAnalysis.model_validate(fields)
    except SchemaError:
        logger.warning("classifier_intent_invalid")
        return IntentAnalysis(suggested_action=INTENT_APOLOGY)


def _extracted(analysis: IntentAnalysis, *names: str) -> Any:
    for name in names:
        value = analysis.extracted_data.get(name)
        if isinstance(value, str):
            value = value.strip()
        if value not in (None, ""):
            return value
    return None


def _limit_notice(limit: int) -> str:
    return (
        f"今月のメッセージ上限（{limit}件）に達しました。\n"
        "プランのアップグレードをご検討いただくか、来月までお待ちください。"
    )


def _executive_alert(user: User | None, analysis: MessageAnalysis) -> str:
    header = "🚨 緊急報告があります" if analysis.priority == "urgent" else "📌 重要な報告があります"
    name = user.name if user else "不明"
    department = (user.department or "不明") if user else "不明"
    return (
        f"{header}\n\n"
        f"報告者: {name}（{department}）\n\n"
        f"【要約】\n{analysis.summary}\n\n"
        f"【必要な対応】\n{analysis.required_action or 'なし'}\n\n"
        "すぐにご確認ください。"
    )


def _fallback_reply(user: User | None, analysis: MessageAnalysis) -> str:
    follow_up = (
        f"{analysis.required_action}を進めさせていただきます。"
        if analysis.required_action
        else "適切に対応させていただきます。"
    )
    urgent = "🚨 緊急案件として経営者に通知済みです。\n" if analysis.priority == "urgent" else ""
    return (
        f"{user.name if user else ''}様、ご報告ありがとうございます。\n\n"
        f"「{analysis.summary}」について承知いたしました。\n\n"
        f"{follow_up}\n\n"
        f"{urgent}何か追加の情報がございましたら、お知らせください。"
    )


def _priority_suffix(priority: str) -> str:
    if priority == "urgent":
        return "\n\n🚨 この件は緊急案件として経営者に通知済みです。"
    if priority == "high":
        return "\n\n📌 重要案件として記録し、優先的に対応いたします。"
    return ""


class MessageRouter:
    """Route one inbound chat message by the sender's role.

    Unknown senders may self-register, employees report to their executives,
    and executives issue commands that can create tasks, look up free slots
    or relay instructions. Classifier and sink failures never escape: the
    sender always gets a reply, falling back to fixed texts.
    """

    def __init__(
        self,
        store: KeyValueStore,
        classifier: Classifier,
        sink: NotificationSink,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._records = RecordStore(store)
        self._classifier = classifier
        self._sink = sink
        self._time_provider = time_provider or utc_now
        self._usage = UsageService(store, time_provider=self._time_provider)
        self._tenants = TenantService(store, usage=self._usage, time_provider=self._time_provider)
        self._tasks = TaskService(store, time_provider=self._time_provider)
        self._calendar = CalendarService(store, tasks=self._tasks, time_provider=self._time_provider)
        self._messages = MessageService(store, time_provider=self._time_provider)
        self._commands = CommandService(
            store,
            sink,
            classifier=classifier,
            tenants=self._tenants,
            time_provider=self._time_provider,
        )

    async def handle_text(self, sender_id: str, text: str, reply_token: str | None = None) -> RouteResult:
        entry = await self._tenants.resolve_sender(sender_id)
        if entry is None:
            result = await self._handle_unknown(sender_id, text)
        elif entry.role == "executive":
            result = await self._handle_executive(entry.tenant_id, sender_id, text)
        else:
            result = await self._handle_employee(entry.tenant_id, sender_id, text)
        if reply_token:
            await self._reply(reply_token, result.reply)
        logger.info(
            "chat_message_routed role=%s action=%s tenant_id=%s", result.role, result.action, result.tenant_id
        )
        return result

    async def _reply(self, reply_token: str, text: str) -> None:
        try:
            result = await self._sink.reply(reply_token, text)
        except Exception as exc:  # noqa: BLE001 - sink failures are never surfaced
            logger.warning("chat_reply_failed error=%s", type(exc).__name__)
            return
        if not result.sent:
            logger.warning("chat_reply_failed status=%s", result.status_code)

    async def _push(self, recipient_id: str, text: str) -> bool:
        try:
            result = await self._sink.push_message(recipient_id, text)
        except Exception as exc:  # noqa: BLE001 - sink failures are never surfaced
            logger.warning("chat_push_failed recipient_id=%s error=%s", recipient_id, type(exc).__name__)
            return False
        if not result.sent:
            logger.warning("chat_push_failed recipient_id=%s status=%s", recipient_id, result.status_code)
        return result.sent

    async def _classify(self, system_prompt: str, user_prompt: str) -> dict[str, Any] | None:
        try:
            result = await self._classifier.classify(system_prompt, user_prompt)
        except Exception as exc:  # noqa: BLE001 - classifier failures fall back to defaults
            logger.warning("classifier_unavailable error=%s", type(exc).__name__)
            return None
        if not isinstance(result, dict):
            logger.warning("classifier_unavailable error=NonObjectResponse")
            return None
        return result

    async def _record_message_usage(self, tenant_id: str) -> None:
        try:
            await self._usage.record_usage(tenant_id, USAGE_MESSAGE)
        except Exception as exc:  # noqa: BLE001 - usage counting never blocks a message
            logger.warning("usage_record_failed tenant_id=%s error=%s", tenant_id, type(exc).__name__)

    # unknown senders

    async def _handle_unknown(self, sender_id: str, text: str) -> RouteResult:
        match = REGISTRATION_PATTERN.match((text or "").strip())
        if not match:
            return RouteResult(role="unknown", action="registration_help", reply=REGISTRATION_HELP)
        name, company, position = (group.strip() for group in match.groups())
        if any(keyword in position for keyword in EXECUTIVE_KEYWORDS):
            tenant, _ = await self._tenants.create_tenant(company, sender_id, name)
            reply = (
                f"{name}様、はじめまして。\n\n"
                f"AI秘書システムへようこそ。\n{company}の経営者として登録させていただきました。\n\n"
                "従業員の方には「氏名です。会社名の部署です。」の形式でメッセージを送っていただくよう"
                "お伝えください。"
            )
            return RouteResult(role="unknown", action="executive_registered", reply=reply, tenant_id=tenant.tenant_id)

        tenant = await self._tenants.find_tenant_by_company(company)
        if tenant is None:
            reply = (
                f"申し訳ございません。「{company}」はまだ登録されていません。\n"
                "先に経営者の方に登録していただくようお願いいたします。"
            )
            return RouteResult(role="unknown", action="company_not_found", reply=reply)
        try:
            await self._tenants.add_user_to_tenant(
                tenant.tenant_id,
                sender_id,
                name,
                department=position if "部" in position else "",
                role="employee",
            )
        except PlanLimitExceeded:
            reply = "申し訳ございません。ご利用中のプランの登録人数上限に達しているため、登録できませんでした。"
            return RouteResult(role="unknown", action="user_limit_reached", reply=reply, tenant_id=tenant.tenant_id)
        reply = (
            f"{name}様、はじめまして。\n\n"
            f"AI秘書システムへようこそ。\n{tenant.company_name}の従業員として登録させていただきました。\n\n"
            "どのようなご用件でしょうか？"
        )
        return RouteResult(role="unknown", action="employee_registered", reply=reply, tenant_id=tenant.tenant_id)

    # employees

    async def _handle_employee(self, tenant_id: str, sender_id: str, text: str) -> RouteResult:
        check = await self._usage.gate(tenant_id)
        if not check.allowed:
            return RouteResult(
                role="employee", action="limit_reached", reply=_limit_notice(check.limit), tenant_id=tenant_id
            )
        await self._record_message_usage(tenant_id)

        user = await self._records.get(primary_key(tenant_id, KIND_USER, sender_id), User)
        raw = await self._classify(ANALYSIS_SYSTEM_PROMPT, _analysis_prompt(text, user))
        analysis = coerce_analysis(raw, text) if raw is not None else default_analysis(text)
        await self._messages.record_inbound(tenant_id, sender_id, text, analysis)

        notified = 0
        if analysis.priority in ("urgent", "high"):
            alert = _executive_alert(user, analysis)
            for executive in await self._tenants.list_executives(tenant_id):
                if await self._push(executive.user_id, alert):
                    notified += 1
            logger.info(
                "executive_alert_sent tenant_id=%s priority=%s notified=%s", tenant_id, analysis.priority, notified
            )

        generated = await self._classify(REPLY_SYSTEM_PROMPT, _reply_prompt(text, user, analysis))
        reply_text = generated.get("reply") if generated else None
        if isinstance(reply_text, str) and reply_text.strip():
            reply = reply_text.strip() + _priority_suffix(analysis.priority)
        else:
            reply = _fallback_reply(user, analysis)
        return RouteResult(role="employee", action=f"reported_{analysis.priority}", reply=reply, tenant_id=tenant_id)

    # executives

    async def _handle_executive(self, tenant_id: str, executive_id: str, text: str) -> RouteResult:
        check = await self._usage.gate(tenant_id)
        if not check.allowed:
            return RouteResult(
                role="executive", action="limit_reached", reply=_limit_notice(check.limit), tenant_id=tenant_id
            )
        await self._record_message_usage(tenant_id)

        keyword = (text or "").strip().lower()
        if keyword in CONFIRM_WORDS or keyword in CANCEL_WORDS:
            reply, action = await self._resolve_pending(tenant_id, executive_id, approve=keyword in CONFIRM_WORDS)
            return RouteResult(role="executive", action=action, reply=reply, tenant_id=tenant_id)

        thinking_key = executive_key(tenant_id, executive_id, THINKING_FACET)
        history = await self._store.lrange(thinking_key, 0, 20)
        raw = await self._classify(INTENT_SYSTEM_PROMPT, _intent_prompt(text, history))
        if raw is None:
            return RouteResult(role="executive", action="intent_unavailable", reply=INTENT_APOLOGY, tenant_id=tenant_id)
        intent = coerce_intent(raw)
        await self._remember_thinking(thinking_key, text, intent)

        if intent.intent == "task_creation":
            if intent.needs_confirmation:
                reply = await self._propose(tenant_id, executive_id, "task_creation", text, intent)
                return RouteResult(role="executive", action="pending_task_creation", reply=reply, tenant_id=tenant_id)
            reply = await self._create_task_from(tenant_id, executive_id, text, intent)
            return RouteResult(role="executive", action="task_created", reply=reply, tenant_id=tenant_id)
        if intent.intent == "schedule_management":
            if intent.needs_confirmation and _extracted(intent, "scheduled_date") and _extracted(intent, "scheduled_time"):
                reply = await self._propose(tenant_id, executive_id, "schedule_creation", text, intent)
                return RouteResult(
                    role="executive", action="pending_schedule_creation", reply=reply, tenant_id=tenant_id
                )
            reply = await self._slots_reply(tenant_id, executive_id, intent)
            return RouteResult(role="executive", action="slots_listed", reply=reply, tenant_id=tenant_id)
        if intent.intent == "employee_instruction":
            if intent.needs_confirmation:
                reply = await self._propose(tenant_id, executive_id, "employee_instruction", text, intent)
                return RouteResult(
                    role="executive", action="pending_employee_instruction", reply=reply, tenant_id=tenant_id
                )
            reply = await self._relay(tenant_id, executive_id, text, intent)
            return RouteResult(role="executive", action="instruction_relayed", reply=reply, tenant_id=tenant_id)
        return RouteResult(
            role="executive",
            action="answered",
            reply=intent.suggested_action or "承知いたしました。",
            tenant_id=tenant_id,
        )

    async def _remember_thinking(self, thinking_key: str, text: str, intent: IntentAnalysis) -> None:
        entry = ThinkingEntry(
            timestamp=self._time_provider(),
            message=text,
            intent=intent.intent,
            confidence=intent.confidence,
        )
        await self._store.lpush(thinking_key, entry.model_dump_json())
        await self._store.ltrim(thinking_key, 0, get_settings().thinking_log_max - 1)

    async def _propose(
        self,
        tenant_id: str,
        executive_id: str,
        action_type: str,
        text: str,
        intent: IntentAnalysis,
    ) -> str:
        now = self._time_provider()
        action = PendingAction(
            id=generate_entity_id("action", now),
            tenant_id=tenant_id,
            executive_id=executive_id,
            type=action_type,
            original_message=text,
            analysis=intent,
            suggested_action=intent.suggested_action,
            created_at=now,
        )
        ttl = get_settings().pending_action_ttl_days * 86400
        await self._records.put(primary_key(tenant_id, KIND_PENDING_ACTION, action.id), action, ttl)
        await self._store.set(executive_key(tenant_id, executive_id, PENDING_FACET), action.id, ttl)
        logger.info("pending_action_created tenant_id=%s action_id=%s type=%s", tenant_id, action.id, action_type)
        return (
            f"以下のアクションを実行してよろしいですか？\n\n{intent.suggested_action}\n\n"
            "「はい」で実行、「いいえ」でキャンセルしてください。"
        )

    async def _resolve_pending(self, tenant_id: str, executive_id: str, *, approve: bool) -> tuple[str, str]:
        pointer = executive_key(tenant_id, executive_id, PENDING_FACET)
        action_id = await self._store.get(pointer)
        action = None
        if action_id:
            action = await self._records.get(primary_key(tenant_id, KIND_PENDING_ACTION, action_id), PendingAction)
        if action is None or action.status != "pending":
            return NO_PENDING_ACTION, "no_pending_action"

        if approve:
            if action.type == "task_creation":
                reply = await self._create_task_from(tenant_id, executive_id, action.original_message, action.analysis)
            elif action.type == "schedule_creation":
                reply = await self._create_event_from(tenant_id, executive_id, action.original_message, action.analysis)
            else:
                reply = await self._relay(tenant_id, executive_id, action.original_message, action.analysis)
            status, outcome = "approved", "pending_approved"
        else:
            reply, status, outcome = ACTION_CANCELLED, "rejected", "pending_rejected"

        ttl = get_settings().pending_action_ttl_days * 86400
        await self._records.put(
            primary_key(tenant_id, KIND_PENDING_ACTION, action.id),
            action.model_copy(update={"status": status}),
            ttl,
        )
        await self._store.delete(pointer)
        logger.info("pending_action_resolved tenant_id=%s action_id=%s status=%s", tenant_id, action.id, status)
        return reply, outcome

    async def _create_task_from(
        self,
        tenant_id: str,
        executive_id: str,
        text: str,
        intent: IntentAnalysis,
    ) -> str:
        title = str(_extracted(intent, "task_title", "taskTitle") or text[:50])
        priority = _extracted(intent, "priority")
        due_date = None
        deadline = _extracted(intent, "deadline")
        if deadline:
            try:
                due_date = parse_datetime(str(deadline), field="deadline")
            except ValidationError:
                logger.warning("task_deadline_unparsed tenant_id=%s deadline=%s", tenant_id, deadline)
        try:
            task = await self._tasks.create_task(
                TaskCreate(
                    tenant_id=tenant_id,
                    assigned_to=executive_id,
                    created_by=executive_id,
                    title=title,
                    description=str(_extracted(intent, "description") or text),
                    priority=priority if priority in PRIORITIES else "normal",
                    due_date=due_date,
                )
            )
        except ValidationError as exc:
            logger.warning("task_from_intent_rejected tenant_id=%s field=%s", tenant_id, exc.field)
            return INTENT_APOLOGY
        return f"タスク「{task.title}」を作成しました。"

    async def _slots_reply(self, tenant_id: str, executive_id: str, intent: IntentAnalysis) -> str:
        day: date = local_day(self._time_provider())
        requested = _extracted(intent, "scheduled_date", "scheduledDate")
        if requested:
            try:
                day = parse_day(str(requested))
            except ValidationError:
                logger.warning("slot_date_unparsed tenant_id=%s value=%s", tenant_id, requested)
        duration = _duration(intent)
        slots = await self._calendar.get_available_slots(tenant_id, executive_id, day, duration)
        if not slots:
            return f"{day.isoformat()}は{duration}分の空き時間がありません。別の日をご指定ください。"
        lines = "\n".join(f"・{slot.start_time}-{slot.end_time}" for slot in slots[:MAX_SLOTS_IN_REPLY])
        return f"{day.isoformat()}の空き時間（{duration}分）は以下の通りです：\n\n{lines}"

    async def _create_event_from(
        self,
        tenant_id: str,
        executive_id: str,
        text: str,
        intent: IntentAnalysis,
    ) -> str:
        try:
            start = parse_datetime(
                f"{_extracted(intent, 'scheduled_date')}T{_extracted(intent, 'scheduled_time')}",
                field="scheduled_time",
            )
        except ValidationError:
            return "予定の日時を読み取れませんでした。日付と時刻を指定してください。"
        try:
            event = await self._calendar.create_event(
                EventCreate(
                    tenant_id=tenant_id,
                    executive_id=executive_id,
                    title=str(_extracted(intent, "task_title", "description") or text[:50]),
                    start_time=start,
                    end_time=start + timedelta(minutes=_duration(intent)),
                    created_by=executive_id,
                )
            )
        except ValidationError as exc:
            logger.warning("event_from_intent_rejected tenant_id=%s field=%s", tenant_id, exc.field)
            return INTENT_APOLOGY
        return f"予定「{event.title}」を登録しました。"

    async def _relay(self, tenant_id: str, executive_id: str, text: str, intent: IntentAnalysis) -> str:
        name = _extracted(intent, "employee_name", "employeeName")
        name = str(name) if name else None
        command = text
        if name and name not in text:
            command = f"{name}に{text}と伝えて"
        try:
            outcome = await self._commands.send_to_employee(tenant_id, executive_id, command)
        except ValidationError as exc:
            return str(exc)
        except NotFoundError:
            target = name or "指定された方"
            return f"「{target}」という従業員が見つかりませんでした。"
        return outcome["message"]


def _duration(intent: IntentAnalysis) -> int:
    raw = _extracted(intent, "estimated_duration", "estimatedDuration")
    try:
        duration = int(raw) if raw is not None else 60
    except (TypeError, ValueError):
        return 60
    return duration if duration > 0 else 60
