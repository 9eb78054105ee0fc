import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from linedesk.config import Settings, is_valid_user_id
from linedesk.logging_config import UserLoggerAdapter, get_logger
from linedesk.schemas.line import InboundMessage, LineEvent, MessageKind
from linedesk.services.admin_service import AdminCommands, is_admin_command
from linedesk.services.admission_service import AdmissionController, SpamLevel
from linedesk.services.ai_service import generate_answer
from linedesk.services.conversation_store import ConversationRecord, ConversationStore
from linedesk.services.dedup_service import EventDeduplicator, build_event_key
from linedesk.services.handoff_service import ManualHandoffGate
from linedesk.services.intake_service import IntakeFlow, IntakeOutcome
from linedesk.services.intent_service import is_invoice_intent
from linedesk.services.job_chain import KeyedJobChain
from linedesk.services.knowledge_service import KnowledgeStore, format_answer, format_knowledge_context
from linedesk.services.line_service import LineService
from linedesk.services.llm.base import LLMProvider
from linedesk.services.operator_service import OperatorNotifier
from linedesk.services.replies import (
    IMAGE_SUMMARY,
    MSG_COOLDOWN,
    MSG_FLOODING,
    MSG_GREETING,
    MSG_NEEDS_HUMAN,
    MSG_QUEUED,
    MSG_SERVICE_BUSY,
    MSG_YOUR_TURN,
    OTHER_SUMMARY,
)
from linedesk.services.state_machine import IntakePhase

logger = get_logger("message_service")

ADMIN_CHAIN_KEY = "#admin"


@dataclass
class _Turn:
    """One inbound message being processed inside its user's job."""

    message: InboundMessage
    record: ConversationRecord
    log: UserLoggerAdapter
    greet_due: bool = False


class MessageProcessor:
    """Event intake pipeline: dedupe, per-user serialization, then the reply rules."""

    def __init__(
        self,
        settings: Settings,
        store: ConversationStore,
        intake: IntakeFlow,
        gate: ManualHandoffGate,
        knowledge: KnowledgeStore,
        admission: AdmissionController,
        line: LineService,
        operator: OperatorNotifier,
        dedup: EventDeduplicator,
        jobs: KeyedJobChain,
        admin: AdminCommands,
        provider: Optional[LLMProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.intake = intake
        self.gate = gate
        self.knowledge = knowledge
        self.admission = admission
        self.line = line
        self.operator = operator
        self.dedup = dedup
        self.jobs = jobs
        self.admin = admin
        self.provider = provider
        self.clock = clock
        admission.on_turn = self.schedule_turn

    # Intake of webhook batches

    def dispatch(self, events: list[LineEvent]) -> list[asyncio.Task]:
        tasks = []
        for event in events:
            message = InboundMessage.from_event(event)
            if message is None:
                continue
            if not is_valid_user_id(message.user_id):
                logger.warning("Dropping event with malformed user id", extra={"context": {"user_id": message.user_id}})
                continue

            key = build_event_key(message.user_id, message.message_id or event.webhook_event_id, message.timestamp)
            if self.dedup.seen_before(key):
                logger.info("Duplicate event dropped", extra={"context": {"key": key}})
                continue

            if message.user_id == self.settings.admin_user_id and is_admin_command(message.text):
                tasks.append(self.jobs.submit(ADMIN_CHAIN_KEY, partial(self.handle_admin_command, message), "admin"))
            else:
                tasks.append(self.jobs.submit(message.user_id, partial(self.handle_message, message), "message"))
        return tasks

    async def handle_admin_command(self, message: InboundMessage) -> None:
        reply = await self.admin.execute(message.text or "")
        await self.line.reply(message.reply_token, [reply])

    async def handle_message(self, message: InboundMessage) -> None:
        record = self.store.get_or_create(message.user_id)
        turn = _Turn(message=message, record=record, log=UserLoggerAdapter(logger, {"user_id": message.user_id}))
        try:
            await self._process(turn)
        finally:
            record.last_activity_at = self.clock()
            self.store.mark_dirty()

    # Reply rules

    async def _process(self, turn: _Turn) -> None:
        record = turn.record
        message = turn.message

        self.intake.expire(record)
        if self.gate.global_manual:
            await self._absorb(turn)
            return
        if self.gate.is_active(record):
            await self._absorb(turn)
            return

        spam = self.admission.register_message(message.user_id, record)
        if spam == SpamLevel.HARD:
            record.queue_notified_at = None
        turn.greet_due = self._greeting_due(record)

        outcome = self.intake.handle_protocol(record, message)
        if outcome is not None:
            await self._finish_intake(turn, outcome)
            return

        if self.admission.in_cooldown(record):
            outcome = self.intake.handle_intent(record, message)
            if outcome is not None:
                await self._finish_intake(turn, outcome)
            elif self.admission.claim_notice(record):
                await self._respond(turn, [MSG_COOLDOWN])
            return

        if self.settings.knowledge_first:
            if await self._answer_from_knowledge(turn):
                return
            outcome = self.intake.handle_intent(record, message)
        else:
            outcome = self.intake.handle_intent(record, message)
            if outcome is None and await self._answer_from_knowledge(turn):
                return
        if outcome is not None:
            await self._finish_intake(turn, outcome)
            return

        if is_invoice_intent(message.text or "", self.settings.invoice_keywords):
            await self._respond(turn, [self.settings.invoice_reply])
            return

        await self._answer_generative(turn, spam)

    def _greeting_due(self, record: ConversationRecord) -> bool:
        if record.phase != IntakePhase.AWAITING_ORDER:
            return False
        now = self.clock()
        idle = self.settings.greet_idle_seconds
        if record.last_activity_at is not None and now - record.last_activity_at < idle:
            return False
        return record.last_greet_at is None or now - record.last_greet_at >= idle

    async def _respond(self, turn: _Turn, replies: list[str]) -> None:
        if not replies:
            return
        if turn.greet_due:
            replies = [MSG_GREETING, *replies]
            turn.record.last_greet_at = self.clock()
            turn.greet_due = False
        result = await self.line.reply(turn.message.reply_token, replies)
        if not result.get("ok"):
            turn.log.warning("Reply not delivered", context={"error": result.get("error")})

    async def _absorb(self, turn: _Turn) -> None:
        message = turn.message
        if message.kind == MessageKind.TEXT:
            summary = message.text or ""
        elif message.kind == MessageKind.IMAGE:
            summary = IMAGE_SUMMARY
        else:
            summary = OTHER_SUMMARY

        notice = self.gate.absorb(turn.record, summary)
        turn.log.info("Message absorbed by manual handoff", context={"global": self.gate.global_manual})
        if notice is not None:
            await self.operator.notify_burst(message.user_id, notice.count, notice.summary)

    async def _finish_intake(self, turn: _Turn, outcome: IntakeOutcome) -> None:
        record = turn.record
        await self._respond(turn, outcome.replies)
        if not outcome.handoff or record.handoff_pushed:
            return

        record.handoff_pushed = True
        self.gate.activate(record)
        self.admission.dequeue(turn.message.user_id, record)
        turn.log.info("Handoff to operator", context={"order_id": record.order_id})
        await self.operator.notify_handoff(turn.message.user_id, record.order_id or "", record.proof_ref or "")

    async def _answer_from_knowledge(self, turn: _Turn) -> bool:
        matches = self.knowledge.rank(turn.message.text or "")
        if not matches:
            return False
        entry = matches[0].entry
        turn.log.info("Knowledge answer", context={"entry_id": entry.id, "strong": matches[0].strong})
        await self._respond(turn, [format_answer(entry)])
        return True

    async def _answer_generative(self, turn: _Turn, spam: SpamLevel) -> None:
        record = turn.record
        user_id = turn.message.user_id

        if self.provider is None:
            await self._respond(turn, [MSG_NEEDS_HUMAN])
            return

        if record.queued and not self.admission.claim_turn(user_id, record):
            if self.admission.claim_notice(record):
                await self._respond(turn, [MSG_FLOODING if spam == SpamLevel.SOFT else MSG_QUEUED])
            return

        if not self.admission.try_acquire():
            self.admission.enqueue(user_id, record)
            self.admission.claim_notice(record, force=True)
            await self._respond(turn, [MSG_QUEUED])
            return

        try:
            context = format_knowledge_context(self.knowledge.candidates(turn.message.text or "")[:1])
            result = await generate_answer(
                self.provider,
                turn.message.text or "",
                knowledge_context=context,
                timeout_seconds=self.settings.generative_timeout_seconds,
            )
        finally:
            self.admission.release()

        if not result.ok:
            turn.log.warning("Generative answer unavailable", context=result.log_context())
        await self._respond(turn, [result.unwrap_or(MSG_SERVICE_BUSY)])

    # Queue turns

    def schedule_turn(self, user_id: str) -> None:
        self.jobs.submit(user_id, partial(self._deliver_turn, user_id), "turn")

    async def _deliver_turn(self, user_id: str) -> None:
        record = self.store.get(user_id)
        if record is None or not record.queued:
            return
        try:
            if self.gate.global_manual or self.gate.is_open(record):
                self.admission.dequeue(user_id, record)
                return
            if self.admission.in_cooldown(record):
                self.admission.enqueue(user_id, record)
                return

            self.admission.dequeue(user_id, record)
            record.queue_notified_at = self.clock()
            await self.line.push(user_id, [MSG_YOUR_TURN])
        finally:
            self.store.mark_dirty()
