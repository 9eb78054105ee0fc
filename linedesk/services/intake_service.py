import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from linedesk.config import Settings
from linedesk.logging_config import get_logger
from linedesk.schemas.line import InboundMessage, MessageKind
from linedesk.services.conversation_store import ConversationRecord
from linedesk.services.intent_service import (
    extract_order_id,
    is_exact_order_id,
    is_pickup_intent,
    is_reset_intent,
    mentions_order,
)
from linedesk.services.replies import MSG_ASK_ORDER, MSG_ASK_PROOF, MSG_COMPLETED, MSG_UPLOAD_PROOF
from linedesk.services.state_machine import IntakePhase, accept_order, accept_proof

logger = get_logger("intake_service")


@dataclass
class IntakeOutcome:
    replies: list[str] = field(default_factory=list)
    handoff: bool = False
    reason: str = ""


class IntakeFlow:
    """Order id first, then a payment-proof image, then wait for a human."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.clock = clock

    def expire(self, record: ConversationRecord) -> bool:
        """Silently restart intake for records idle past their phase TTL."""
        if record.last_activity_at is None:
            return False
        now = self.clock()
        idle = now - record.last_activity_at

        if record.phase == IntakePhase.AWAITING_ORDER:
            expired = idle > self.settings.order_phase_ttl_seconds
        elif record.phase == IntakePhase.AWAITING_PROOF:
            expired = idle > self.settings.proof_phase_ttl_seconds
        else:
            expired = False

        if expired:
            logger.info("Intake phase expired", extra={"context": {"phase": record.phase.value, "idle": int(idle)}})
            record.reset_intake(now)
        return expired

    def _accept_order(self, record: ConversationRecord, order_id: str, reason: str) -> IntakeOutcome:
        record.phase = accept_order(record.phase)
        record.order_id = order_id
        record.phase_changed_at = self.clock()
        logger.info("Order id accepted", extra={"context": {"order_id": order_id, "reason": reason}})
        return IntakeOutcome(replies=[MSG_ASK_PROOF.format(order_id=order_id)], reason=reason)

    def handle_protocol(self, record: ConversationRecord, message: InboundMessage) -> Optional[IntakeOutcome]:
        """Rules that do not depend on intent heuristics.

        Returns None only for AwaitingOrder free text that is not a bare order id;
        those go through knowledge lookup and intent handling instead.
        """
        phase = record.phase
        text = message.text or ""

        if phase != IntakePhase.AWAITING_ORDER and message.kind == MessageKind.TEXT:
            if is_reset_intent(text, self.settings.reset_keywords):
                record.reset_intake(self.clock())
                logger.info("Intake reset by user", extra={"context": {"from_phase": phase.value}})
                return IntakeOutcome(replies=[MSG_ASK_ORDER], reason="reset")

        if phase == IntakePhase.AWAITING_ORDER:
            if message.kind == MessageKind.TEXT:
                if is_exact_order_id(text):
                    return self._accept_order(record, extract_order_id(text, ()), "exact")
                return None
            if message.kind == MessageKind.IMAGE:
                return IntakeOutcome(replies=[MSG_ASK_ORDER], reason="image_before_order")
            return IntakeOutcome(reason="ignored")

        if phase == IntakePhase.AWAITING_PROOF:
            if message.kind != MessageKind.IMAGE:
                return IntakeOutcome(replies=[MSG_UPLOAD_PROOF], reason="awaiting_proof")
            if record.proof_received:
                return IntakeOutcome(replies=[MSG_COMPLETED], reason="duplicate_proof")

            record.proof_ref = message.message_id
            record.proof_received = True
            record.phase = accept_proof(record.phase)
            record.phase_changed_at = self.clock()
            logger.info("Payment proof accepted", extra={"context": {"order_id": record.order_id}})
            return IntakeOutcome(replies=[MSG_COMPLETED], handoff=True, reason="proof")

        return IntakeOutcome(replies=[MSG_COMPLETED], reason="completed")

    def handle_intent(self, record: ConversationRecord, message: InboundMessage) -> Optional[IntakeOutcome]:
        """Pickup/payment intent in AwaitingOrder: dig the order id out of the sentence.

        A sentence that only mentions an order (no pickup or payment words) counts
        when it also carries an order id; otherwise it is left to other handlers.
        """
        if record.phase != IntakePhase.AWAITING_ORDER or message.kind != MessageKind.TEXT:
            return None
        text = message.text or ""
        pickup = is_pickup_intent(text, self.settings.pickup_keywords)
        if not pickup and not mentions_order(text, self.settings.order_keywords):
            return None

        order_id = extract_order_id(text, self.settings.order_keywords)
        if order_id:
            return self._accept_order(record, order_id, "intent")
        if not pickup:
            return None
        return IntakeOutcome(replies=[MSG_ASK_ORDER], reason="intent_without_order")
