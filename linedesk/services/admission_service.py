"""Admission control for the generative backend.

At most ``max_concurrency`` calls run at once. Users who find no free slot wait
in a FIFO queue; when a slot frees, queued users are told it is their turn and
must resend their question (nothing is answered on their behalf). While queued,
every message bumps two rolling counters; crossing the soft limits escalates the
notice, crossing the hard limit puts the user in cooldown and drops them from
the queue.
"""

import time
from collections import deque
from enum import Enum
from typing import Callable, Optional

from linedesk.logging_config import get_logger
from linedesk.services.conversation_store import ConversationRecord, ConversationStore
from linedesk.services.handoff_service import ManualHandoffGate

logger = get_logger("admission_service")


class SpamLevel(str, Enum):
    NONE = "none"
    SOFT = "soft"
    HARD = "hard"


class AdmissionController:
    def __init__(
        self,
        store: ConversationStore,
        gate: ManualHandoffGate,
        max_concurrency: int = 5,
        short_window_seconds: float = 30,
        long_window_seconds: float = 120,
        short_soft_limit: int = 6,
        long_soft_limit: int = 15,
        long_hard_limit: int = 40,
        cooldown_seconds: float = 300,
        notice_interval_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.gate = gate
        self.max_concurrency = max_concurrency
        self.short_window_seconds = short_window_seconds
        self.long_window_seconds = long_window_seconds
        self.short_soft_limit = short_soft_limit
        self.long_soft_limit = long_soft_limit
        self.long_hard_limit = long_hard_limit
        self.cooldown_seconds = cooldown_seconds
        self.notice_interval_seconds = notice_interval_seconds
        self.clock = clock

        self.active_count = 0
        self.peak_active = 0
        self._queue: deque[str] = deque()
        self.on_turn: Optional[Callable[[str], None]] = None

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def queued_users(self) -> list[str]:
        return list(self._queue)

    # Slots

    def try_acquire(self) -> bool:
        if self.active_count >= self.max_concurrency:
            return False
        self.active_count += 1
        self.peak_active = max(self.peak_active, self.active_count)
        return True

    def release(self) -> list[str]:
        """Free a slot and hand turns to eligible queued users. Returns who was picked."""
        if self.active_count > 0:
            self.active_count -= 1
        else:
            logger.error("Slot released with no active calls")
        return self._admit_next()

    def admit_waiting(self) -> list[str]:
        """Hand any free slots to queued users, e.g. after the queue was restored."""
        return self._admit_next()

    def _admit_next(self) -> list[str]:
        free = self.max_concurrency - self.active_count
        if free <= 0 or not self._queue:
            return []

        now = self.clock()
        picked: list[str] = []
        waiting: deque[str] = deque()
        while self._queue:
            user_id = self._queue.popleft()
            if len(picked) >= free:
                waiting.append(user_id)
                continue
            record = self.store.get(user_id)
            if record is None or not record.queued or self.gate.is_open(record, now):
                if record is not None:
                    self._clear(record)
                logger.info("Dropping ineligible queued user", extra={"context": {"user_id": user_id}})
                continue
            if record.cooldown_until is not None and record.cooldown_until > now:
                waiting.append(user_id)
                continue
            picked.append(user_id)
        self._queue = waiting

        for user_id in picked:
            logger.info("Queued user admitted", extra={"context": {"user_id": user_id, "queue": len(self._queue)}})
            if self.on_turn is not None:
                self.on_turn(user_id)
        return picked

    # Queue membership

    def claim_turn(self, user_id: str, record: ConversationRecord) -> bool:
        """Let a queued user take a free slot when fewer users wait ahead of them than slots are free."""
        free = self.max_concurrency - self.active_count
        if free <= 0 or user_id not in self._queue:
            return False
        if list(self._queue).index(user_id) >= free:
            return False
        self.dequeue(user_id, record)
        logger.info("Queued user took a free slot", extra={"context": {"user_id": user_id}})
        return True

    def enqueue(self, user_id: str, record: ConversationRecord) -> bool:
        """Append once. Returns False when the user was already waiting."""
        now = self.clock()
        if user_id in self._queue:
            record.queued = True
            return False
        self._queue.append(user_id)
        record.queued = True
        record.queued_at = now
        logger.info("User queued for generative answer", extra={"context": {"user_id": user_id, "position": len(self._queue)}})
        return True

    def dequeue(self, user_id: str, record: Optional[ConversationRecord] = None) -> None:
        try:
            self._queue.remove(user_id)
        except ValueError:
            pass
        if record is not None:
            self._clear(record)

    @staticmethod
    def _clear(record: ConversationRecord) -> None:
        record.queued = False
        record.queued_at = None
        record.spam_short_start = None
        record.spam_short_count = 0
        record.spam_long_start = None
        record.spam_long_count = 0

    def restore(self) -> int:
        """Rebuild the queue from persisted records, oldest first."""
        queued = [(record.queued_at or 0.0, user_id) for user_id, record in self.store.items() if record.queued]
        queued.sort()
        self._queue = deque(user_id for _, user_id in queued)
        return len(self._queue)

    # Anti-abuse

    def register_message(self, user_id: str, record: ConversationRecord) -> SpamLevel:
        """Count a message from a queued user and escalate when limits are crossed."""
        if not record.queued:
            return SpamLevel.NONE
        now = self.clock()

        if record.spam_short_start is None or now - record.spam_short_start >= self.short_window_seconds:
            record.spam_short_start = now
            record.spam_short_count = 0
        if record.spam_long_start is None or now - record.spam_long_start >= self.long_window_seconds:
            record.spam_long_start = now
            record.spam_long_count = 0
        record.spam_short_count += 1
        record.spam_long_count += 1

        if record.spam_long_count >= self.long_hard_limit:
            record.cooldown_until = now + self.cooldown_seconds
            self.dequeue(user_id, record)
            logger.warning(
                "User placed in cooldown",
                extra={"context": {"user_id": user_id, "until": record.cooldown_until}},
            )
            return SpamLevel.HARD

        if record.spam_short_count > self.short_soft_limit or record.spam_long_count > self.long_soft_limit:
            return SpamLevel.SOFT
        return SpamLevel.NONE

    def in_cooldown(self, record: ConversationRecord) -> bool:
        if record.cooldown_until is None:
            return False
        if record.cooldown_until > self.clock():
            return True
        record.cooldown_until = None
        return False

    def claim_notice(self, record: ConversationRecord, force: bool = False) -> bool:
        """At most one queue/cooldown notice per interval, however many messages arrive."""
        now = self.clock()
        if not force and record.queue_notified_at is not None:
            if now - record.queue_notified_at < self.notice_interval_seconds:
                return False
        record.queue_notified_at = now
        return True
