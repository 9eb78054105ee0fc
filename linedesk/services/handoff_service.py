"""Manual-handoff window: while open, automated replies to a user are suppressed.

The per-user window lives on the record (manual_until). Expiry is evaluated
lazily on access; there is no background timer. A global switch, toggled by the
operator, suppresses every user the same way regardless of per-user state.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from linedesk.logging_config import get_logger
from linedesk.services.conversation_store import ConversationRecord
from linedesk.services.intent_service import summarize_text

logger = get_logger("handoff_service")


@dataclass
class BurstNotice:
    count: int
    summary: str


class ManualHandoffGate:
    def __init__(
        self,
        ttl_seconds: float = 3600,
        notify_cooldown_seconds: float = 120,
        summary_chars: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.notify_cooldown_seconds = notify_cooldown_seconds
        self.summary_chars = summary_chars
        self.clock = clock
        self.global_manual = False

    def activate(self, record: ConversationRecord) -> None:
        record.manual_until = self.clock() + self.ttl_seconds
        record.manual_burst_count = 0
        record.manual_last_summary = None
        record.manual_notified_at = None

    def is_open(self, record: ConversationRecord, now: Optional[float] = None) -> bool:
        """Read-only check, safe to call on another user's record."""
        now = self.clock() if now is None else now
        return record.manual_until is not None and record.manual_until > now

    def is_active(self, record: ConversationRecord) -> bool:
        """True while the window is open. Closes an elapsed window and restarts intake."""
        if record.manual_until is None:
            return False
        now = self.clock()
        if record.manual_until > now:
            return True

        record.manual_until = None
        record.manual_burst_count = 0
        record.manual_last_summary = None
        record.manual_notified_at = None
        record.reset_intake(now)
        logger.info("Manual window elapsed, intake restarted")
        return False

    def absorb(self, record: ConversationRecord, summary: str) -> Optional[BurstNotice]:
        """Count a suppressed message. Returns a notice when the operator is due one."""
        now = self.clock()
        record.manual_burst_count += 1
        record.manual_last_summary = summarize_text(summary, self.summary_chars)

        if record.manual_notified_at is not None and now - record.manual_notified_at < self.notify_cooldown_seconds:
            return None

        notice = BurstNotice(count=record.manual_burst_count, summary=record.manual_last_summary)
        record.manual_burst_count = 0
        record.manual_notified_at = now
        return notice

    def set_global(self, enabled: bool) -> bool:
        changed = self.global_manual != enabled
        self.global_manual = enabled
        if changed:
            logger.info("Global manual switch changed", extra={"context": {"enabled": enabled}})
        return changed
