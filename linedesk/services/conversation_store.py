import time
from typing import Any, Callable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from linedesk.config import is_valid_user_id
from linedesk.logging_config import get_logger
from linedesk.services.state_machine import IntakePhase

logger = get_logger("conversation_store")


class ConversationRecord(BaseModel):
    """Per-user state. Mutated only inside that user's serialized job."""

    model_config = ConfigDict(extra="ignore")

    phase: IntakePhase = IntakePhase.AWAITING_ORDER
    order_id: Optional[str] = None
    proof_received: bool = False
    proof_ref: Optional[str] = None
    handoff_pushed: bool = False

    manual_until: Optional[float] = None
    manual_burst_count: int = 0
    manual_last_summary: Optional[str] = None
    manual_notified_at: Optional[float] = None

    last_activity_at: Optional[float] = None
    last_greet_at: Optional[float] = None
    phase_changed_at: Optional[float] = None

    cooldown_until: Optional[float] = None
    spam_short_start: Optional[float] = None
    spam_short_count: int = 0
    spam_long_start: Optional[float] = None
    spam_long_count: int = 0

    queued: bool = False
    queued_at: Optional[float] = None
    queue_notified_at: Optional[float] = None

    def reset_intake(self, now: float) -> None:
        self.phase = IntakePhase.AWAITING_ORDER
        self.order_id = None
        self.proof_received = False
        self.proof_ref = None
        self.handoff_pushed = False
        self.phase_changed_at = now


def merge_record(stored: dict[str, Any]) -> ConversationRecord:
    """Lay a stored dict over a fresh default record; unknown keys are dropped."""
    base = ConversationRecord().model_dump()
    base.update({key: value for key, value in stored.items() if key in base})
    return ConversationRecord.model_validate(base)


class ConversationStore:
    """In-memory table of UserId -> ConversationRecord."""

    def __init__(
        self,
        retention_seconds: float,
        max_records: int,
        clock: Callable[[], float] = time.time,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.retention_seconds = retention_seconds
        self.max_records = max_records
        self.clock = clock
        self.on_change = on_change
        self._records: dict[str, ConversationRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._records

    def items(self) -> Iterator[tuple[str, ConversationRecord]]:
        return iter(list(self._records.items()))

    def get(self, user_id: str) -> Optional[ConversationRecord]:
        return self._records.get(user_id)

    def get_or_create(self, user_id: str) -> ConversationRecord:
        if not is_valid_user_id(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        record = self._records.get(user_id)
        if record is None:
            record = ConversationRecord(phase_changed_at=self.clock())
            self._records[user_id] = record
            logger.info("Created conversation record", extra={"context": {"user_id": user_id}})
        return record

    def reset(self, user_id: str) -> bool:
        """Operator reset: drop everything but activity timestamps."""
        record = self._records.get(user_id)
        if record is None:
            return False
        fresh = ConversationRecord(
            last_activity_at=record.last_activity_at,
            last_greet_at=record.last_greet_at,
            phase_changed_at=self.clock(),
        )
        self._records[user_id] = fresh
        self.mark_dirty()
        return True

    def mark_dirty(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def prune(self) -> int:
        """Drop records idle past retention, then evict least-recently-active over the cap."""
        now = self.clock()
        cutoff = now - self.retention_seconds
        removed = 0

        for user_id, record in list(self._records.items()):
            last_seen = record.last_activity_at or record.phase_changed_at or 0.0
            if last_seen < cutoff:
                del self._records[user_id]
                removed += 1

        overflow = len(self._records) - self.max_records
        if overflow > 0:
            by_activity = sorted(
                self._records.items(),
                key=lambda item: item[1].last_activity_at or item[1].phase_changed_at or 0.0,
            )
            for user_id, _ in by_activity[:overflow]:
                del self._records[user_id]
                removed += 1

        if removed:
            logger.info(
                "Pruned conversation records",
                extra={"context": {"removed": removed, "remaining": len(self._records)}},
            )
        return removed

    def to_snapshot(self) -> dict[str, dict[str, Any]]:
        return {user_id: record.model_dump(mode="json") for user_id, record in self._records.items()}

    def load_snapshot(self, users: dict[str, Any]) -> int:
        """Replace the table from a snapshot's users mapping. Returns loaded count."""
        loaded: dict[str, ConversationRecord] = {}
        for user_id, stored in users.items():
            if not is_valid_user_id(user_id):
                logger.warning("Skipping snapshot entry with bad user id", extra={"context": {"user_id": user_id}})
                continue
            if not isinstance(stored, dict):
                logger.warning("Skipping non-object snapshot entry", extra={"context": {"user_id": user_id}})
                continue
            try:
                loaded[user_id.strip()] = merge_record(stored)
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed snapshot entry",
                    extra={"context": {"user_id": user_id, "error": str(exc)}},
                )
        self._records = loaded
        self.prune()
        return len(self._records)
