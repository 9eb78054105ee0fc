from typing import Callable, Optional

from linedesk.config import is_valid_user_id
from linedesk.logging_config import get_logger
from linedesk.services.admission_service import AdmissionController
from linedesk.services.conversation_store import ConversationStore
from linedesk.services.handoff_service import ManualHandoffGate
from linedesk.services.job_chain import KeyedJobChain
from linedesk.services.knowledge_service import KnowledgeStore
from linedesk.services.replies import (
    OPERATOR_MANUAL_OFF,
    OPERATOR_MANUAL_ON,
    OPERATOR_RESET_MISSING,
    OPERATOR_RESET_OK,
    OPERATOR_STATUS,
    OPERATOR_UNKNOWN_COMMAND,
)

logger = get_logger("admin_service")


def is_admin_command(text: Optional[str]) -> bool:
    return bool(text) and text.strip().startswith("#")


class AdminCommands:
    """Operator controls shared by the in-chat commands and the admin HTTP routes."""

    def __init__(
        self,
        store: ConversationStore,
        gate: ManualHandoffGate,
        admission: AdmissionController,
        knowledge: KnowledgeStore,
        jobs: KeyedJobChain,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.gate = gate
        self.admission = admission
        self.knowledge = knowledge
        self.jobs = jobs
        self.on_change = on_change

    def set_global_manual(self, enabled: bool) -> bool:
        changed = self.gate.set_global(enabled)
        if changed and self.on_change is not None:
            self.on_change()
        return changed

    def status(self) -> dict:
        return {
            "global_manual": self.gate.global_manual,
            "records": len(self.store),
            "queued": self.admission.queue_length,
            "active": self.admission.active_count,
            "limit": self.admission.max_concurrency,
            "knowledge_entries": len(self.knowledge.entries),
        }

    def status_text(self) -> str:
        status = self.status()
        return OPERATOR_STATUS.format(
            mode="人工" if status["global_manual"] else "自動",
            records=status["records"],
            queued=status["queued"],
            active=status["active"],
            limit=status["limit"],
            entries=status["knowledge_entries"],
        )

    async def reset_user(self, user_id: str) -> bool:
        """Reset one user's record inside that user's job chain."""
        outcome = {"found": False}

        async def job() -> None:
            record = self.store.get(user_id)
            if record is not None:
                self.admission.dequeue(user_id, record)
            outcome["found"] = self.store.reset(user_id)

        await self.jobs.submit(user_id, job, "reset")
        logger.info("Operator reset", extra={"context": {"user_id": user_id, "found": outcome["found"]}})
        return outcome["found"]

    async def execute(self, text: str) -> str:
        parts = text.strip().split()
        command = parts[0].lower() if parts else ""

        if command == "#manual":
            self.set_global_manual(True)
            return OPERATOR_MANUAL_ON
        if command == "#auto":
            self.set_global_manual(False)
            return OPERATOR_MANUAL_OFF
        if command == "#status":
            return self.status_text()
        if command == "#reset" and len(parts) == 2 and is_valid_user_id(parts[1]):
            target = parts[1]
            if await self.reset_user(target):
                return OPERATOR_RESET_OK.format(user_id=target)
            return OPERATOR_RESET_MISSING.format(user_id=target)
        return OPERATOR_UNKNOWN_COMMAND
