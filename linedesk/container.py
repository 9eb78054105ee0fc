import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import Request

from linedesk.config import Settings
from linedesk.exceptions import SnapshotError
from linedesk.logging_config import get_logger
from linedesk.services.admin_service import AdminCommands
from linedesk.services.admission_service import AdmissionController
from linedesk.services.conversation_store import ConversationStore
from linedesk.services.dedup_service import EventDeduplicator
from linedesk.services.handoff_service import ManualHandoffGate
from linedesk.services.intake_service import IntakeFlow
from linedesk.services.job_chain import KeyedJobChain
from linedesk.services.knowledge_service import KnowledgeStore
from linedesk.services.line_service import LineService, ProfileDirectory
from linedesk.services.llm.base import LLMProvider
from linedesk.services.llm.openai_provider import OpenAIProvider
from linedesk.services.message_service import MessageProcessor
from linedesk.services.operator_service import OperatorNotifier
from linedesk.services.persistence_service import PersistenceScheduler, read_snapshot

logger = get_logger("container")


def snapshot_payload(store: ConversationStore, gate: ManualHandoffGate) -> dict[str, Any]:
    return {"global_manual": gate.global_manual, "users": store.to_snapshot()}


def prune_caches(store: ConversationStore, dedup: EventDeduplicator, profiles: ProfileDirectory) -> None:
    store.prune()
    dedup.prune()
    profiles.prune()


@dataclass
class ServiceContainer:
    settings: Settings
    store: ConversationStore
    gate: ManualHandoffGate
    admission: AdmissionController
    knowledge: KnowledgeStore
    dedup: EventDeduplicator
    jobs: KeyedJobChain
    line: LineService
    profiles: ProfileDirectory
    operator: OperatorNotifier
    admin: AdminCommands
    processor: MessageProcessor
    persistence: PersistenceScheduler

    def restore_snapshot(self) -> int:
        """Load persisted state if present. A corrupt snapshot starts an empty table."""
        try:
            payload = read_snapshot(self.persistence.path)
        except SnapshotError as exc:
            logger.error("Snapshot unreadable, starting empty", extra={"context": {"error": str(exc)}})
            return 0
        if payload is None:
            return 0

        loaded = self.store.load_snapshot(payload.get("users", {}))
        self.gate.global_manual = bool(payload.get("global_manual", False))
        queued = self.admission.restore()
        logger.info(
            "Snapshot restored",
            extra={"context": {"records": loaded, "queued": queued, "global_manual": self.gate.global_manual}},
        )
        return loaded

    async def start(self) -> None:
        self.knowledge.load()
        self.knowledge.start_watching()
        self.persistence.start()
        self.admission.admit_waiting()

    async def stop(self) -> None:
        await self.jobs.drain()
        await self.knowledge.stop_watching()
        await self.persistence.stop()


def build_provider(settings: Settings) -> Optional[LLMProvider]:
    if not settings.openai_api_key:
        logger.warning("No generative backend configured, general questions go to a human")
        return None
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.openai_model,
        base_url=settings.openai_base_url,
    )


def build_container(
    settings: Settings,
    line: Optional[LineService] = None,
    llm: Optional[LLMProvider] = None,
    clock: Callable[[], float] = time.time,
    use_default_llm: bool = True,
) -> ServiceContainer:
    """Wire every service. Pass ``line``/``llm`` to substitute fakes."""
    if line is None:
        line = LineService(
            access_token=settings.channel_access_token,
            api_base=settings.line_api_base,
            timeout_seconds=settings.line_timeout_seconds,
        )
    if llm is None and use_default_llm:
        llm = build_provider(settings)

    store = ConversationStore(
        retention_seconds=settings.state_retention_days * 24 * 3600,
        max_records=settings.state_max_records,
        clock=clock,
    )
    gate = ManualHandoffGate(
        ttl_seconds=settings.manual_ttl_seconds,
        notify_cooldown_seconds=settings.manual_notify_cooldown_seconds,
        summary_chars=settings.manual_summary_chars,
        clock=clock,
    )
    admission = AdmissionController(
        store,
        gate,
        max_concurrency=settings.generative_max_concurrency,
        short_window_seconds=settings.spam_short_window_seconds,
        long_window_seconds=settings.spam_long_window_seconds,
        short_soft_limit=settings.spam_short_soft_limit,
        long_soft_limit=settings.spam_long_soft_limit,
        long_hard_limit=settings.spam_long_hard_limit,
        cooldown_seconds=settings.cooldown_seconds,
        notice_interval_seconds=settings.queue_notice_interval_seconds,
        clock=clock,
    )
    knowledge = KnowledgeStore(
        Path(settings.knowledge_path),
        poll_seconds=settings.knowledge_poll_seconds,
        debounce_seconds=settings.knowledge_debounce_seconds,
    )
    dedup = EventDeduplicator(ttl_seconds=settings.dedup_ttl_seconds, clock=clock)
    jobs = KeyedJobChain()
    profiles = ProfileDirectory(line, ttl_seconds=settings.profile_cache_ttl_seconds, clock=clock)
    operator = OperatorNotifier(line, profiles, settings.admin_user_id)

    persistence = PersistenceScheduler(
        Path(settings.state_path),
        build_payload=lambda: snapshot_payload(store, gate),
        debounce_seconds=settings.persist_debounce_seconds,
        interval_seconds=settings.persist_interval_seconds,
        before_periodic=lambda: prune_caches(store, dedup, profiles),
        clock=clock,
    )
    store.on_change = persistence.mark_dirty

    admin = AdminCommands(store, gate, admission, knowledge, jobs, on_change=persistence.mark_dirty)
    processor = MessageProcessor(
        settings,
        store,
        IntakeFlow(settings, clock=clock),
        gate,
        knowledge,
        admission,
        line,
        operator,
        dedup,
        jobs,
        admin,
        provider=llm,
        clock=clock,
    )

    container = ServiceContainer(
        settings=settings,
        store=store,
        gate=gate,
        admission=admission,
        knowledge=knowledge,
        dedup=dedup,
        jobs=jobs,
        line=line,
        profiles=profiles,
        operator=operator,
        admin=admin,
        processor=processor,
        persistence=persistence,
    )
    container.restore_snapshot()
    return container


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
