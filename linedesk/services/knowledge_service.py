import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from linedesk.exceptions import KnowledgeFormatError
from linedesk.logging_config import get_logger
from linedesk.services.intent_service import normalize_text

logger = get_logger("knowledge_service")

STRONG_MIN_QUERY_CHARS = 4
MIN_TOKEN_CHARS = 2
MIN_TOKEN_HITS = 2
MIN_HIT_RATIO = 0.4

TOKEN_SPLIT = re.compile(
    r"[^0-9a-z\u00c0-\u024f\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]+"
)


class KnowledgeEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    questions: List[str] = Field(min_length=1)
    answer: str
    tags: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)


class KnowledgeFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: Optional[str] = None
    entries: List[KnowledgeEntry]


@dataclass(frozen=True)
class KnowledgeMatch:
    entry: KnowledgeEntry
    strong: bool
    hits: int
    ratio: float


def tokenize(text: str) -> List[str]:
    """Unique tokens of at least two characters, split on non-alphanumeric, non-CJK runs."""
    seen: set[str] = set()
    tokens: List[str] = []
    for token in TOKEN_SPLIT.split(normalize_text(text)):
        if len(token) < MIN_TOKEN_CHARS or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def parse_knowledge(raw: str) -> KnowledgeFile:
    """Accept either {"version", "entries": [...]} or a bare list of entries."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise KnowledgeFormatError(f"Invalid JSON: {exc}") from exc

    if isinstance(data, list):
        data = {"entries": data}
    try:
        parsed = KnowledgeFile.model_validate(data)
    except ValidationError as exc:
        raise KnowledgeFormatError(str(exc)) from exc

    ids = [entry.id for entry in parsed.entries]
    if len(ids) != len(set(ids)):
        raise KnowledgeFormatError("Duplicate entry ids")
    return parsed


class _IndexedEntry:
    __slots__ = ("entry", "questions", "corpus")

    def __init__(self, entry: KnowledgeEntry):
        self.entry = entry
        self.questions = [normalize_text(question) for question in entry.questions]
        self.corpus = normalize_text(" ".join([*entry.questions, entry.answer, *entry.tags]))


class KnowledgeStore:
    """Question/answer set loaded from a JSON file and swapped in whole on reload."""

    def __init__(self, path: Path, poll_seconds: float = 1.0, debounce_seconds: float = 0.25):
        self.path = Path(path)
        self.poll_seconds = poll_seconds
        self.debounce_seconds = debounce_seconds
        self.version: Optional[str] = None
        self._indexed: tuple[_IndexedEntry, ...] = ()
        self._mtime: Optional[float] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def entries(self) -> tuple[KnowledgeEntry, ...]:
        return tuple(indexed.entry for indexed in self._indexed)

    def _stat_mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def load(self) -> bool:
        """Read the file and swap the set in. On any failure keep the current set."""
        mtime = self._stat_mtime()
        try:
            raw = self.path.read_text(encoding="utf-8")
            parsed = parse_knowledge(raw)
        except (OSError, UnicodeDecodeError, KnowledgeFormatError) as exc:
            self._mtime = mtime
            logger.warning(
                "Knowledge load failed, keeping previous set",
                extra={"context": {"path": str(self.path), "error": str(exc), "kept": len(self._indexed)}},
            )
            return False

        self._indexed = tuple(_IndexedEntry(entry) for entry in parsed.entries)
        self.version = parsed.version
        self._mtime = mtime
        logger.info(
            "Knowledge loaded",
            extra={"context": {"path": str(self.path), "entries": len(self._indexed), "version": self.version}},
        )
        return True

    async def _watch_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.poll_seconds)
                if self._stat_mtime() == self._mtime:
                    continue
                # Let a burst of editor writes settle before reading.
                while True:
                    seen = self._stat_mtime()
                    await asyncio.sleep(self.debounce_seconds)
                    if self._stat_mtime() == seen:
                        break
                await asyncio.to_thread(self.load)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Knowledge watch loop failed", extra={"context": {"error": str(exc)}}, exc_info=True)

    def start_watching(self) -> None:
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.get_running_loop().create_task(self._watch_loop())

    async def stop_watching(self) -> None:
        if self._watch_task is None:
            return
        self._watch_task.cancel()
        try:
            await self._watch_task
        except asyncio.CancelledError:
            pass
        self._watch_task = None

    def candidates(self, query: str) -> List[KnowledgeMatch]:
        """All entries scored against the query, best first, without the acceptance threshold."""
        indexed = self._indexed
        normalized = normalize_text(query)
        if not normalized:
            return []

        if len(normalized) >= STRONG_MIN_QUERY_CHARS:
            exact = [item for item in indexed if normalized in item.questions]
            contained = [
                item
                for item in indexed
                if item not in exact and any(normalized in question for question in item.questions)
            ]
            if exact or contained:
                # Verbatim phrasings outrank phrasings that merely contain the query.
                return [
                    KnowledgeMatch(entry=item.entry, strong=True, hits=0, ratio=1.0) for item in exact + contained
                ]

        tokens = tokenize(normalized)
        if not tokens:
            return []

        scored = []
        for item in indexed:
            hits = sum(1 for token in tokens if token in item.corpus)
            if hits:
                scored.append(KnowledgeMatch(entry=item.entry, strong=False, hits=hits, ratio=hits / len(tokens)))
        scored.sort(key=lambda match: (match.hits, match.ratio), reverse=True)
        return scored

    def rank(self, query: str, k: int = 3) -> List[KnowledgeMatch]:
        """Top-k accepted matches, or [] when the best one is not confident enough."""
        matches = self.candidates(query)
        if not matches:
            return []
        best = matches[0]
        if best.strong:
            return matches
        if best.hits >= MIN_TOKEN_HITS and best.ratio >= MIN_HIT_RATIO:
            return matches[:k]
        return []


def format_answer(entry: KnowledgeEntry) -> str:
    if not entry.links:
        return entry.answer
    return "\n".join([entry.answer, "", *entry.links])


def format_knowledge_context(matches: List[KnowledgeMatch]) -> str:
    """Format knowledge snippets as grounding context for the generative call."""
    if not matches:
        return ""

    context_parts = ["以下為知識庫中的參考資料："]
    for i, match in enumerate(matches, 1):
        entry = match.entry
        context_parts.append(f"{i}. 問：{entry.questions[0]}\n   答：{entry.answer}")

    return "\n".join(context_parts)
