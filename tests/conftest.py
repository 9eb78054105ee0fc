import asyncio
import json
from typing import List, Optional

import httpx
import pytest
import pytest_asyncio

from linedesk.config import Settings
from linedesk.container import build_container
from linedesk.schemas.line import LineEvent
from linedesk.services.llm.base import LLMProvider, LLMResponse
from linedesk.services.signature_service import compute_signature

ADMIN_ID = "U" + "a" * 32
CHANNEL_SECRET = "test-channel-secret"
ADMIN_TOKEN = "test-admin-token"

SAMPLE_KNOWLEDGE = {
    "version": "test-1",
    "entries": [
        {
            "id": "hours",
            "questions": ["營業時間是幾點到幾點", "opening hours"],
            "answer": "週一至週六 11:00-20:00。",
            "tags": ["hours"],
        },
        {
            "id": "address",
            "questions": ["取貨地點在哪裡", "store address"],
            "answer": "台北市中山區南京東路二段 100 號。",
            "tags": ["address"],
            "links": ["https://maps.example.com/store"],
        },
    ],
}


def user_id(n: int) -> str:
    return "U" + f"{n:032x}"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLine:
    """Records reply/push calls instead of talking to the platform."""

    def __init__(self):
        self.replies: list[tuple[str, list[str]]] = []
        self.pushes: list[tuple[str, list[str]]] = []
        self.display_names: dict[str, str] = {}

    async def reply(self, reply_token: str, texts: list[str]) -> dict:
        self.replies.append((reply_token, list(texts)))
        return {"ok": True, "status": 200, "result": {}}

    async def push(self, to: str, texts: list[str]) -> dict:
        self.pushes.append((to, list(texts)))
        return {"ok": True, "status": 200, "result": {}}

    async def get_profile(self, user_id: str) -> Optional[dict]:
        name = self.display_names.get(user_id)
        return {"displayName": name} if name else None

    def replies_to(self, reply_token: str) -> list[str]:
        return [text for token, texts in self.replies if token == reply_token for text in texts]

    def pushes_to(self, to: str) -> list[str]:
        return [text for target, texts in self.pushes if target == to for text in texts]


class FakeLLM(LLMProvider):
    def __init__(self, answer: str = "這是自動回答。"):
        self.answer = answer
        self.calls: list[List[dict]] = []
        self.hold: Optional[asyncio.Event] = None

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 500,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        self.calls.append(messages)
        if self.hold is not None:
            await self.hold.wait()
        return LLMResponse(content=self.answer, model="fake")


class EventFactory:
    """Builds webhook events with unique message ids and reply tokens."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.counter = 0

    def _next(self) -> int:
        self.counter += 1
        return self.counter

    def raw_text(self, uid: str, text: str) -> dict:
        n = self._next()
        return {
            "type": "message",
            "timestamp": int(self.clock() * 1000) + n,
            "replyToken": f"reply-{n}",
            "source": {"type": "user", "userId": uid},
            "message": {"id": f"m{n}", "type": "text", "text": text},
        }

    def raw_image(self, uid: str) -> dict:
        n = self._next()
        return {
            "type": "message",
            "timestamp": int(self.clock() * 1000) + n,
            "replyToken": f"reply-{n}",
            "source": {"type": "user", "userId": uid},
            "message": {"id": f"img{n}", "type": "image"},
        }

    def text(self, uid: str, text: str) -> LineEvent:
        return LineEvent.model_validate(self.raw_text(uid, text))

    def image(self, uid: str) -> LineEvent:
        return LineEvent.model_validate(self.raw_image(uid))


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def signed_headers(body: bytes, secret: str = CHANNEL_SECRET) -> dict:
    return {"Content-Type": "application/json", "X-Line-Signature": compute_signature(body, secret)}


def webhook_body(*events: dict) -> bytes:
    return json.dumps({"destination": "Uxxx", "events": list(events)}, ensure_ascii=False).encode("utf-8")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_line():
    return FakeLine()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def events(clock):
    return EventFactory(clock)


@pytest.fixture
def knowledge_file(tmp_path):
    path = tmp_path / "knowledge.json"
    path.write_text(json.dumps(SAMPLE_KNOWLEDGE, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path, knowledge_file):
    return Settings(
        _env_file=None,
        channel_secret=CHANNEL_SECRET,
        channel_access_token="test-access-token",
        admin_user_id=ADMIN_ID,
        admin_token=ADMIN_TOKEN,
        openai_api_key="",
        knowledge_path=str(knowledge_file),
        state_path=str(tmp_path / "state.json"),
        persist_debounce_seconds=0.01,
    )


@pytest_asyncio.fixture
async def make_container(settings, clock, fake_line, fake_llm):
    built = []

    def make(line=None, llm=None, no_llm=False, **overrides):
        services = build_container(
            settings.model_copy(update=overrides),
            line=line or fake_line,
            llm=None if no_llm else (llm or fake_llm),
            clock=clock,
            use_default_llm=False,
        )
        services.knowledge.load()
        built.append(services)
        return services

    yield make
    for services in built:
        await services.jobs.drain()
        await services.persistence.stop()


@pytest_asyncio.fixture
async def container(make_container):
    return make_container()


@pytest_asyncio.fixture
async def client(container):
    from linedesk.main import app

    app.state.container = container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.state.container = None
