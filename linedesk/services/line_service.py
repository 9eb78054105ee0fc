import time
from typing import Callable, Optional

import httpx

from linedesk.config import is_valid_user_id
from linedesk.logging_config import get_logger
from linedesk.services.replies import DEFAULT_DISPLAY_NAME

logger = get_logger("line_service")

MAX_MESSAGES_PER_CALL = 5


def text_messages(texts: list[str]) -> list[dict]:
    return [{"type": "text", "text": text} for text in texts if text][:MAX_MESSAGES_PER_CALL]


class LineService:
    """Messaging platform REST client. Failures are logged and returned, never raised."""

    def __init__(self, access_token: str, api_base: str = "https://api.line.me", timeout_seconds: float = 10.0):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }

    async def _make_request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        url = f"{self.api_base}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.request(method, url, headers=self._headers(), json=data)
        except Exception as e:
            logger.error(f"LINE API error: {e}", extra={"context": {"path": path}})
            return {"ok": False, "status": 0, "error": str(e)}

        if response.status_code != 200:
            logger.warning(
                "LINE API non-200",
                extra={"context": {"path": path, "status": response.status_code, "body": response.text[:300]}},
            )
            return {"ok": False, "status": response.status_code, "error": response.text[:300]}

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        return {"ok": True, "status": response.status_code, "result": body}

    async def reply(self, reply_token: str, texts: list[str]) -> dict:
        """Answer through a single-use reply token."""
        messages = text_messages(texts)
        if not reply_token or not messages:
            return {"ok": False, "status": 0, "error": "nothing to send"}
        return await self._make_request(
            "POST", "/v2/bot/message/reply", {"replyToken": reply_token, "messages": messages}
        )

    async def push(self, to: str, texts: list[str]) -> dict:
        to_clean = str(to or "").strip()
        if not is_valid_user_id(to_clean):
            logger.warning("Refusing push to malformed user id", extra={"context": {"to": to_clean}})
            return {"ok": False, "status": 0, "error": "bad_to"}
        messages = text_messages(texts)
        if not messages:
            return {"ok": False, "status": 0, "error": "nothing to send"}
        result = await self._make_request("POST", "/v2/bot/message/push", {"to": to_clean, "messages": messages})
        logger.info("Push sent", extra={"context": {"to": to_clean, "ok": result["ok"], "status": result["status"]}})
        return result

    async def get_profile(self, user_id: str) -> Optional[dict]:
        if not is_valid_user_id(user_id):
            return None
        result = await self._make_request("GET", f"/v2/bot/profile/{user_id.strip()}")
        if not result["ok"]:
            return None
        return result["result"]


class ProfileDirectory:
    """Display-name lookup with a per-user cache; failures fall back to a placeholder."""

    def __init__(self, line: LineService, ttl_seconds: float = 24 * 3600, clock: Callable[[], float] = time.time):
        self.line = line
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: dict[str, tuple[float, str]] = {}

    async def display_name(self, user_id: str) -> str:
        now = self.clock()
        cached = self._cache.get(user_id)
        if cached and cached[0] > now:
            return cached[1]

        profile = await self.line.get_profile(user_id)
        name = (profile or {}).get("displayName") or ""
        if not name:
            return DEFAULT_DISPLAY_NAME

        self._cache[user_id] = (now + self.ttl_seconds, name)
        return name

    def prune(self) -> None:
        now = self.clock()
        for user_id, (expires_at, _) in list(self._cache.items()):
            if expires_at <= now:
                del self._cache[user_id]
