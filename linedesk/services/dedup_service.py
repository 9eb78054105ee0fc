import time
from typing import Callable, Optional


def build_event_key(user_id: str, message_id: Optional[str], timestamp: Optional[int]) -> str:
    return f"{user_id}:{message_id or '-'}:{timestamp if timestamp is not None else '-'}"


class EventDeduplicator:
    """Remembers event keys for a fixed window so upstream retries are dropped."""

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._seen: dict[str, float] = {}
        self._last_prune = 0.0

    def __len__(self) -> int:
        return len(self._seen)

    def seen_before(self, key: str) -> bool:
        """Return True for a repeat within the window; otherwise remember the key."""
        now = self.clock()
        if now - self._last_prune >= self.ttl_seconds / 10:
            self.prune(now)

        expires_at = self._seen.get(key)
        if expires_at is not None and expires_at > now:
            return True
        self._seen[key] = now + self.ttl_seconds
        return False

    def prune(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        self._last_prune = now
        expired = [key for key, expires_at in self._seen.items() if expires_at <= now]
        for key in expired:
            del self._seen[key]
        return len(expired)
