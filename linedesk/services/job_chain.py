import asyncio
from typing import Awaitable, Callable, Optional

from linedesk.logging_config import get_logger

logger = get_logger("job_chain")

Job = Callable[[], Awaitable[None]]


class KeyedJobChain:
    """Runs jobs one after another per key, and concurrently across keys.

    Each submitted job waits for the previous tail of its key (including every
    await inside it) before starting. A failing job is logged here and never
    breaks the chain or reaches the caller.
    """

    def __init__(self):
        self._tails: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tails)

    def submit(self, key: str, job: Job, label: str = "job") -> asyncio.Task:
        previous = self._tails.get(key)
        task = asyncio.get_running_loop().create_task(self._run(key, previous, job, label))
        self._tails[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return task

    async def _run(self, key: str, previous: Optional[asyncio.Task], job: Job, label: str) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await job()
        except Exception as exc:
            logger.error(
                "Job failed",
                extra={"context": {"key": key, "job": label, "error": str(exc)}},
                exc_info=True,
            )

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    async def drain(self) -> None:
        """Wait until every chain is idle, including jobs submitted while waiting."""
        while self._tails:
            await asyncio.wait(list(self._tails.values()))
