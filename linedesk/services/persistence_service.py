"""Snapshotting of the conversation table to disk.

Two triggers feed the writer: a short debounce after each mutation burst and a
fixed periodic flush. Every write goes to a temp file in the target directory,
is fsynced, then renamed over the canonical path, so a reader sees either the
previous snapshot or the new one, never a torn file.
"""

import asyncio
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional

from linedesk.exceptions import SnapshotError
from linedesk.logging_config import get_logger

logger = get_logger("persistence")

SNAPSHOT_VERSION = 1


def write_snapshot(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    try:
        dir_fd = os.open(str(path.parent), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def read_snapshot(path: Path) -> Optional[dict[str, Any]]:
    """Return the parsed snapshot, None if absent. Raises SnapshotError if unreadable."""
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SnapshotError(f"Cannot read snapshot {path}: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("users", {}), dict):
        raise SnapshotError(f"Snapshot {path} has unexpected shape")
    return payload


class PersistenceScheduler:
    def __init__(
        self,
        path: Path,
        build_payload: Callable[[], dict[str, Any]],
        debounce_seconds: float = 0.9,
        interval_seconds: float = 10.0,
        before_periodic: Optional[Callable[[], Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.build_payload = build_payload
        self.debounce_seconds = debounce_seconds
        self.interval_seconds = interval_seconds
        self.before_periodic = before_periodic
        self.clock = clock

        self.dirty = False
        self.write_count = 0
        self._debounce_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()

    def mark_dirty(self) -> None:
        """Flag the table as changed and arm the debounce timer unless one is pending."""
        self.dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = loop.create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self.flush()

    async def _periodic_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                if self.before_periodic is not None:
                    self.before_periodic()
                await self.flush(force=True)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Periodic snapshot failed", extra={"context": {"error": str(exc)}}, exc_info=True)

    def start(self) -> None:
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_loop())
            logger.info(
                "Persistence scheduler started",
                extra={"context": {"path": str(self.path), "interval": self.interval_seconds}},
            )

    async def stop(self) -> None:
        for task in (self._periodic_task, self._debounce_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._periodic_task = None
        self._debounce_task = None
        await self.flush(force=True)

    async def flush(self, force: bool = False) -> bool:
        """Write the table if dirty (or always when forced). Returns True if written."""
        async with self._write_lock:
            if not self.dirty and not force:
                return False
            self.dirty = False
            payload = {
                "version": SNAPSHOT_VERSION,
                "saved_at": self.clock(),
                **self.build_payload(),
            }
            try:
                await asyncio.to_thread(write_snapshot, self.path, payload)
            except OSError as exc:
                self.dirty = True
                logger.error(
                    "Snapshot write failed",
                    extra={"context": {"path": str(self.path), "error": str(exc)}},
                )
                return False
            self.write_count += 1
            logger.debug("Snapshot written", extra={"context": {"path": str(self.path)}})
            return True
