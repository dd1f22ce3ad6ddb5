"""File watcher capability using watchfiles.

Watches one directory and hands debounced batches of relevant changes to an
async callback as ``(change_type, path)`` pairs.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from watchfiles import Change, awatch

logger = logging.getLogger("agentviz.watcher")

ChangeBatch = list[tuple[str, Path]]
ChangeCallback = Callable[[ChangeBatch], Awaitable[None]]
PathFilter = Callable[[Path], bool]


class FileWatcher:
    """Background watcher for a single directory.

    Uses `watchfiles` (Rust-accelerated) for efficient watching. ``debounce_ms``
    is the quiet period a burst of writes must settle for before delivery.
    """

    def __init__(
        self,
        name: str,
        path: Path,
        callback: ChangeCallback,
        *,
        path_filter: Optional[PathFilter] = None,
        debounce_ms: int = 100,
        recursive: bool = False,
        stop_timeout: float = 5.0,
    ):
        self.name = name
        self.path = Path(path)
        self._callback = callback
        self._path_filter = path_filter
        self._debounce_ms = debounce_ms
        self._recursive = recursive
        self._stop_timeout = stop_timeout
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self) -> None:
        """Start watching in a background task. Raises if the directory is missing."""
        if self._running:
            logger.warning("%s watcher already running", self.name)
            return
        if not self.path.is_dir():
            raise FileNotFoundError(f"{self.name} watch directory does not exist: {self.path}")

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(), name=f"watch:{self.name}")
        logger.info("%s watcher started on %s", self.name, self.path)

    async def stop(self) -> None:
        """Stop the file watcher.

        A callback already handling a batch is allowed ``stop_timeout`` seconds
        to finish before the watch task is cancelled.
        """
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), self._stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("%s watcher did not stop within %.1fs; cancelling", self.name, self._stop_timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("%s watcher stopped", self.name)

    @property
    def is_running(self) -> bool:
        return self._running

    def _accepts(self, change: Change, path_str: str) -> bool:
        if self._path_filter is None:
            return True
        return self._path_filter(Path(path_str))

    async def _watch_loop(self) -> None:
        try:
            async for changes in awatch(
                self.path,
                watch_filter=self._accepts,
                debounce=self._debounce_ms,
                recursive=self._recursive,
                stop_event=self._stop_event,
            ):
                if not self._running:
                    break

                classified = self._classify_changes(changes)
                if not classified:
                    continue
                logger.debug("%s watcher: %d changes", self.name, len(classified))
                try:
                    await self._callback(classified)
                except Exception:
                    logger.exception("%s watcher: error handling changes", self.name)
        except asyncio.CancelledError:
            logger.info("%s watcher task cancelled", self.name)
        except Exception:
            logger.exception("%s watcher error", self.name)
        finally:
            self._running = False

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> ChangeBatch:
        """Collapse raw watchfiles changes into ordered (change_type, path) pairs."""
        latest: dict[Path, str] = {}
        for change_type, path_str in changes:
            path = Path(path_str)
            if self._path_filter is not None and not self._path_filter(path):
                continue
            if change_type in (Change.modified, Change.added):
                # A write in the same batch as a delete means the file was recreated.
                latest[path] = "modified"
            elif change_type == Change.deleted:
                latest.setdefault(path, "deleted")
        return sorted(((kind, path) for path, kind in latest.items()), key=lambda item: str(item[1]))
