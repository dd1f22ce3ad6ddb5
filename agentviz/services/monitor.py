"""Monitor daemon: discovers assistant session logs and ingests their events.

Two discovery modes:

- ``direct``: every ``*.jsonl`` file in the assistant log directory is a
  session, keyed by its file stem.
- ``correlated``: sessions come from launcher metadata files; each is bound
  to an assistant log by the correlator before anything is ingested.

Per session the flow is discovered → correlating → active, with
correlation_failed sessions retried on a timer. Each session has its own lock
so its batches are ingested in order while different sessions run
concurrently. Failures are contained per session and per timer tick.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Iterable, Optional

from agentviz import config
from agentviz.date_utils import epoch_to_iso, is_recent, utc_now_iso
from agentviz.db.event_store import EventStore
from agentviz.db.file_watcher import ChangeBatch, FileWatcher
from agentviz.models import (
    ActivityEvent,
    LauncherMetadata,
    SessionStartRecord,
    ToolStartRecord,
    classify_record,
)
from agentviz.observability import (
    record_correlation,
    record_ingestion,
    record_tool_result,
    start_span,
)
from agentviz.parsers.events import transform_record
from agentviz.parsers.jsonl import JsonlTailer
from agentviz.parsers.launcher import is_metadata_file, parse_metadata_file, scan_metadata_dir
from agentviz.path_utils import infer_project_dir
from agentviz.services.correlator import SessionCorrelator

logger = logging.getLogger("agentviz.monitor")

MODES = ("direct", "correlated")

_PATH_KEYS = ("path", "file_path", "cwd")

# Start events still waiting for a completion, per session; the oldest are dropped.
_MAX_OPEN_TOOL_CALLS = 1000


def _is_log_file(path: Path) -> bool:
    return path.suffix == ".jsonl" and not path.name.startswith(".")


def _tool_paths(records: Iterable[Any]) -> list[str]:
    paths: list[str] = []
    for record in records:
        if not isinstance(record, ToolStartRecord):
            continue
        args = record.data.arguments
        if not isinstance(args, dict):
            continue
        for key in _PATH_KEYS:
            value = args.get(key)
            if isinstance(value, str) and value:
                paths.append(value)
    return paths


class MonitorDaemon:
    def __init__(
        self,
        store: EventStore,
        *,
        log_dir: Optional[Path] = None,
        metadata_dir: Optional[Path] = None,
        mode: Optional[str] = None,
        correlator: Optional[SessionCorrelator] = None,
        grace_seconds: Optional[float] = None,
        retry_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        active_window_seconds: Optional[float] = None,
    ):
        self.store = store
        self.log_dir = Path(log_dir or config.ASSISTANT_LOG_DIR).expanduser().resolve()
        self.metadata_dir = Path(metadata_dir or config.METADATA_DIR).expanduser().resolve()
        self.mode = (mode or config.MONITOR_MODE).lower()
        if self.mode not in MODES:
            raise ValueError(f"Unknown monitor mode {self.mode!r}; expected one of {MODES}")
        self.correlator = correlator or SessionCorrelator(self.log_dir)
        self.grace_seconds = float(config.CORRELATION_GRACE_SECONDS if grace_seconds is None else grace_seconds)
        self.retry_seconds = float(config.CORRELATION_RETRY_SECONDS if retry_seconds is None else retry_seconds)
        self.max_attempts = int(config.CORRELATION_MAX_ATTEMPTS if max_attempts is None else max_attempts)
        self.active_window_seconds = float(
            config.ACTIVE_WINDOW_SECONDS if active_window_seconds is None else active_window_seconds
        )

        self._tailers: dict[str, JsonlTailer] = {}
        self._bindings: dict[Path, str] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._tool_names: dict[str, dict[str, str]] = {}
        self._pending: dict[str, LauncherMetadata] = {}
        self._grace_tasks: set[asyncio.Task] = set()
        self._retry_task: Optional[asyncio.Task] = None
        self._watchers: list[FileWatcher] = []
        self._log_watcher: Optional[FileWatcher] = None
        self._running = False

    # ── Lifecycle ──────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_sessions(self) -> list[str]:
        return sorted(self._pending)

    @property
    def bound_logs(self) -> dict[Path, str]:
        return dict(self._bindings)

    async def start(self) -> None:
        """Reconcile existing state, then watch for changes.

        Raises FileNotFoundError when the primary watch directory is missing.
        """
        if self._running:
            logger.warning("Monitor already running")
            return
        primary = self.log_dir if self.mode == "direct" else self.metadata_dir
        if not primary.is_dir():
            raise FileNotFoundError(f"Watch directory does not exist: {primary}")

        logger.info("Starting monitor in %s mode", self.mode)
        self._running = True
        await self.backfill()

        if self.mode == "direct":
            self._watchers.append(
                FileWatcher(
                    "assistant-logs", self.log_dir, self._on_log_changes,
                    path_filter=_is_log_file, debounce_ms=config.LOG_DEBOUNCE_MS,
                )
            )
        else:
            self._watchers.append(
                FileWatcher(
                    "launcher-metadata", self.metadata_dir, self._on_metadata_changes,
                    path_filter=lambda p: is_metadata_file(p, self.metadata_dir),
                    debounce_ms=config.METADATA_DEBOUNCE_MS, recursive=True,
                )
            )
            if not self.log_dir.is_dir():
                logger.warning("Assistant log directory %s does not exist; correlation will keep retrying", self.log_dir)
            self._retry_task = asyncio.create_task(self._retry_loop(), name="correlation-retry")

        for watcher in self._watchers:
            await watcher.start()
        if self.mode == "correlated":
            await self._ensure_log_watcher()
        logger.info("Monitor started")

    async def stop(self) -> None:
        """Stop watchers, then timers. In-flight batches finish under the store lock."""
        self._running = False
        for watcher in self._watchers:
            await watcher.stop()
        self._watchers.clear()
        if self._log_watcher is not None:
            await self._log_watcher.stop()
            self._log_watcher = None

        tasks = list(self._grace_tasks)
        if self._retry_task is not None:
            tasks.append(self._retry_task)
            self._retry_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._grace_tasks.clear()
        logger.info("Monitor stopped")

    async def _ensure_log_watcher(self) -> None:
        """Watch the assistant log directory once it exists (correlated mode)."""
        if not self._running or self._log_watcher is not None or not self.log_dir.is_dir():
            return
        watcher = FileWatcher(
            "assistant-logs", self.log_dir, self._on_log_changes,
            path_filter=_is_log_file, debounce_ms=config.LOG_DEBOUNCE_MS,
        )
        await watcher.start()
        self._log_watcher = watcher

    async def backfill(self) -> None:
        """Ingest everything already on disk for the configured mode."""
        with start_span("monitor.backfill", {"mode": self.mode}):
            if self.mode == "direct":
                await self._backfill_logs()
            else:
                await self._backfill_metadata()

    async def _backfill_logs(self) -> None:
        if not self.log_dir.is_dir():
            logger.warning("Assistant log directory %s does not exist", self.log_dir)
            return
        dated: list[tuple[float, Path]] = []
        for candidate in self.log_dir.glob("*.jsonl"):
            if not _is_log_file(candidate):
                continue
            path = candidate.resolve()
            try:
                dated.append((path.stat().st_mtime, path))
            except OSError as exc:
                logger.warning("Skipping assistant log %s: %s", candidate, exc)
        paths = [path for _, path in sorted(dated, key=lambda item: item[0])]
        logger.info("Backfilling %d assistant logs from %s", len(paths), self.log_dir)
        await asyncio.gather(*(self._safe_process(p.stem, p, mode="backfill") for p in paths))

    async def _backfill_metadata(self) -> None:
        entries = await asyncio.to_thread(scan_metadata_dir, self.metadata_dir)
        logger.info("Backfilling %d launcher sessions from %s", len(entries), self.metadata_dir)
        for path, metadata in entries:
            try:
                await self.handle_metadata(metadata, backfill=True)
            except Exception:
                logger.exception("Failed to reconcile launcher metadata %s", path)

    # ── Watch callbacks ────────────────────────────────────────────

    async def _on_log_changes(self, changes: ChangeBatch) -> None:
        jobs = []
        for kind, path in changes:
            path = path.resolve()
            if kind == "deleted":
                session_id = self._bindings.get(path)
                if session_id:
                    logger.info("Log for session %s was removed: %s", session_id, path)
                    self._tailers.pop(session_id, None)
                    self._tool_names.pop(session_id, None)
                continue
            if self.mode == "direct":
                session_id = self._bindings.get(path, path.stem)
            else:
                session_id = self._bindings.get(path)
                if session_id is None:
                    continue
            jobs.append(self._safe_process(session_id, path))
        if jobs:
            await asyncio.gather(*jobs)

    async def _on_metadata_changes(self, changes: ChangeBatch) -> None:
        for kind, path in changes:
            if kind == "deleted":
                continue
            metadata = await asyncio.to_thread(parse_metadata_file, path)
            if metadata is None:
                continue
            try:
                await self.handle_metadata(metadata, backfill=False)
            except Exception:
                logger.exception("Failed to handle launcher metadata %s", path)

    # ── Correlated mode ────────────────────────────────────────────

    async def handle_metadata(self, metadata: LauncherMetadata, *, backfill: bool = False) -> None:
        """Register a launcher session and bind it to its assistant log."""
        session_id = metadata.session_id
        if session_id in self._tailers or session_id in self._bindings.values():
            return
        if any(t.get_name() == f"grace:{session_id}" for t in self._grace_tasks):
            return

        session = await self.store.create_session(metadata)
        known_path = self._known_log_path(session)
        if known_path is not None:
            self._bind(session_id, known_path)
            await self._safe_process(session_id, known_path, mode="backfill")
            return

        if backfill or self.grace_seconds <= 0:
            await self._correlate(metadata)
            return

        logger.info("Session %s discovered; correlating in %.0fs", session_id, self.grace_seconds)
        task = asyncio.create_task(self._correlate_after_grace(metadata), name=f"grace:{session_id}")
        self._grace_tasks.add(task)
        task.add_done_callback(self._grace_tasks.discard)

    def _known_log_path(self, session: dict) -> Optional[Path]:
        if session.get("log_path"):
            path = Path(session["log_path"])
            if path.exists():
                return path.resolve()
        if session.get("copilot_session_id"):
            path = self.log_dir / f"{session['copilot_session_id']}.jsonl"
            if path.exists():
                return path.resolve()
        return None

    async def _correlate_after_grace(self, metadata: LauncherMetadata) -> None:
        await asyncio.sleep(self.grace_seconds)
        try:
            await self._correlate(metadata)
        except Exception:
            logger.exception("Correlation failed for session %s", metadata.session_id)

    async def _correlate(self, metadata: LauncherMetadata) -> bool:
        session_id = metadata.session_id
        async with self._lock_for(session_id):
            if session_id in self._tailers:
                self._pending.pop(session_id, None)
                return True
            with start_span("monitor.correlate", {"session_id": session_id}):
                match = await asyncio.to_thread(
                    self.correlator.find_candidate,
                    metadata.spawned_at,
                    metadata.project_dir,
                    list(self._bindings),
                )

            if match is None:
                session = await self.store.get_session(session_id) or {}
                attempts = int(session.get("correlation_attempts") or 0) + 1
                await self.store.update_session(
                    session_id, status="correlation_failed", correlation_attempts=attempts,
                )
                record_correlation("missed")
                if self.max_attempts > 0 and attempts >= self.max_attempts:
                    self._pending.pop(session_id, None)
                    logger.warning("Giving up on correlating session %s after %d attempts", session_id, attempts)
                else:
                    self._pending[session_id] = metadata
                    logger.info("No assistant log found for session %s (attempt %d)", session_id, attempts)
                return False

            log_path = match.log_path.resolve()
            await self.store.update_session(
                session_id,
                copilot_session_id=match.session_id,
                log_path=str(log_path),
                status="running",
                last_activity=utc_now_iso(),
            )
            self._pending.pop(session_id, None)
            self._bind(session_id, log_path)
            record_correlation("matched")
            logger.info("Correlated session %s with assistant session %s", session_id, match.session_id)

        await self._ensure_log_watcher()
        await self._safe_process(session_id, log_path, mode="backfill")
        return True

    async def retry_pending(self) -> None:
        """Re-run correlation for every session still waiting for a log."""
        for session_id, metadata in list(self._pending.items()):
            try:
                await self._correlate(metadata)
            except Exception:
                logger.exception("Correlation retry failed for session %s", session_id)

    async def _retry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.retry_seconds)
            try:
                await self._ensure_log_watcher()
            except Exception:
                logger.exception("Could not watch assistant log directory %s", self.log_dir)
            if not self._pending:
                continue
            logger.info("Retrying correlation for %d sessions", len(self._pending))
            try:
                await self.retry_pending()
            except Exception:
                logger.exception("Correlation retry tick failed")

    # ── Ingestion ──────────────────────────────────────────────────

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._session_locks.setdefault(session_id, asyncio.Lock())

    def _bind(self, session_id: str, path: Path) -> None:
        self._bindings[path] = session_id
        if session_id not in self._tailers:
            self._tailers[session_id] = JsonlTailer(path)

    async def _safe_process(self, session_id: str, path: Path, *, mode: str = "live") -> int:
        try:
            return await self.process_log(session_id, path, mode=mode)
        except Exception:
            logger.exception("Failed to process log for session %s (%s)", session_id, path)
            return 0

    async def process_log(self, session_id: str, path: Path, *, mode: str = "live") -> int:
        """Ingest records appended to ``path`` since the last call. Returns new event count."""
        async with self._lock_for(session_id):
            if path not in self._bindings:
                self._bind(session_id, path)
            tailer = self._tailers.get(session_id)
            if tailer is None or tailer.path != path:
                tailer = self._tailers[session_id] = JsonlTailer(path)

            started = time.perf_counter()
            raw_records = await asyncio.to_thread(tailer.read_new)
            records = [classify_record(r) for r in raw_records]

            if self.mode == "direct":
                session = await self._sync_direct_session(session_id, path, records)
            else:
                session = await self.store.get_session(session_id)
            if session is None:
                logger.warning("No session row for %s; skipping %s", session_id, path)
                return 0
            if not records:
                return 0

            # A direct-mode project dir is only inferred, so paths stay absolute there.
            project_dir = session.get("project_dir") if self.mode == "correlated" else None
            if project_dir == "unknown":
                project_dir = None
            events = [
                event for event in (transform_record(r, session_id, project_dir) for r in records)
                if event is not None
            ]

            with start_span("monitor.ingest", {"session_id": session_id, "events": len(events)}):
                inserted = await self.store.insert_events(events)
            record_ingestion(inserted, len(events) - inserted, (time.perf_counter() - started) * 1000, mode=mode)
            self._record_tool_results(session_id, events)

            last_ts = next((r.timestamp for r in reversed(records) if r.timestamp), None)
            await self.store.update_session(session_id, last_activity=last_ts or utc_now_iso())
            if inserted:
                logger.info("Session %s: stored %d new events", session_id, inserted)
            return inserted

    def _record_tool_results(self, session_id: str, events: list[ActivityEvent]) -> None:
        names = self._tool_names.setdefault(session_id, {})
        for event in events:
            if event.event_type == "tool_start" and event.tool_call_id and event.tool_name:
                names[event.tool_call_id] = event.tool_name
                if len(names) > _MAX_OPEN_TOOL_CALLS:
                    names.pop(next(iter(names)))
            elif event.event_type == "tool_complete":
                tool = names.pop(event.tool_call_id, None) if event.tool_call_id else None
                record_tool_result(tool or "unknown", event.status or "unknown")

    async def _sync_direct_session(self, session_id: str, path: Path, records: list[Any]) -> Optional[dict]:
        try:
            stats = path.stat()
        except FileNotFoundError:
            return await self.store.get_session(session_id)
        status = "running" if is_recent(stats.st_mtime, self.active_window_seconds) else "completed"

        session = await self.store.get_session(session_id)
        if session is not None:
            updates: dict[str, Any] = {"status": status}
            if session.get("project_dir") == "unknown":
                updates["project_dir"] = infer_project_dir(_tool_paths(records))
            return await self.store.update_session(session_id, **updates)

        start = next((r for r in records if isinstance(r, SessionStartRecord)), None)
        session_data = {
            "id": session_id,
            "copilot_session_id": start.data.sessionId if start else None,
            "project_dir": infer_project_dir(_tool_paths(records)) or "unknown",
            "spawned_at": (start.started_at if start else None) or epoch_to_iso(stats.st_ctime),
            "status": status,
            "log_path": str(path),
            "last_activity": epoch_to_iso(stats.st_mtime),
        }
        logger.info("Discovered assistant session %s (%s)", session_id, session_data["project_dir"])
        return await self.store.create_session(session_data)
