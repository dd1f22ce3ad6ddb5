"""Match launcher-spawned sessions to assistant session logs.

The launcher and the assistant share no identifier, so a match rests on two
pieces of circumstantial evidence:

1. the assistant log's ``session.start`` falls inside a window ending at the
   spawn instant (a few seconds of clock skew past it are tolerated), and
2. at least one ``tool.execution_start`` touches a path inside the launched
   project directory.

Candidates are the logs modified within the lookback period, newest first;
the first one satisfying both checks wins.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from agentviz import config
from agentviz.date_utils import offset_seconds
from agentviz.models import SessionStartRecord, ToolStartRecord, classify_record
from agentviz.parsers.jsonl import read_records
from agentviz.path_utils import is_within

logger = logging.getLogger("agentviz.correlator")

_EVIDENCE_KEYS = ("path", "file_path", "cwd")


@dataclass(frozen=True)
class CorrelationMatch:
    session_id: str
    log_path: Path


def _evidence_paths(arguments: Any) -> list[str]:
    if not isinstance(arguments, dict):
        return []
    return [v for k in _EVIDENCE_KEYS if isinstance(v := arguments.get(k), str) and v]


class SessionCorrelator:
    def __init__(
        self,
        log_dir: Path | str,
        *,
        window_seconds: float | None = None,
        skew_seconds: float | None = None,
        lookback_hours: float | None = None,
    ):
        self.log_dir = Path(log_dir).expanduser().resolve()
        self.window_seconds = float(config.CORRELATION_WINDOW_SECONDS if window_seconds is None else window_seconds)
        self.skew_seconds = float(config.CORRELATION_SKEW_SECONDS if skew_seconds is None else skew_seconds)
        self.lookback_hours = float(config.CORRELATION_LOOKBACK_HOURS if lookback_hours is None else lookback_hours)

    def recent_logs(self) -> list[Path]:
        """Log files modified within the lookback period, newest first."""
        if not self.log_dir.exists():
            return []
        cutoff = time.time() - self.lookback_hours * 3600
        candidates: list[tuple[float, Path]] = []
        try:
            entries = list(self.log_dir.glob("*.jsonl"))
        except OSError as exc:
            logger.warning("Error reading assistant log directory %s: %s", self.log_dir, exc)
            return []
        for path in entries:
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if mtime >= cutoff:
                candidates.append((mtime, path))
        candidates.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in candidates]

    def _start_in_window(self, started_at: str | None, spawned_at: str) -> bool:
        # lead > 0 means the assistant session began before the spawn.
        lead = offset_seconds(spawned_at, started_at)
        if lead is None:
            return False
        return -self.skew_seconds <= lead <= self.window_seconds

    def check_candidate(self, path: Path, spawned_at: str, project_dir: str) -> CorrelationMatch | None:
        records = [classify_record(raw) for raw in read_records(path)]
        session_start = next((r for r in records if isinstance(r, SessionStartRecord)), None)
        if session_start is None:
            return None
        if not self._start_in_window(session_start.started_at, spawned_at):
            return None

        for record in records:
            if not isinstance(record, ToolStartRecord):
                continue
            if any(is_within(p, project_dir) for p in _evidence_paths(record.data.arguments)):
                return CorrelationMatch(
                    session_id=session_start.data.sessionId or path.stem,
                    log_path=path,
                )
        return None

    def find_candidate(
        self,
        spawned_at: str,
        project_dir: str,
        exclude: Iterable[Path] = (),
    ) -> CorrelationMatch | None:
        """First recent log satisfying both checks; logs in ``exclude`` are already bound."""
        if not spawned_at or not project_dir:
            return None
        taken = {Path(p).resolve() for p in exclude}
        for path in self.recent_logs():
            if path in taken:
                continue
            try:
                match = self.check_candidate(path, spawned_at, project_dir)
            except OSError as exc:
                logger.warning("Error processing session file %s: %s", path, exc)
                continue
            if match:
                return match
        return None

    def find_match(self, spawned_at: str, project_dir: str) -> str | None:
        match = self.find_candidate(spawned_at, project_dir)
        return match.session_id if match else None

    def is_session_active(self, session_id: str, window_seconds: float = 300) -> bool:
        try:
            mtime = (self.log_dir / f"{session_id}.jsonl").stat().st_mtime
        except OSError:
            return False
        return mtime >= time.time() - window_seconds
