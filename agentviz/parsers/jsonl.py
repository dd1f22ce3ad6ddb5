"""Incremental JSONL reader with byte-offset tracking.

Only newline-terminated lines are consumed, so a record the writer has not
finished flushing stays on disk until its terminator lands. A file that
shrinks below the stored offset, or is replaced by a new inode, is read again
from the start.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from agentviz.observability import record_parser_failure

logger = logging.getLogger("agentviz.tailer")


@dataclass(frozen=True)
class LineResult:
    """Outcome of parsing one line: a record, or the reason it was skipped."""

    record: dict[str, Any] | None = None
    skip_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


def parse_line(line: bytes | str) -> LineResult:
    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            return LineResult(skip_reason=f"invalid utf-8: {exc}")
    else:
        text = line
    text = text.strip()
    if not text:
        return LineResult(skip_reason="blank")
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        return LineResult(skip_reason=f"malformed json: {exc.msg} (col {exc.colno})")
    if not isinstance(value, dict):
        return LineResult(skip_reason=f"not a json object: {type(value).__name__}")
    return LineResult(record=value)


def _collect(lines: Iterable[bytes], source: str) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for line in lines:
        result = parse_line(line)
        if result.ok:
            records.append(result.record)  # type: ignore[arg-type]
        elif result.skip_reason != "blank":
            logger.warning("Skipping line in %s: %s", source, result.skip_reason)
            record_parser_failure("jsonl")
    return records


def read_records(path: Path | str) -> list[dict[str, Any]]:
    """Parse a whole JSONL file with the same line rules as the tailer.

    A trailing line without a terminator is included here, since callers of a
    one-shot read have no later call in which to pick it up.
    """
    file_path = Path(path)
    try:
        data = file_path.read_bytes()
    except FileNotFoundError:
        return []
    return _collect(data.splitlines(), str(file_path))


def filter_by_type(records: list[dict[str, Any]], types: str | Iterable[str]) -> list[dict[str, Any]]:
    wanted = {types} if isinstance(types, str) else set(types)
    return [r for r in records if r.get("type") in wanted]


class JsonlTailer:
    """Tracks a byte offset into one append-only JSONL file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._position = 0
        self._inode: int | None = None

    @property
    def position(self) -> int:
        return self._position

    def reset(self) -> None:
        self._position = 0

    def read_all(self) -> list[dict[str, Any]]:
        self.reset()
        return self.read_new()

    def read_new(self) -> list[dict[str, Any]]:
        """Return records fully written since the previous call.

        Missing files yield an empty list; other OS errors propagate.
        """
        try:
            fh = open(self.path, "rb")
        except FileNotFoundError:
            return []

        with fh:
            stats = os.fstat(fh.fileno())
            if self._inode is not None and stats.st_ino != self._inode:
                logger.info("%s was replaced, reading from start", self.path)
                self._position = 0
            self._inode = stats.st_ino

            if stats.st_size < self._position:
                logger.info("%s was truncated (%d < %d), reading from start", self.path, stats.st_size, self._position)
                self._position = 0
            if stats.st_size == self._position:
                return []

            fh.seek(self._position)
            chunk = fh.read()

        last_newline = chunk.rfind(b"\n")
        if last_newline < 0:
            # Partial line only; wait for its terminator.
            return []

        complete = chunk[: last_newline + 1]
        self._position += len(complete)
        return _collect(complete.splitlines(), str(self.path))
