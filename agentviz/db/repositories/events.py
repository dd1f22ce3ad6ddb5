"""SQLite implementation of the activity event repository."""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable

import aiosqlite

from agentviz.db.errors import IntegrityViolation
from agentviz.models import ActivityEvent

logger = logging.getLogger("agentviz.db.events")

_INSERT_COLUMNS = (
    "session_id",
    "copilot_event_id",
    "parent_event_id",
    "timestamp",
    "event_type",
    "tool_name",
    "tool_call_id",
    "tool_arguments",
    "file_path",
    "operation",
    "command",
    "command_category",
    "status",
    "duration_ms",
    "source",
    "raw_data",
)

# The unique (session_id, copilot_event_id) index turns a re-delivered record
# into a no-op; foreign key failures are not covered by OR IGNORE and still raise.
_INSERT_SQL = (
    f"INSERT OR IGNORE INTO events ({', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _INSERT_COLUMNS)})"
)

_JSON_COLUMNS = ("tool_arguments", "raw_data")

_FILTER_COLUMNS = ("event_type", "tool_name", "file_path", "command_category", "status")


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _event_params(event: ActivityEvent | dict) -> tuple:
    data = event.model_dump() if isinstance(event, ActivityEvent) else dict(event)
    data["tool_arguments"] = _dump_json(data.get("tool_arguments"))
    data["raw_data"] = _dump_json(data.get("raw_data"))
    data["source"] = data.get("source") or "jsonl"
    return tuple(data.get(col) for col in _INSERT_COLUMNS)


def _row_to_dict(row: aiosqlite.Row) -> dict:
    data = dict(row)
    for column in _JSON_COLUMNS:
        value = data.get(column)
        if isinstance(value, str):
            try:
                data[column] = json.loads(value)
            except json.JSONDecodeError:
                pass
    if "resolved_tool_name" in data:
        data["tool_name"] = data.pop("resolved_tool_name")
    if "resolved_duration_ms" in data:
        data["duration_ms"] = data.pop("resolved_duration_ms")
    return data


class SqliteEventRepository:
    """SQLite-backed append-only event storage."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, event: ActivityEvent | dict) -> bool:
        """Store one event. Returns False when it is a duplicate."""
        try:
            cursor = await self.db.execute(_INSERT_SQL, _event_params(event))
            await self.db.commit()
        except sqlite3.IntegrityError as exc:
            await self.db.rollback()
            raise IntegrityViolation(str(exc)) from exc
        except BaseException:
            await self.db.rollback()
            raise
        return cursor.rowcount > 0

    async def insert_many(self, events: Iterable[ActivityEvent | dict]) -> int:
        """Store a batch in one transaction; returns how many were new.

        Duplicates are skipped. Any other failure rolls back the whole batch.
        """
        params = [_event_params(e) for e in events]
        if not params:
            return 0
        try:
            cursor = await self.db.executemany(_INSERT_SQL, params)
            inserted = cursor.rowcount
            await self.db.commit()
        except sqlite3.IntegrityError as exc:
            await self.db.rollback()
            raise IntegrityViolation(str(exc)) from exc
        except BaseException:
            # Cancellation included: the shared connection must not keep a half batch open.
            await self.db.rollback()
            raise
        return max(inserted, 0)

    async def list_by_session(self, session_id: str, **filters: Any) -> list[dict]:
        query = "SELECT * FROM events_resolved WHERE session_id = ?"
        params: list[Any] = [session_id]
        for column in _FILTER_COLUMNS:
            value = filters.get(column)
            if value is None:
                continue
            if column == "tool_name":
                query += " AND resolved_tool_name = ?"
            else:
                query += f" AND {column} = ?"
            params.append(value)
        query += " ORDER BY timestamp ASC, id ASC"

        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
            return [_row_to_dict(r) for r in rows]

    async def get_by_source_id(self, session_id: str, copilot_event_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM events_resolved WHERE session_id = ? AND copilot_event_id = ?",
            (session_id, copilot_event_id),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_dict(row) if row else None

    async def count(self, session_id: str | None = None) -> int:
        if session_id is None:
            query, params = "SELECT COUNT(*) FROM events", ()
        else:
            query, params = "SELECT COUNT(*) FROM events WHERE session_id = ?", (session_id,)
        async with self.db.execute(query, params) as cur:
            row = await cur.fetchone()
            return row[0] if row else 0
