"""Event store facade over a single aiosqlite connection.

Reads go straight to the repositories. Writes take ``_write_lock`` so that
concurrent session flows never interleave transactions on the shared
connection.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from agentviz.db.connection import open_connection
from agentviz.db.errors import EventStoreError
from agentviz.db.repositories import (
    SqliteAnalyticsRepository,
    SqliteEventRepository,
    SqliteSessionRepository,
)
from agentviz.db.sqlite_migrations import run_migrations
from agentviz.models import ActivityEvent, LauncherMetadata, Session

logger = logging.getLogger("agentviz.db")


class EventStore:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.sessions = SqliteSessionRepository(db)
        self.events = SqliteEventRepository(db)
        self.analytics = SqliteAnalyticsRepository(db)
        self._write_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def open(cls, db_path: Path | str) -> "EventStore":
        """Connect, configure and migrate. Failures surface as EventStoreError."""
        try:
            db = await open_connection(db_path)
        except (OSError, sqlite3.Error) as exc:
            raise EventStoreError(f"Cannot open event store at {db_path}: {exc}") from exc
        try:
            await run_migrations(db)
        except sqlite3.Error as exc:
            await db.close()
            raise EventStoreError(f"Cannot migrate event store at {db_path}: {exc}") from exc
        return cls(db)

    # ── Sessions ───────────────────────────────────────────────────

    async def create_session(self, data: Session | LauncherMetadata | dict) -> dict:
        if isinstance(data, LauncherMetadata):
            payload = data.model_dump()
            payload["id"] = payload.pop("session_id")
        elif isinstance(data, Session):
            payload = data.model_dump()
        else:
            payload = dict(data)
        async with self._write_lock:
            return await self.sessions.create(payload)

    async def update_session(self, session_id: str, **fields: Any) -> dict | None:
        fields.pop("id", None)
        fields.pop("spawned_at", None)
        async with self._write_lock:
            return await self.sessions.update(session_id, fields)

    async def get_session(self, session_id: str) -> dict | None:
        return await self.sessions.get_by_id(session_id)

    async def list_sessions(
        self,
        status: str | None = None,
        importance: str | None = None,
        project_dir: str | None = None,
    ) -> list[dict]:
        return await self.sessions.list_filtered(status=status, importance=importance, project_dir=project_dir)

    # ── Events ─────────────────────────────────────────────────────

    async def insert_event(self, event: ActivityEvent | dict) -> bool:
        async with self._write_lock:
            return await self.events.insert(event)

    async def insert_events(self, events: Iterable[ActivityEvent | dict]) -> int:
        batch = list(events)
        if not batch:
            return 0
        async with self._write_lock:
            return await self.events.insert_many(batch)

    async def get_events(
        self,
        session_id: str,
        event_type: str | None = None,
        tool_name: str | None = None,
        file_path: str | None = None,
        command_category: str | None = None,
        status: str | None = None,
    ) -> list[dict]:
        return await self.events.list_by_session(
            session_id,
            event_type=event_type,
            tool_name=tool_name,
            file_path=file_path,
            command_category=command_category,
            status=status,
        )

    async def get_event_by_source_id(self, session_id: str, copilot_event_id: str) -> dict | None:
        return await self.events.get_by_source_id(session_id, copilot_event_id)

    async def count_events(self, session_id: str | None = None) -> int:
        return await self.events.count(session_id)

    # ── Aggregates ─────────────────────────────────────────────────

    async def get_file_activity(self, session_id: str) -> list[dict]:
        return await self.analytics.get_file_activity(session_id)

    async def get_command_stats(self, session_id: str) -> list[dict]:
        return await self.analytics.get_command_stats(session_id)

    # ── Lifecycle ──────────────────────────────────────────────────

    async def health_check(self) -> bool:
        if self._closed:
            return False
        try:
            async with self.db.execute("SELECT 1") as cur:
                row = await cur.fetchone()
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Event store health check failed: %s", exc)
            return False
        return bool(row and row[0] == 1)

    async def close(self) -> None:
        if self._closed:
            return
        # Wait for any in-flight batch before closing.
        async with self._write_lock:
            self._closed = True
            await self.db.close()
        logger.info("Database connection closed")
