"""SQLite implementation of the session repository."""
from __future__ import annotations

from typing import Any

import aiosqlite

from agentviz.date_utils import utc_now_iso

# Columns an update may touch. id and spawned_at are fixed at creation.
_UPDATABLE_COLUMNS = (
    "copilot_session_id",
    "project_dir",
    "task_file",
    "spawned_by",
    "status",
    "importance",
    "pid",
    "last_activity",
    "log_path",
    "correlation_attempts",
)


class SqliteSessionRepository:
    """SQLite-backed storage for monitored sessions."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, session_data: dict) -> dict:
        """Insert a session unless its id exists; always returns the stored row."""
        now = utc_now_iso()
        await self.db.execute(
            """INSERT INTO sessions (
                id, copilot_session_id, project_dir, task_file,
                spawned_at, spawned_by, status, importance, pid,
                last_activity, log_path, correlation_attempts,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                session_data["id"],
                session_data.get("copilot_session_id"),
                session_data.get("project_dir") or "unknown",
                session_data.get("task_file"),
                session_data.get("spawned_at") or now,
                session_data.get("spawned_by"),
                session_data.get("status") or "running",
                session_data.get("importance") or "normal",
                session_data.get("pid"),
                session_data.get("last_activity") or now,
                session_data.get("log_path"),
                session_data.get("correlation_attempts") or 0,
                now, now,
            ),
        )
        await self.db.commit()
        return await self.get_by_id(session_data["id"])  # type: ignore[return-value]

    async def update(self, session_id: str, fields: dict[str, Any]) -> dict | None:
        """Coalescing partial update: a None value keeps the stored one."""
        columns = [c for c in _UPDATABLE_COLUMNS if c in fields]
        if columns:
            assignments = ", ".join(f"{c} = COALESCE(?, {c})" for c in columns)
            params = [fields[c] for c in columns]
            await self.db.execute(
                f"UPDATE sessions SET {assignments}, updated_at = ? WHERE id = ?",
                (*params, utc_now_iso(), session_id),
            )
            await self.db.commit()
        return await self.get_by_id(session_id)

    async def get_by_id(self, session_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ) as cur:
            row = await cur.fetchone()
            if not row:
                return None
            return dict(row)

    async def list_filtered(
        self,
        status: str | None = None,
        importance: str | None = None,
        project_dir: str | None = None,
    ) -> list[dict]:
        query = "SELECT * FROM sessions WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if importance:
            query += " AND importance = ?"
            params.append(importance)
        if project_dir:
            query += " AND project_dir = ?"
            params.append(project_dir)
        query += " ORDER BY spawned_at DESC, id"

        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]
