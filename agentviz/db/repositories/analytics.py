"""SQLite implementation of the aggregate read views."""
from __future__ import annotations

import aiosqlite


class SqliteAnalyticsRepository:
    """Per-session file and command aggregates derived from the events table."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_file_activity(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            """SELECT * FROM file_activity
               WHERE session_id = ?
               ORDER BY total_operations DESC, last_accessed DESC, file_path""",
            (session_id,),
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    async def get_command_stats(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            """SELECT * FROM command_stats
               WHERE session_id = ?
               ORDER BY count DESC, command_category""",
            (session_id,),
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]
