"""Database schema creation and versioning.

All CREATE statements for the event store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging
import sqlite3

import aiosqlite

logger = logging.getLogger("agentviz.db")

SCHEMA_VERSION = 2

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Sessions ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS sessions (
    id                   TEXT PRIMARY KEY,
    copilot_session_id   TEXT,
    project_dir          TEXT NOT NULL DEFAULT 'unknown',
    task_file            TEXT,
    spawned_at           TEXT NOT NULL,
    spawned_by           TEXT,
    status               TEXT NOT NULL DEFAULT 'running',
    importance           TEXT NOT NULL DEFAULT 'normal',
    pid                  INTEGER,
    last_activity        TEXT,
    created_at           TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at           TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_sessions_status     ON sessions(status);
CREATE INDEX IF NOT EXISTS idx_sessions_spawned    ON sessions(spawned_at DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_copilot_id ON sessions(copilot_session_id);

-- ── 2. Events ──────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS events (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id        TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    copilot_event_id  TEXT,
    parent_event_id   TEXT,
    timestamp         TEXT,
    event_type        TEXT NOT NULL,
    tool_name         TEXT,
    tool_call_id      TEXT,
    tool_arguments    TEXT,
    file_path         TEXT,
    operation         TEXT,
    command           TEXT,
    command_category  TEXT,
    status            TEXT,
    duration_ms       INTEGER,
    source            TEXT NOT NULL DEFAULT 'jsonl',
    raw_data          TEXT,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

-- NULL source ids never collide, so only sourced events are deduplicated.
CREATE UNIQUE INDEX IF NOT EXISTS idx_events_source   ON events(session_id, copilot_event_id);
CREATE INDEX IF NOT EXISTS idx_events_session_ts      ON events(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_tool_call       ON events(session_id, tool_call_id);
CREATE INDEX IF NOT EXISTS idx_events_file            ON events(session_id, file_path) WHERE file_path IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_events_category        ON events(session_id, command_category) WHERE command_category IS NOT NULL;
"""

# Views are recreated on each migration so definition changes take effect.
_VIEWS = """
DROP VIEW IF EXISTS command_stats;
DROP VIEW IF EXISTS file_activity;
DROP VIEW IF EXISTS events_resolved;

-- Start and complete records share (session_id, tool_call_id); each side
-- borrows what it lacks from the other at read time. Negative gaps are NULL.
CREATE VIEW events_resolved AS
SELECT
    e.*,
    COALESCE(
        e.tool_name,
        (SELECT s.tool_name FROM events s
          WHERE s.session_id = e.session_id
            AND s.tool_call_id = e.tool_call_id
            AND s.event_type = 'tool_start'
          ORDER BY s.id LIMIT 1)
    ) AS resolved_tool_name,
    COALESCE(
        e.duration_ms,
        CASE
            WHEN e.tool_call_id IS NULL THEN NULL
            WHEN e.event_type = 'tool_start' THEN (
                SELECT NULLIF(MAX(CAST(ROUND((julianday(c.timestamp) - julianday(e.timestamp)) * 86400000) AS INTEGER), -1), -1)
                  FROM events c
                 WHERE c.session_id = e.session_id
                   AND c.tool_call_id = e.tool_call_id
                   AND c.event_type = 'tool_complete'
                 ORDER BY c.id LIMIT 1
            )
            WHEN e.event_type = 'tool_complete' THEN (
                SELECT NULLIF(MAX(CAST(ROUND((julianday(e.timestamp) - julianday(s.timestamp)) * 86400000) AS INTEGER), -1), -1)
                  FROM events s
                 WHERE s.session_id = e.session_id
                   AND s.tool_call_id = e.tool_call_id
                   AND s.event_type = 'tool_start'
                 ORDER BY s.id LIMIT 1
            )
        END
    ) AS resolved_duration_ms
FROM events e;

CREATE VIEW file_activity AS
SELECT
    session_id,
    file_path,
    COUNT(*)                                          AS total_operations,
    SUM(CASE WHEN operation = 'read'   THEN 1 ELSE 0 END) AS reads,
    SUM(CASE WHEN operation = 'write'  THEN 1 ELSE 0 END) AS writes,
    SUM(CASE WHEN operation = 'edit'   THEN 1 ELSE 0 END) AS edits,
    SUM(CASE WHEN operation = 'delete' THEN 1 ELSE 0 END) AS deletes,
    MIN(timestamp)                                    AS first_accessed,
    MAX(timestamp)                                    AS last_accessed
FROM events
WHERE file_path IS NOT NULL
GROUP BY session_id, file_path;

CREATE VIEW command_stats AS
SELECT
    session_id,
    command_category,
    COUNT(*)                        AS count,
    AVG(resolved_duration_ms)       AS avg_duration,
    SUM(resolved_duration_ms)       AS total_duration,
    MAX(timestamp)                  AS last_run
FROM events_resolved
WHERE command_category IS NOT NULL
GROUP BY session_id, command_category;
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def _current_version(db: aiosqlite.Connection) -> int:
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
    except sqlite3.OperationalError:
        # Fresh database without the version table.
        return 0
    return row[0] if row and row[0] else 0


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables and views. Idempotent."""
    current_version = await _current_version(db)
    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    # Version 2: correlation bookkeeping on sessions.
    await _ensure_column(db, "sessions", "log_path", "TEXT")
    await _ensure_column(db, "sessions", "correlation_attempts", "INTEGER NOT NULL DEFAULT 0")
    await db.execute("CREATE INDEX IF NOT EXISTS idx_sessions_log_path ON sessions(log_path)")

    await db.executescript(_VIEWS)

    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
    logger.info("Migrations complete (version %s)", SCHEMA_VERSION)
