"""Database connection factory.

Opens an aiosqlite connection in WAL mode with foreign keys enforced.
Each caller owns the connection it opens; the event store holds exactly one.
"""
from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger("agentviz.db")

MEMORY_PATH = ":memory:"


async def apply_pragmas(conn: aiosqlite.Connection) -> None:
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")


async def open_connection(db_path: Path | str) -> aiosqlite.Connection:
    """Open and configure a connection, creating the parent directory if needed."""
    target = str(db_path)
    if target != MEMORY_PATH:
        Path(target).expanduser().parent.mkdir(parents=True, exist_ok=True)
        target = str(Path(target).expanduser())
    conn = await aiosqlite.connect(target)
    try:
        await apply_pragmas(conn)
    except Exception:
        await conn.close()
        raise
    logger.info("Database connection established: %s", target)
    return conn
