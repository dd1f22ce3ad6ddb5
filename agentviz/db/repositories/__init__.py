"""Repository package for database access."""

from .sessions import SqliteSessionRepository
from .events import SqliteEventRepository
from .analytics import SqliteAnalyticsRepository

__all__ = [
    "SqliteSessionRepository",
    "SqliteEventRepository",
    "SqliteAnalyticsRepository",
]
