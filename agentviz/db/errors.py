"""Typed failures raised by the event store."""


class EventStoreError(Exception):
    """Base class for event store failures."""


class IntegrityViolation(EventStoreError):
    """A write broke a schema constraint other than event deduplication.

    The usual cause is an event whose ``session_id`` has no session row.
    """
