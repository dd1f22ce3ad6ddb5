"""Observability helpers."""

from agentviz.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_correlation,
    record_ingestion,
    record_parser_failure,
    record_tool_result,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_correlation",
    "record_ingestion",
    "record_parser_failure",
    "record_tool_result",
]
