"""Transform raw assistant log records into canonical activity events."""
from __future__ import annotations

from typing import Any

from agentviz.command_categories import categorize_command
from agentviz.date_utils import duration_ms
from agentviz.models import (
    ActivityEvent,
    RawRecord,
    ToolCompleteRecord,
    ToolStartRecord,
    classify_record,
)
from agentviz.path_utils import normalize_path

EVENT_SOURCE = "jsonl"

# Tools we treat as concrete file actions.
_FILE_OPERATION_BY_TOOL: dict[str, str] = {
    "view": "read",
    "read_file": "read",
    "Read": "read",
    "create": "write",
    "write_file": "write",
    "Write": "write",
    "edit": "edit",
    "edit_file": "edit",
    "str_replace": "edit",
    "Edit": "edit",
    "MultiEdit": "edit",
}

_SHELL_TOOLS = {"shell", "bash", "Bash"}

_FILE_PATH_KEYS = ("path", "file_path")
_COMMAND_KEYS = ("command", "cmd")


def _first_string(args: Any, keys: tuple[str, ...]) -> str | None:
    if not isinstance(args, dict):
        return None
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def extract_file_operation(tool_name: str | None, args: Any, project_dir: str | None = None) -> dict[str, str] | None:
    operation = _FILE_OPERATION_BY_TOOL.get(tool_name or "")
    if not operation:
        return None
    path = _first_string(args, _FILE_PATH_KEYS)
    if not path:
        return None
    return {
        "file_path": normalize_path(path, project_dir) if project_dir else path,
        "operation": operation,
    }


def extract_command(tool_name: str | None, args: Any) -> dict[str, str] | None:
    if tool_name not in _SHELL_TOOLS:
        return None
    command = _first_string(args, _COMMAND_KEYS)
    if not command:
        return None
    return {"command": command, "category": categorize_command(command)}


def transform_start(record: ToolStartRecord, session_id: str, project_dir: str | None = None) -> ActivityEvent:
    data = record.data
    event = ActivityEvent(
        session_id=session_id,
        copilot_event_id=record.id,
        parent_event_id=record.parentId,
        timestamp=record.timestamp,
        event_type="tool_start",
        tool_name=data.toolName,
        tool_call_id=data.toolCallId,
        tool_arguments=data.arguments,
        status="running",
        source=EVENT_SOURCE,
        raw_data=record.raw or None,
    )

    file_op = extract_file_operation(data.toolName, data.arguments, project_dir)
    if file_op:
        event.file_path = file_op["file_path"]
        event.operation = file_op["operation"]  # type: ignore[assignment]

    command_info = extract_command(data.toolName, data.arguments)
    if command_info:
        event.command = command_info["command"]
        event.command_category = command_info["category"]

    return event


def transform_complete(record: ToolCompleteRecord, session_id: str) -> ActivityEvent:
    # Tool name and duration resolve from the paired start event at read time.
    return ActivityEvent(
        session_id=session_id,
        copilot_event_id=record.id,
        parent_event_id=record.parentId,
        timestamp=record.timestamp,
        event_type="tool_complete",
        tool_call_id=record.data.toolCallId,
        status="success" if record.data.success is True else "error",
        source=EVENT_SOURCE,
        raw_data=record.raw or None,
    )


def transform_record(
    raw: dict[str, Any] | RawRecord,
    session_id: str,
    project_dir: str | None = None,
) -> ActivityEvent | None:
    """Dispatch a raw record to the matching transform; other record kinds yield None."""
    record = classify_record(raw) if isinstance(raw, dict) else raw
    if isinstance(record, ToolStartRecord):
        return transform_start(record, session_id, project_dir)
    if isinstance(record, ToolCompleteRecord):
        return transform_complete(record, session_id)
    return None


def calculate_duration(start: ActivityEvent, complete: ActivityEvent) -> int | None:
    return duration_ms(start.timestamp, complete.timestamp)


def merge_events(start: ActivityEvent, complete: ActivityEvent) -> dict[str, Any]:
    """Combine a start/complete pair into one reporting row."""
    merged = start.model_dump()
    merged.update(
        {
            "event_type": "tool_execution",
            "status": complete.status,
            "duration_ms": calculate_duration(start, complete),
            "completed_at": complete.timestamp,
        }
    )
    return merged
