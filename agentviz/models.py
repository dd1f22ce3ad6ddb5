"""Pydantic models for raw assistant log records and stored activity data."""
from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

SESSION_START = "session.start"
TOOL_EXECUTION_START = "tool.execution_start"
TOOL_EXECUTION_COMPLETE = "tool.execution_complete"

SessionStatus = Literal["running", "completed", "correlation_failed", "stopped", "unknown"]
EventKind = Literal["tool_start", "tool_complete", "file_op", "command"]
FileOperation = Literal["read", "write", "edit", "delete"]
EventStatus = Literal["running", "success", "error"]


# ── Raw assistant log records ──────────────────────────────────────

class _RawRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    parentId: Optional[str] = None
    timestamp: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)


class SessionStartData(BaseModel):
    model_config = ConfigDict(extra="allow")

    sessionId: Optional[str] = None
    startTime: Optional[str] = None


class ToolStartData(BaseModel):
    model_config = ConfigDict(extra="allow")

    toolName: Optional[str] = None
    toolCallId: Optional[str] = None
    arguments: Any = None


class ToolCompleteData(BaseModel):
    model_config = ConfigDict(extra="allow")

    toolCallId: Optional[str] = None
    success: Any = None


class SessionStartRecord(_RawRecord):
    type: Literal["session.start"] = SESSION_START
    data: SessionStartData = Field(default_factory=SessionStartData)

    @property
    def started_at(self) -> Optional[str]:
        return self.timestamp or self.data.startTime


class ToolStartRecord(_RawRecord):
    type: Literal["tool.execution_start"] = TOOL_EXECUTION_START
    data: ToolStartData = Field(default_factory=ToolStartData)


class ToolCompleteRecord(_RawRecord):
    type: Literal["tool.execution_complete"] = TOOL_EXECUTION_COMPLETE
    data: ToolCompleteData = Field(default_factory=ToolCompleteData)


class UnknownRecord(_RawRecord):
    type: Optional[str] = None


RawRecord = Union[SessionStartRecord, ToolStartRecord, ToolCompleteRecord, UnknownRecord]

_RECORD_TYPES: dict[str, type[_RawRecord]] = {
    SESSION_START: SessionStartRecord,
    TOOL_EXECUTION_START: ToolStartRecord,
    TOOL_EXECUTION_COMPLETE: ToolCompleteRecord,
}


def _coerce_scalar(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    return str(value)


def classify_record(raw: dict[str, Any]) -> RawRecord:
    """Map a decoded JSON object onto its record variant.

    Records whose ``type`` is unrecognised, or whose payload does not fit the
    recognised shape, come back as ``UnknownRecord``.
    """
    record_type = raw.get("type")
    model = _RECORD_TYPES.get(record_type) if isinstance(record_type, str) else None
    base = {
        "id": _coerce_scalar(raw.get("id")),
        "parentId": _coerce_scalar(raw.get("parentId")),
        "timestamp": _coerce_scalar(raw.get("timestamp")),
        "raw": raw,
    }
    if model is not None:
        data = raw.get("data")
        try:
            return model(**base, data=data if isinstance(data, dict) else {})
        except ValidationError:
            pass
    return UnknownRecord(**base, type=record_type if isinstance(record_type, str) else None)


# ── Launcher metadata ──────────────────────────────────────────────

class LauncherMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str
    project_dir: str
    spawned_at: str
    spawned_by: Optional[str] = None
    importance: Optional[str] = None
    pid: Optional[int] = None
    task_file: Optional[str] = None


# ── Stored entities ────────────────────────────────────────────────

class Session(BaseModel):
    id: str
    copilot_session_id: Optional[str] = None
    project_dir: str = "unknown"
    task_file: Optional[str] = None
    spawned_at: str = ""
    spawned_by: Optional[str] = None
    status: SessionStatus = "running"
    importance: str = "normal"
    pid: Optional[int] = None
    last_activity: Optional[str] = None
    log_path: Optional[str] = None
    correlation_attempts: int = 0


class ActivityEvent(BaseModel):
    session_id: str
    copilot_event_id: Optional[str] = None
    parent_event_id: Optional[str] = None
    timestamp: Optional[str] = None
    event_type: EventKind
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_arguments: Any = None
    file_path: Optional[str] = None
    operation: Optional[FileOperation] = None
    command: Optional[str] = None
    command_category: Optional[str] = None
    status: Optional[EventStatus] = None
    duration_ms: Optional[int] = None
    source: str = "jsonl"
    raw_data: Optional[dict[str, Any]] = None
