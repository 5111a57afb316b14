"""Data models for the ledger store.

Dataclasses representing sessions, events, tool calls and the derived
summary records, plus the input records accepted by the store.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from context_ledger.models.enums import EventType, SessionStatus
from context_ledger.utils.timeutil import parse_iso


def _load_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        loaded = json.loads(value)
    except (TypeError, ValueError):
        return default
    return loaded if isinstance(loaded, type(default)) else default


def _load_string_list(value: str | None) -> list[str]:
    return [str(item) for item in _load_json(value, []) if isinstance(item, str | int | float)]


# =============================================================================
# Inputs
# =============================================================================


@dataclass
class ToolCallInput:
    """A completed tool invocation to be stored alongside its end event."""

    tool_name: str
    started_at: str
    finished_at: str | None = None
    duration_ms: int | None = None
    success: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RecordEventInput:
    """Everything needed to record one normalized event."""

    session_id: str
    provider: str
    agent: str
    event_type: EventType
    timestamp: str
    repo_path: str | None = None
    branch: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    duration_ms: int | None = None
    # Terminal statuses set ended_at once; ACTIVE/None leave the session as is
    session_status: SessionStatus | None = None
    tool_call: ToolCallInput | None = None


@dataclass
class IntentLabelInput:
    label: str
    confidence: float
    reason: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskBreakdownItem:
    label: str
    minutes: float
    confidence: float


@dataclass
class CapsuleInput:
    """Structured summary content for one session."""

    session_id: str
    summary_markdown: str
    outcomes: list[str] = field(default_factory=list)
    todos: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# =============================================================================
# Stored records
# =============================================================================


@dataclass
class Session:
    """An agent session."""

    id: str
    provider: str
    agent: str
    started_at: str
    repo_path: str | None = None
    branch: str | None = None
    ended_at: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Session":
        """Create from database row."""
        try:
            status = SessionStatus(row["status"])
        except ValueError:
            status = SessionStatus.ACTIVE
        return cls(
            id=row["id"],
            provider=row["provider"],
            agent=row["agent"],
            repo_path=row["repo_path"],
            branch=row["branch"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            status=status,
        )


@dataclass
class Event:
    """A normalized, append-only event."""

    id: str
    session_id: str
    event_type: EventType
    timestamp: str
    duration_ms: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Event":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            event_type=EventType.parse(row["event_type"]),
            timestamp=row["timestamp"],
            duration_ms=row["duration_ms"],
            payload=_load_json(row["payload_json"], {}),
        )


@dataclass
class ToolCall:
    """A stored tool invocation."""

    id: str
    session_id: str
    tool_name: str
    started_at: str
    event_id: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    success: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ToolCall":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            event_id=row["event_id"],
            tool_name=row["tool_name"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            duration_ms=row["duration_ms"],
            success=bool(row["success"]),
            metadata=_load_json(row["metadata_json"], {}),
        )


@dataclass
class IntentLabel:
    id: str
    session_id: str
    label: str
    confidence: float
    source: str
    reason: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "IntentLabel":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            label=row["label"],
            confidence=float(row["confidence"]),
            source=row["source"],
            reason=_load_json(row["reason_json"], {}),
            created_at=row["created_at"],
        )


@dataclass
class Capsule:
    """Stored structured summary for one session."""

    id: str
    session_id: str
    summary_markdown: str
    outcomes: list[str]
    todos: list[str]
    files: list[str]
    commands: list[str]
    errors: list[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Capsule":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            summary_markdown=row["summary_markdown"],
            outcomes=_load_string_list(row["decisions_json"]),
            todos=_load_string_list(row["todos_json"]),
            files=_load_string_list(row["files_json"]),
            commands=_load_string_list(row["commands_json"]),
            errors=_load_string_list(row["errors_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class TaskBreakdown:
    session_id: str
    label: str
    minutes: float
    confidence: float
    source: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TaskBreakdown":
        """Create from database row."""
        return cls(
            session_id=row["session_id"],
            label=row["label"],
            minutes=float(row["minutes"]),
            confidence=float(row["confidence"]),
            source=row["source"],
        )


@dataclass
class ResumePackRecord:
    """A persisted (immutable) resume pack."""

    id: str
    title: str
    source_session_ids: list[str]
    token_budget: int
    markdown: str
    metadata: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ResumePackRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            title=row["title"],
            source_session_ids=_load_string_list(row["source_session_ids_json"]),
            token_budget=int(row["token_budget"]),
            markdown=row["markdown"],
            metadata=_load_json(row["metadata_json"], {}),
            created_at=row["created_at"],
        )


@dataclass
class OpenToolCall:
    """A queued tool invocation start."""

    tool_name: str
    started_at: str


@dataclass
class SessionFreshness:
    """Latest event time versus capsule update time for one session."""

    latest_event_timestamp: str | None
    capsule_updated_at: str | None

    @property
    def is_fresh(self) -> bool:
        """True when a capsule exists and is not older than the newest event."""
        capsule_time = parse_iso(self.capsule_updated_at)
        if capsule_time is None:
            return False
        event_time = parse_iso(self.latest_event_timestamp)
        if event_time is None:
            return True
        return capsule_time >= event_time


@dataclass
class SessionSummarySource:
    """Everything the summarizer needs to know about one session."""

    session: Session
    events: list[Event]
    tool_calls: list[ToolCall]
    prompts: list[str]
    last_event_at: str | None

    @property
    def event_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for event in self.events:
            counts[event.event_type.value] = counts.get(event.event_type.value, 0) + 1
        return counts
