"""Enum types for context-ledger.

Event types and intent labels are closed sets that still serialize to the
historical string constants stored in existing databases. Parsing an
unrecognized value yields the explicit fallback member instead of failing.
"""

from enum import Enum


class EventType(str, Enum):
    """Normalized event types recorded in the ledger."""

    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SESSION_STOPPED = "session_stopped"
    REQUEST_SENT = "request_sent"
    TOOL_PRE_USE = "tool_pre_use"
    TOOL_POST_USE = "tool_post_use"
    SUBAGENT_STOPPED = "subagent_stopped"
    PRE_COMPACT = "pre_compact"
    NOTIFICATION = "notification"
    OTHER = "other"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all event type values."""
        return [e.value for e in cls]

    @classmethod
    def parse(cls, value: str | None) -> "EventType":
        """Parse a stored value, falling back to OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all status values."""
        return [s.value for s in cls]

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


class Intent(str, Enum):
    """Intent labels attached to sessions by summaries or inference."""

    CODING = "coding"
    INCIDENT = "incident"
    DEPLOY = "deploy"
    SQL = "sql"
    DOCS = "docs"
    OTHER = "other"
    IN_PROGRESS = "in_progress"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all intent values."""
        return [i.value for i in cls]

    @classmethod
    def summary_values(cls) -> list[str]:
        """Intents a summarizer may assign (in_progress is inference-only)."""
        return [i.value for i in cls if i is not cls.IN_PROGRESS]

    @classmethod
    def parse(cls, value: str | None) -> "Intent":
        """Parse a label, falling back to OTHER."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.OTHER


class SyncStatus(str, Enum):
    """Outcome of a source adapter sync."""

    OK = "ok"
    SKIPPED = "skipped"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all sync status values."""
        return [s.value for s in cls]
