"""Canonical SQLite store for sessions, events and derived summaries.

Split into operation modules (events, summaries, packs, queue) that the
LedgerStore class delegates to.
"""

from context_ledger.store.core import LedgerStore
from context_ledger.store.models import (
    Capsule,
    CapsuleInput,
    Event,
    IntentLabel,
    IntentLabelInput,
    OpenToolCall,
    RecordEventInput,
    ResumePackRecord,
    Session,
    SessionFreshness,
    SessionSummarySource,
    TaskBreakdown,
    TaskBreakdownItem,
    ToolCall,
    ToolCallInput,
)

__all__ = [
    "Capsule",
    "CapsuleInput",
    "Event",
    "IntentLabel",
    "IntentLabelInput",
    "LedgerStore",
    "OpenToolCall",
    "RecordEventInput",
    "ResumePackRecord",
    "Session",
    "SessionFreshness",
    "SessionSummarySource",
    "TaskBreakdown",
    "TaskBreakdownItem",
    "ToolCall",
    "ToolCallInput",
]
