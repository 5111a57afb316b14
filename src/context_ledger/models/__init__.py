"""Shared value types for context-ledger."""

from context_ledger.models.enums import EventType, Intent, SessionStatus, SyncStatus

__all__ = ["EventType", "Intent", "SessionStatus", "SyncStatus"]
