"""Analytics over the ledger: session listing, usage stats and resume contexts."""

from context_ledger.analytics.context import (
    ResumeSessionContext,
    load_resume_contexts,
    select_recent_session_ids,
)
from context_ledger.analytics.sessions import (
    SessionFilter,
    SessionListItem,
    agent_display_name,
    get_session_item,
    list_sessions,
    normalize_agent_key,
)
from context_ledger.analytics.usage import UsageStats, UsageSummary, get_usage_stats, resolve_range

__all__ = [
    "ResumeSessionContext",
    "SessionFilter",
    "SessionListItem",
    "UsageStats",
    "UsageSummary",
    "agent_display_name",
    "get_session_item",
    "get_usage_stats",
    "list_sessions",
    "load_resume_contexts",
    "normalize_agent_key",
    "resolve_range",
    "select_recent_session_ids",
]
