"""Session listing for analytics.

Reads sessions through the store's read-only connection and decorates them
with normalized agent keys, reconstructed durations and an intent label
(latest explicit label, else one inferred from recorded activity).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from context_ledger.constants import (
    AGENT_ALIASES,
    AGENT_DISPLAY_NAMES,
    DEFAULT_SESSION_LIST_LIMIT,
    INFERRED_CODING_CONFIDENCE,
    INFERRED_IN_PROGRESS_CONFIDENCE,
    INFERRED_SQL_CONFIDENCE,
    MINUTES_PRECISION,
    SQL_INTENT_KEYWORDS,
)
from context_ledger.models.enums import Intent, SessionStatus
from context_ledger.utils.timeutil import minutes_between

if TYPE_CHECKING:
    import sqlite3

    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class SessionFilter:
    """Selection criteria shared by session listing and usage stats."""

    limit: int | None = DEFAULT_SESSION_LIST_LIMIT
    since: str | None = None
    agents: list[str] = field(default_factory=list)
    repo_path: str | None = None


@dataclass
class SessionListItem:
    """A session as presented to reporting consumers."""

    id: str
    provider: str
    agent: str
    agent_key: str
    agent_display: str
    started_at: str
    status: str
    duration_minutes: float
    repo_path: str | None = None
    branch: str | None = None
    ended_at: str | None = None
    intent_label: str | None = None
    intent_confidence: float | None = None
    has_capsule: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "agent": self.agent,
            "agentKey": self.agent_key,
            "agentDisplay": self.agent_display,
            "repoPath": self.repo_path,
            "branch": self.branch,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "status": self.status,
            "durationMinutes": round(self.duration_minutes, MINUTES_PRECISION),
            "intentLabel": self.intent_label,
            "intentConfidence": self.intent_confidence,
            "hasCapsule": self.has_capsule,
        }


# =============================================================================
# Agent normalization
# =============================================================================


def normalize_agent_key(agent: str | None) -> str:
    """Map a raw agent name onto its normalized key (``claude-code`` -> ``claude``)."""
    lowered = (agent or "").strip().lower()
    for key, aliases in AGENT_ALIASES.items():
        if lowered in aliases:
            return key
    return lowered


def agent_display_name(agent: str | None) -> str:
    key = normalize_agent_key(agent)
    return AGENT_DISPLAY_NAMES.get(key, agent or key)


def expand_agent_filter(values: list[str] | None) -> list[str]:
    """Expand user-supplied agent names (comma lists allowed) to raw stored names."""
    raw_names: list[str] = []
    for value in values or []:
        for part in value.split(","):
            key = normalize_agent_key(part)
            if not key:
                continue
            for name in AGENT_ALIASES.get(key, (key,)):
                if name not in raw_names:
                    raw_names.append(name)
    return raw_names


# =============================================================================
# Queries
# =============================================================================

_SQL_KEYWORD_CLAUSE = " OR ".join(
    f"LOWER(e.payload_json) LIKE '%{keyword}%'" for keyword in SQL_INTENT_KEYWORDS
)

_SESSION_SELECT = f"""
    SELECT
        s.id, s.provider, s.agent, s.repo_path, s.branch,
        s.started_at, s.ended_at, s.status,
        (SELECT MAX(e.timestamp) FROM events e WHERE e.session_id = s.id) AS last_event_at,
        (SELECT il.label FROM intent_labels il WHERE il.session_id = s.id
            ORDER BY il.created_at DESC, il.rowid DESC LIMIT 1) AS label,
        (SELECT il.confidence FROM intent_labels il WHERE il.session_id = s.id
            ORDER BY il.created_at DESC, il.rowid DESC LIMIT 1) AS label_confidence,
        EXISTS(
            SELECT 1 FROM events e
            WHERE e.session_id = s.id
              AND e.event_type = 'request_sent'
              AND ({_SQL_KEYWORD_CLAUSE})
        ) AS mentions_sql,
        EXISTS(SELECT 1 FROM tool_calls tc WHERE tc.session_id = s.id) AS has_tool_calls,
        EXISTS(SELECT 1 FROM capsules c WHERE c.session_id = s.id) AS has_capsule
    FROM sessions s
"""


def build_session_where(session_filter: SessionFilter) -> tuple[str, list[Any]]:
    """Build the WHERE clause (over alias ``s``) for a session filter."""
    clauses: list[str] = []
    params: list[Any] = []
    if session_filter.since:
        clauses.append("s.started_at >= ?")
        params.append(session_filter.since)
    agents = expand_agent_filter(session_filter.agents)
    if agents:
        placeholders = ",".join("?" for _ in agents)
        clauses.append(f"LOWER(s.agent) IN ({placeholders})")
        params.extend(agents)
    if session_filter.repo_path:
        clauses.append("s.repo_path = ?")
        params.append(session_filter.repo_path)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def _infer_intent(row: sqlite3.Row) -> tuple[str | None, float | None]:
    if row["mentions_sql"]:
        return Intent.SQL.value, INFERRED_SQL_CONFIDENCE
    if row["has_tool_calls"]:
        return Intent.CODING.value, INFERRED_CODING_CONFIDENCE
    if row["status"] == SessionStatus.ACTIVE.value:
        return Intent.IN_PROGRESS.value, INFERRED_IN_PROGRESS_CONFIDENCE
    return None, None


def session_item_from_row(row: sqlite3.Row) -> SessionListItem:
    """Build a list item from a ``_SESSION_SELECT`` row."""
    # Duration runs to ended_at, else the last event, else zero
    end = row["ended_at"] or row["last_event_at"] or row["started_at"]
    if row["label"] is not None:
        intent_label, intent_confidence = row["label"], float(row["label_confidence"])
    else:
        intent_label, intent_confidence = _infer_intent(row)
    return SessionListItem(
        id=row["id"],
        provider=row["provider"],
        agent=row["agent"],
        agent_key=normalize_agent_key(row["agent"]),
        agent_display=agent_display_name(row["agent"]),
        repo_path=row["repo_path"],
        branch=row["branch"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        status=row["status"],
        duration_minutes=minutes_between(row["started_at"], end),
        intent_label=intent_label,
        intent_confidence=intent_confidence,
        has_capsule=bool(row["has_capsule"]),
    )


def list_sessions(
    store: LedgerStore, session_filter: SessionFilter | None = None
) -> list[SessionListItem]:
    """List sessions, newest first.

    Args:
        store: The LedgerStore instance.
        session_filter: Start time, agent and repository criteria. A ``limit``
            of None returns every matching session.

    Returns:
        Session list items ordered by start time, descending.
    """
    session_filter = session_filter or SessionFilter()
    where_sql, params = build_session_where(session_filter)
    query = f"{_SESSION_SELECT} {where_sql} ORDER BY s.started_at DESC, s.rowid DESC"
    if session_filter.limit is not None:
        query += " LIMIT ?"
        params.append(max(0, session_filter.limit))

    conn = store._get_readonly_connection()
    cursor = conn.execute(query, params)
    return [session_item_from_row(row) for row in cursor.fetchall()]


def get_session_item(store: LedgerStore, session_id: str) -> SessionListItem | None:
    """Load one session as a list item, or None when it does not exist."""
    conn = store._get_readonly_connection()
    cursor = conn.execute(f"{_SESSION_SELECT} WHERE s.id = ?", (session_id,))
    row = cursor.fetchone()
    return session_item_from_row(row) if row else None
