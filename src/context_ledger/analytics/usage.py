"""Usage statistics.

Aggregates the sessions selected by a ``SessionFilter`` into totals and
breakdowns by intent, tool, agent, day, phase and project.

Session time is split into execution (time spent inside tool invocations)
and planning (the rest). Two execution estimates are computed per session:

- replaying ``tool_pre_use``/``tool_post_use`` events with a per-session
  stack of open starts
- summing stored tool-call durations

The larger estimate wins and is capped at the session's duration, so
``0 <= execution <= total`` always holds.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from context_ledger.analytics.sessions import (
    SessionFilter,
    SessionListItem,
    build_session_where,
    list_sessions,
)
from context_ledger.constants import (
    MINUTES_PRECISION,
    RANGE_ALL,
    RANGE_TODAY,
    RATIO_PRECISION,
    UNKNOWN_PROJECT_LABEL,
    UNLABELED_INTENT,
)
from context_ledger.exceptions import ValidationError
from context_ledger.models.enums import EventType
from context_ledger.utils.timeutil import epoch_ms, format_iso

if TYPE_CHECKING:
    import sqlite3

    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)

_RANGE_PATTERN = re.compile(r"^(\d+)([hdw])$")
_RANGE_UNITS = {"h": "hours", "d": "days", "w": "weeks"}


def resolve_range(label: str, now: datetime | None = None) -> str | None:
    """Translate a range label into an inclusive start timestamp.

    Args:
        label: ``all``, ``today`` (since UTC midnight) or ``<N>h``/``<N>d``/``<N>w``.
        now: Reference time (defaults to the current time).

    Returns:
        ISO start timestamp, or None for ``all``.

    Raises:
        ValidationError: If the label cannot be parsed.
    """
    normalized = (label or "").strip().lower()
    now = now or datetime.now(UTC)
    if normalized == RANGE_ALL:
        return None
    if normalized == RANGE_TODAY:
        return format_iso(now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0))

    match = _RANGE_PATTERN.match(normalized)
    if not match or int(match.group(1)) <= 0:
        raise ValidationError(
            f"Invalid range: {label}",
            field="range",
            value=label,
            expected="all, today, <N>h, <N>d or <N>w",
        )
    delta = timedelta(**{_RANGE_UNITS[match.group(2)]: int(match.group(1))})
    return format_iso(now - delta)


# =============================================================================
# Result types
# =============================================================================


@dataclass
class UsageSummary:
    sessions: int = 0
    events: int = 0
    tool_calls: int = 0
    total_minutes: float = 0.0
    planning_minutes: float = 0.0
    execution_minutes: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": self.sessions,
            "events": self.events,
            "toolCalls": self.tool_calls,
            "totalMinutes": self.total_minutes,
            "planningMinutes": self.planning_minutes,
            "executionMinutes": self.execution_minutes,
        }


@dataclass
class UsageStats:
    """Usage statistics for one range and filter."""

    range_label: str
    since: str | None
    summary: UsageSummary
    by_intent: list[dict[str, Any]] = field(default_factory=list)
    by_tool: list[dict[str, Any]] = field(default_factory=list)
    by_agent: list[dict[str, Any]] = field(default_factory=list)
    by_day: list[dict[str, Any]] = field(default_factory=list)
    by_phase: list[dict[str, Any]] = field(default_factory=list)
    by_project: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rangeLabel": self.range_label,
            "since": self.since,
            "summary": self.summary.to_dict(),
            "byIntent": self.by_intent,
            "byTool": self.by_tool,
            "byAgent": self.by_agent,
            "byDay": self.by_day,
            "byPhase": self.by_phase,
            "byProject": self.by_project,
        }


# =============================================================================
# Execution time reconstruction
# =============================================================================


def _scoped_where(session_filter: SessionFilter) -> tuple[str, list[Any]]:
    """WHERE clause restricting events/tool_calls to the filtered sessions."""
    where_sql, params = build_session_where(session_filter)
    if not where_sql:
        return "", params
    return f"WHERE session_id IN (SELECT s.id FROM sessions s {where_sql})", params


def _execution_minutes_by_session(
    conn: sqlite3.Connection, scope_sql: str, params: list[Any]
) -> dict[str, float]:
    phase_types = (EventType.TOOL_PRE_USE.value, EventType.TOOL_POST_USE.value)
    phase_clause = "event_type IN (?, ?)"
    phase_where = f"{scope_sql} AND {phase_clause}" if scope_sql else f"WHERE {phase_clause}"
    cursor = conn.execute(
        f"""
        SELECT session_id, event_type, timestamp
        FROM events
        {phase_where}
        ORDER BY session_id ASC, timestamp ASC, rowid ASC
        """,
        [*params, *phase_types],
    )

    replay_ms: dict[str, float] = defaultdict(float)
    open_starts: dict[str, list[float]] = defaultdict(list)
    for row in cursor.fetchall():
        at_ms = epoch_ms(row["timestamp"])
        if at_ms is None:
            continue
        stack = open_starts[row["session_id"]]
        if row["event_type"] == EventType.TOOL_PRE_USE.value:
            stack.append(at_ms)
            continue
        if not stack:
            continue
        start_ms = stack.pop()
        if at_ms > start_ms:
            replay_ms[row["session_id"]] += at_ms - start_ms

    cursor = conn.execute(
        f"""
        SELECT session_id, SUM(COALESCE(duration_ms, 0)) AS total_ms
        FROM tool_calls
        {scope_sql}
        GROUP BY session_id
        """,
        params,
    )
    execution_ms = dict(replay_ms)
    for row in cursor.fetchall():
        total_ms = float(row["total_ms"] or 0)
        if total_ms > execution_ms.get(row["session_id"], 0.0):
            execution_ms[row["session_id"]] = total_ms

    return {session_id: value / 60000 for session_id, value in execution_ms.items()}


# =============================================================================
# Aggregation
# =============================================================================


def _minutes(value: float) -> float:
    return round(value, MINUTES_PRECISION)


def _group(
    sessions: list[SessionListItem], key: Callable[[SessionListItem], Any]
) -> dict[Any, list[SessionListItem]]:
    groups: dict[Any, list[SessionListItem]] = defaultdict(list)
    for session in sessions:
        groups[key(session)].append(session)
    return groups


def _total_minutes(sessions: list[SessionListItem]) -> float:
    return _minutes(sum(session.duration_minutes for session in sessions))


def _by_intent(sessions: list[SessionListItem]) -> list[dict[str, Any]]:
    rows = []
    for label, members in _group(sessions, lambda s: s.intent_label or UNLABELED_INTENT).items():
        confidences = [s.intent_confidence for s in members if s.intent_confidence is not None]
        rows.append(
            {
                "label": label,
                "sessions": len(members),
                "totalMinutes": _total_minutes(members),
                "avgConfidence": (
                    round(sum(confidences) / len(confidences), RATIO_PRECISION)
                    if confidences
                    else 0
                ),
            }
        )
    return sorted(rows, key=lambda row: -row["totalMinutes"])


def _by_agent(sessions: list[SessionListItem]) -> list[dict[str, Any]]:
    rows = []
    for (agent_key, provider), members in _group(
        sessions, lambda s: (s.agent_key, s.provider)
    ).items():
        rows.append(
            {
                "agentKey": agent_key,
                "agentDisplay": members[0].agent_display,
                "provider": provider,
                "sessions": len(members),
                "totalMinutes": _total_minutes(members),
            }
        )
    return sorted(rows, key=lambda row: -row["totalMinutes"])


def _by_day(sessions: list[SessionListItem]) -> list[dict[str, Any]]:
    return [
        {"day": day, "sessions": len(members), "totalMinutes": _total_minutes(members)}
        for day, members in sorted(_group(sessions, lambda s: s.started_at[:10]).items())
    ]


def _by_project(sessions: list[SessionListItem]) -> list[dict[str, Any]]:
    def project_of(session: SessionListItem) -> str:
        path = (session.repo_path or "").strip()
        return path or UNKNOWN_PROJECT_LABEL

    rows = [
        {"projectPath": path, "sessions": len(members), "totalMinutes": _total_minutes(members)}
        for path, members in _group(sessions, project_of).items()
    ]
    return sorted(
        rows, key=lambda row: (-row["totalMinutes"], -row["sessions"], row["projectPath"])
    )


def _share(part: float, total: float) -> float:
    return round(part / total, RATIO_PRECISION) if total > 0 else 0


def _by_tool(conn: sqlite3.Connection, scope_sql: str, params: list[Any]) -> list[dict[str, Any]]:
    cursor = conn.execute(
        f"""
        SELECT
            tool_name,
            COUNT(*) AS calls,
            SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) AS success_calls,
            SUM(COALESCE(duration_ms, 0)) / 1000.0 AS total_seconds
        FROM tool_calls
        {scope_sql}
        GROUP BY tool_name
        ORDER BY calls DESC, total_seconds DESC, tool_name ASC
        """,
        params,
    )
    return [
        {
            "toolName": row["tool_name"],
            "calls": row["calls"],
            "successCalls": row["success_calls"] or 0,
            "totalSeconds": round(row["total_seconds"] or 0.0, MINUTES_PRECISION),
        }
        for row in cursor.fetchall()
    ]


def get_usage_stats(
    store: LedgerStore,
    range_label: str = RANGE_ALL,
    session_filter: SessionFilter | None = None,
    now: datetime | None = None,
) -> UsageStats:
    """Compute usage statistics for a time range.

    Args:
        store: The LedgerStore instance.
        range_label: Range label understood by ``resolve_range``.
        session_filter: Agent and repository criteria. Its ``since`` and
            ``limit`` are replaced by the range (all sessions in range count).
        now: Reference time for the range.

    Returns:
        UsageStats with rounded minutes (2 decimals) and ratios (3 decimals).

    Raises:
        ValidationError: If the range label is invalid.
    """
    base = session_filter or SessionFilter()
    since = resolve_range(range_label, now)
    session_filter = SessionFilter(
        limit=None, since=since, agents=list(base.agents), repo_path=base.repo_path
    )
    sessions = list_sessions(store, session_filter)

    conn = store._get_readonly_connection()
    scope_sql, params = _scoped_where(session_filter)
    events_count = conn.execute(f"SELECT COUNT(*) FROM events {scope_sql}", params).fetchone()[0]
    tool_calls_count = conn.execute(
        f"SELECT COUNT(*) FROM tool_calls {scope_sql}", params
    ).fetchone()[0]
    execution_by_session = _execution_minutes_by_session(conn, scope_sql, params)

    total = execution = planning = 0.0
    for session in sessions:
        session_minutes = max(0.0, session.duration_minutes)
        session_execution = max(
            0.0, min(session_minutes, execution_by_session.get(session.id, 0.0))
        )
        total += session_minutes
        execution += session_execution
        planning += session_minutes - session_execution

    summary = UsageSummary(
        sessions=len(sessions),
        events=events_count,
        tool_calls=tool_calls_count,
        total_minutes=_minutes(total),
        planning_minutes=_minutes(planning),
        execution_minutes=_minutes(execution),
    )
    logger.debug(
        f"Usage stats for range={range_label}: sessions={summary.sessions} "
        f"events={summary.events} toolCalls={summary.tool_calls}"
    )

    return UsageStats(
        range_label=range_label,
        since=since,
        summary=summary,
        by_intent=_by_intent(sessions),
        by_tool=_by_tool(conn, scope_sql, params),
        by_agent=_by_agent(sessions),
        by_day=_by_day(sessions),
        by_phase=[
            {
                "phase": "planning",
                "totalMinutes": summary.planning_minutes,
                "share": _share(summary.planning_minutes, summary.total_minutes),
            },
            {
                "phase": "execution",
                "totalMinutes": summary.execution_minutes,
                "share": _share(summary.execution_minutes, summary.total_minutes),
            },
        ],
        by_project=_by_project(sessions),
    )
