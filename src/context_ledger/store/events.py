"""Event and session operations for the ledger store.

Functions for recording normalized events (with session upsert and optional
tool-call row) and for reading sessions, events and tool calls back.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import TYPE_CHECKING

from context_ledger.constants import LATEST_SESSION_REF
from context_ledger.models.enums import EventType, SessionStatus
from context_ledger.store.models import (
    Event,
    RecordEventInput,
    Session,
    SessionFreshness,
    SessionSummarySource,
    ToolCall,
)

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def record_event(store: LedgerStore, event: RecordEventInput) -> str:
    """Record one event in a single transaction.

    Creates the session on first reference. An existing session only gains
    repo_path/branch values it does not already have. A terminal status sets
    status and ended_at once; later terminal signals are ignored.

    Args:
        store: The LedgerStore instance.
        event: Normalized event input.

    Returns:
        The new event id.
    """
    event_id = str(uuid.uuid4())
    repo_path = _clean_optional(event.repo_path)
    branch = _clean_optional(event.branch)

    with store._transaction() as conn:
        conn.execute(
            """
            INSERT INTO sessions (id, provider, agent, repo_path, branch, started_at, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                repo_path = COALESCE(sessions.repo_path, excluded.repo_path),
                branch = COALESCE(sessions.branch, excluded.branch),
                updated_at = datetime('now')
            """,
            (
                event.session_id,
                event.provider,
                event.agent,
                repo_path,
                branch,
                event.timestamp,
                SessionStatus.ACTIVE.value,
            ),
        )
        conn.execute(
            """
            INSERT INTO events (id, session_id, event_type, timestamp, duration_ms, payload_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                event.session_id,
                event.event_type.value,
                event.timestamp,
                event.duration_ms,
                json.dumps(event.payload, default=str),
            ),
        )

        if event.tool_call is not None:
            call = event.tool_call
            conn.execute(
                """
                INSERT INTO tool_calls (
                    id, session_id, event_id, tool_name, started_at,
                    finished_at, duration_ms, success, metadata_json
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    event.session_id,
                    event_id,
                    call.tool_name,
                    call.started_at,
                    call.finished_at,
                    call.duration_ms,
                    1 if call.success else 0,
                    json.dumps(call.metadata, default=str),
                ),
            )

        if event.session_status is not None and event.session_status.is_terminal:
            conn.execute(
                """
                UPDATE sessions
                SET status = ?, ended_at = ?, updated_at = datetime('now')
                WHERE id = ? AND ended_at IS NULL
                """,
                (event.session_status.value, event.timestamp, event.session_id),
            )

    logger.debug(f"Recorded {event.event_type.value} for session {event.session_id}")
    return event_id


def get_session(store: LedgerStore, session_id: str) -> Session | None:
    conn = store._get_readonly_connection()
    row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    return Session.from_row(row) if row else None


def resolve_session_ref(store: LedgerStore, session_ref: str) -> str | None:
    """Resolve ``latest`` or an exact session id to a stored session id."""
    conn = store._get_readonly_connection()
    if session_ref == LATEST_SESSION_REF:
        row = conn.execute(
            "SELECT id FROM sessions ORDER BY started_at DESC, rowid DESC LIMIT 1"
        ).fetchone()
    else:
        row = conn.execute("SELECT id FROM sessions WHERE id = ?", (session_ref,)).fetchone()
    return row["id"] if row else None


def list_events(store: LedgerStore, session_id: str) -> list[Event]:
    """All events of a session in timestamp order (insertion order on ties)."""
    conn = store._get_readonly_connection()
    rows = conn.execute(
        "SELECT * FROM events WHERE session_id = ? ORDER BY timestamp ASC, rowid ASC",
        (session_id,),
    ).fetchall()
    return [Event.from_row(row) for row in rows]


def list_tool_calls(store: LedgerStore, session_id: str) -> list[ToolCall]:
    conn = store._get_readonly_connection()
    rows = conn.execute(
        "SELECT * FROM tool_calls WHERE session_id = ? ORDER BY started_at ASC, rowid ASC",
        (session_id,),
    ).fetchall()
    return [ToolCall.from_row(row) for row in rows]


def get_freshness(store: LedgerStore, session_id: str) -> SessionFreshness:
    """Latest event timestamp and capsule update time for a session."""
    conn = store._get_readonly_connection()
    row = conn.execute(
        """
        SELECT
            (SELECT MAX(timestamp) FROM events WHERE session_id = ?) AS latest_event_timestamp,
            (SELECT updated_at FROM capsules WHERE session_id = ?) AS capsule_updated_at
        """,
        (session_id, session_id),
    ).fetchone()
    return SessionFreshness(
        latest_event_timestamp=row["latest_event_timestamp"],
        capsule_updated_at=row["capsule_updated_at"],
    )


def load_summary_source(store: LedgerStore, session_ref: str) -> SessionSummarySource | None:
    """Gather a session with its events, tool calls and captured prompts."""
    session_id = resolve_session_ref(store, session_ref)
    if session_id is None:
        return None
    session = get_session(store, session_id)
    if session is None:
        return None

    events = list_events(store, session_id)
    prompts = [
        event.payload["prompt"]
        for event in events
        if event.event_type is EventType.REQUEST_SENT
        and isinstance(event.payload.get("prompt"), str)
        and event.payload["prompt"].strip()
    ]
    return SessionSummarySource(
        session=session,
        events=events,
        tool_calls=list_tool_calls(store, session_id),
        prompts=prompts,
        last_event_at=max((event.timestamp for event in events), default=None),
    )


def count_rows(store: LedgerStore) -> dict[str, int]:
    """Row counts per table, for diagnostics."""
    conn = store._get_readonly_connection()
    counts: dict[str, int] = {}
    for table in (
        "sessions",
        "events",
        "tool_calls",
        "intent_labels",
        "capsules",
        "task_breakdowns",
        "resume_packs",
        "tool_call_queue",
    ):
        try:
            counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        except sqlite3.OperationalError:
            counts[table] = 0
    return counts
