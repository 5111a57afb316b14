"""Capsule, intent label and task breakdown operations.

Labels and breakdowns are replaced as a whole set per (session, source) in a
single transaction, so readers never see a half-written set.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING

from context_ledger.store.models import (
    Capsule,
    CapsuleInput,
    IntentLabel,
    IntentLabelInput,
    TaskBreakdown,
    TaskBreakdownItem,
)
from context_ledger.utils.timeutil import utc_now_iso

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def save_capsule(store: LedgerStore, capsule: CapsuleInput, updated_at: str | None = None) -> str:
    """Insert or replace the capsule of a session.

    Returns:
        The capsule id (stable across updates).
    """
    now = updated_at or utc_now_iso()
    capsule_id = str(uuid.uuid4())
    with store._transaction() as conn:
        conn.execute(
            """
            INSERT INTO capsules (
                id, session_id, summary_markdown, decisions_json, todos_json,
                files_json, commands_json, errors_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                summary_markdown = excluded.summary_markdown,
                decisions_json = excluded.decisions_json,
                todos_json = excluded.todos_json,
                files_json = excluded.files_json,
                commands_json = excluded.commands_json,
                errors_json = excluded.errors_json,
                updated_at = excluded.updated_at
            """,
            (
                capsule_id,
                capsule.session_id,
                capsule.summary_markdown,
                json.dumps(capsule.outcomes),
                json.dumps(capsule.todos),
                json.dumps(capsule.files),
                json.dumps(capsule.commands),
                json.dumps(capsule.errors),
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT id FROM capsules WHERE session_id = ?", (capsule.session_id,)
        ).fetchone()
    return str(row["id"])


def get_capsule(store: LedgerStore, session_id: str) -> Capsule | None:
    conn = store._get_readonly_connection()
    row = conn.execute("SELECT * FROM capsules WHERE session_id = ?", (session_id,)).fetchone()
    return Capsule.from_row(row) if row else None


def replace_intent_labels(
    store: LedgerStore,
    session_id: str,
    source: str,
    labels: list[IntentLabelInput],
) -> None:
    """Replace every label of ``source`` for a session with ``labels``."""
    now = utc_now_iso()
    with store._transaction() as conn:
        conn.execute(
            "DELETE FROM intent_labels WHERE session_id = ? AND source = ?",
            (session_id, source),
        )
        conn.executemany(
            """
            INSERT INTO intent_labels (id, session_id, label, confidence, source, reason_json,
                                       created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    str(uuid.uuid4()),
                    session_id,
                    item.label,
                    _clamp_unit(item.confidence),
                    source,
                    json.dumps(item.reason, default=str),
                    now,
                )
                for item in labels
            ],
        )


def get_intent_labels(store: LedgerStore, session_id: str) -> list[IntentLabel]:
    """Labels of a session, newest first."""
    conn = store._get_readonly_connection()
    rows = conn.execute(
        "SELECT * FROM intent_labels WHERE session_id = ? ORDER BY created_at DESC, rowid DESC",
        (session_id,),
    ).fetchall()
    return [IntentLabel.from_row(row) for row in rows]


def replace_task_breakdown(
    store: LedgerStore,
    session_id: str,
    source: str,
    items: list[TaskBreakdownItem],
) -> None:
    """Replace every breakdown row of ``source`` for a session with ``items``."""
    now = utc_now_iso()
    with store._transaction() as conn:
        conn.execute(
            "DELETE FROM task_breakdowns WHERE session_id = ? AND source = ?",
            (session_id, source),
        )
        conn.executemany(
            """
            INSERT INTO task_breakdowns (id, session_id, label, minutes, confidence, source,
                                         created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    str(uuid.uuid4()),
                    session_id,
                    item.label,
                    max(0.0, float(item.minutes)),
                    _clamp_unit(item.confidence),
                    source,
                    now,
                )
                for item in items
            ],
        )


def get_task_breakdown(store: LedgerStore, session_id: str) -> list[TaskBreakdown]:
    conn = store._get_readonly_connection()
    rows = conn.execute(
        "SELECT * FROM task_breakdowns WHERE session_id = ? ORDER BY minutes DESC, label ASC",
        (session_id,),
    ).fetchall()
    return [TaskBreakdown.from_row(row) for row in rows]
