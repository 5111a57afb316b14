"""Open tool-call queue shared by concurrent hook processes.

Each row is an invocation start waiting for its end, keyed by
(scope, correlation_key). Pops take the oldest row for the key inside one
transaction, so two hook processes never consume the same start.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from context_ledger.store.models import OpenToolCall

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore


def push_open_tool_call(
    store: LedgerStore, scope: str, correlation_key: str, tool_name: str, started_at: str
) -> None:
    with store._transaction() as conn:
        conn.execute(
            """
            INSERT INTO tool_call_queue (scope, correlation_key, tool_name, started_at)
            VALUES (?, ?, ?, ?)
            """,
            (scope, correlation_key, tool_name, started_at),
        )


def pop_open_tool_call(
    store: LedgerStore, scope: str, correlation_key: str
) -> OpenToolCall | None:
    """Remove and return the oldest queued start for the key, if any."""
    with store._transaction() as conn:
        # BEGIN IMMEDIATE takes the write lock before the read
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute(
            """
            SELECT id, tool_name, started_at FROM tool_call_queue
            WHERE scope = ? AND correlation_key = ?
            ORDER BY id ASC LIMIT 1
            """,
            (scope, correlation_key),
        ).fetchone()
        if row is None:
            return None
        conn.execute("DELETE FROM tool_call_queue WHERE id = ?", (row["id"],))
    return OpenToolCall(tool_name=row["tool_name"], started_at=row["started_at"])


def clear_scope(store: LedgerStore, scope: str) -> int:
    """Drop every queued start of a scope; returns the number removed."""
    with store._transaction() as conn:
        cursor = conn.execute("DELETE FROM tool_call_queue WHERE scope = ?", (scope,))
    return cursor.rowcount
