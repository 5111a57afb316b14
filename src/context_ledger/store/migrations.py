"""Database migration functions for the ledger store.

Databases written by the earlier ledger tool have no ``schema_version``
table; ``detect_legacy_version`` reports them as v1 so they are upgraded in
place instead of being re-created.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)


def detect_legacy_version(conn: sqlite3.Connection) -> int:
    """Return 1 when the v1 tables exist without version tracking, else 0."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sessions'"
    ).fetchone()
    return 1 if row else 0


def apply_migrations(conn: sqlite3.Connection, from_version: int) -> None:
    """Apply schema migrations from current version to latest.

    Args:
        conn: Database connection (within transaction).
        from_version: Current schema version.
    """
    conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
    if from_version < 2:
        _migrate_v1_to_v2(conn)
    if from_version < 3:
        _migrate_v2_to_v3(conn)


def _migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """Migrate schema from v1 to v2: add task_breakdowns.

    Idempotent: uses IF NOT EXISTS throughout.
    """
    logger.info("Migrating ledger schema v1 -> v2 (task breakdowns)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS task_breakdowns (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            label TEXT NOT NULL,
            minutes REAL NOT NULL CHECK (minutes >= 0),
            confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
            source TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_task_breakdowns_session ON task_breakdowns(session_id)"
    )


def _migrate_v2_to_v3(conn: sqlite3.Connection) -> None:
    """Migrate schema from v2 to v3: add tool_call_queue."""
    logger.info("Migrating ledger schema v2 -> v3 (tool call queue)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tool_call_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            scope TEXT NOT NULL,
            correlation_key TEXT NOT NULL,
            tool_name TEXT NOT NULL,
            started_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_tool_call_queue_scope_key "
        "ON tool_call_queue(scope, correlation_key, id)"
    )
