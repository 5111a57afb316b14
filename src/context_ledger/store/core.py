"""Core LedgerStore class.

Contains the LedgerStore class with connection management and delegation to
operation modules.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

from context_ledger.constants import DEFAULT_BUSY_TIMEOUT_SECONDS
from context_ledger.store import events, packs, queue, summaries
from context_ledger.store.migrations import apply_migrations, detect_legacy_version
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
)
from context_ledger.store.schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)


class LedgerStore:
    """SQLite-backed canonical store.

    Opened per command and closed on exit. WAL journaling lets readers run
    alongside a writer; concurrent writers (sync commands, hook processes)
    wait up to ``busy_timeout`` seconds for the write lock.
    """

    def __init__(self, db_path: Path, busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS):
        """Initialize the store, creating or migrating the schema.

        Args:
            db_path: Path to SQLite database file.
            busy_timeout: Seconds to wait for a locked database.
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._ensure_schema()

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=self.busy_timeout,
            )
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        conn: sqlite3.Connection = self._local.conn
        return conn

    def _get_readonly_connection(self) -> sqlite3.Connection:
        """Get thread-local read-only database connection.

        Separate from the read-write connection so analytics and summaries
        can never mutate the ledger.
        """
        if not hasattr(self._local, "ro_conn") or self._local.ro_conn is None:
            self._local.ro_conn = sqlite3.connect(
                f"file:{self.db_path}?mode=ro",
                uri=True,
                check_same_thread=False,
                timeout=self.busy_timeout,
            )
            self._local.ro_conn.row_factory = sqlite3.Row
            self._local.ro_conn.execute("PRAGMA query_only = ON")
        conn: sqlite3.Connection = self._local.ro_conn
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database transaction error: {e}", exc_info=True)
            raise
        except BaseException:
            conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        """Create database schema if needed, applying migrations for existing databases."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._transaction() as conn:
            try:
                row = conn.execute(
                    "SELECT MAX(version) FROM schema_version WHERE version <= ?",
                    (SCHEMA_VERSION,),
                ).fetchone()
                current_version = row[0] if row and row[0] is not None else 0
            except sqlite3.OperationalError:
                current_version = detect_legacy_version(conn)

            if current_version < SCHEMA_VERSION:
                if current_version == 0:
                    conn.executescript(SCHEMA_SQL)
                else:
                    apply_migrations(conn, current_version)

                conn.execute("DELETE FROM schema_version")
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                logger.info(f"Ledger schema initialized (v{SCHEMA_VERSION})")

    def get_schema_version(self) -> int:
        """Get current database schema version (0 when untracked)."""
        try:
            row = (
                self._get_connection()
                .execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
                .fetchone()
            )
            return row[0] if row else 0
        except sqlite3.OperationalError:
            return 0

    def close(self) -> None:
        """Close this thread's connections."""
        for attr in ("conn", "ro_conn"):
            conn = getattr(self._local, attr, None)
            if conn is not None:
                conn.close()
                setattr(self._local, attr, None)

    # ==========================================================================
    # Events and sessions - delegate to events module
    # ==========================================================================

    def record_event(self, event: RecordEventInput) -> str:
        """Record an event (session upsert, event, optional tool call)."""
        return events.record_event(self, event)

    def get_session(self, session_id: str) -> Session | None:
        return events.get_session(self, session_id)

    def resolve_session_ref(self, session_ref: str) -> str | None:
        return events.resolve_session_ref(self, session_ref)

    def list_events(self, session_id: str) -> list[Event]:
        return events.list_events(self, session_id)

    def list_tool_calls(self, session_id: str) -> list[ToolCall]:
        return events.list_tool_calls(self, session_id)

    def freshness(self, session_id: str) -> SessionFreshness:
        """Latest event timestamp and capsule update time for a session."""
        return events.get_freshness(self, session_id)

    def load_summary_source(self, session_ref: str) -> SessionSummarySource | None:
        return events.load_summary_source(self, session_ref)

    def inspect(self) -> dict[str, Any]:
        """Schema version, database path and row counts."""
        return {
            "dbPath": str(self.db_path),
            "schemaVersion": self.get_schema_version(),
            "counts": events.count_rows(self),
        }

    # ==========================================================================
    # Capsules, labels, breakdowns - delegate to summaries module
    # ==========================================================================

    def save_capsule(self, capsule: CapsuleInput) -> str:
        return summaries.save_capsule(self, capsule)

    def get_capsule(self, session_id: str) -> Capsule | None:
        return summaries.get_capsule(self, session_id)

    def replace_intent_labels(
        self, session_id: str, source: str, labels: list[IntentLabelInput]
    ) -> None:
        summaries.replace_intent_labels(self, session_id, source, labels)

    def get_intent_labels(self, session_id: str) -> list[IntentLabel]:
        return summaries.get_intent_labels(self, session_id)

    def replace_task_breakdown(
        self, session_id: str, source: str, items: list[TaskBreakdownItem]
    ) -> None:
        summaries.replace_task_breakdown(self, session_id, source, items)

    def get_task_breakdown(self, session_id: str) -> list[TaskBreakdown]:
        return summaries.get_task_breakdown(self, session_id)

    # ==========================================================================
    # Resume packs - delegate to packs module
    # ==========================================================================

    def save_resume_pack(
        self,
        title: str,
        source_session_ids: list[str],
        token_budget: int,
        markdown: str,
        metadata: dict[str, Any] | None = None,
    ) -> ResumePackRecord:
        return packs.save_resume_pack(
            self, title, source_session_ids, token_budget, markdown, metadata
        )

    def get_resume_pack(self, pack_id: str) -> ResumePackRecord | None:
        return packs.get_resume_pack(self, pack_id)

    def list_resume_packs(self, limit: int = 20) -> list[ResumePackRecord]:
        return packs.list_resume_packs(self, limit)

    # ==========================================================================
    # Open tool-call queue - delegate to queue module
    # ==========================================================================

    def push_open_tool_call(
        self, scope: str, correlation_key: str, tool_name: str, started_at: str
    ) -> None:
        queue.push_open_tool_call(self, scope, correlation_key, tool_name, started_at)

    def pop_open_tool_call(self, scope: str, correlation_key: str) -> OpenToolCall | None:
        return queue.pop_open_tool_call(self, scope, correlation_key)

    def clear_tool_call_scope(self, scope: str) -> int:
        return queue.clear_scope(self, scope)
