"""Resume pack persistence. Packs are immutable once stored."""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from context_ledger.store.models import ResumePackRecord
from context_ledger.utils.timeutil import utc_now_iso

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore


def save_resume_pack(
    store: LedgerStore,
    title: str,
    source_session_ids: list[str],
    token_budget: int,
    markdown: str,
    metadata: dict[str, Any] | None = None,
) -> ResumePackRecord:
    """Persist a rendered pack and return the stored record."""
    record = ResumePackRecord(
        id=str(uuid.uuid4()),
        title=title,
        source_session_ids=list(source_session_ids),
        token_budget=token_budget,
        markdown=markdown,
        metadata=metadata or {},
        created_at=utc_now_iso(),
    )
    with store._transaction() as conn:
        conn.execute(
            """
            INSERT INTO resume_packs (id, title, source_session_ids_json, token_budget, markdown,
                                      metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.title,
                json.dumps(record.source_session_ids),
                record.token_budget,
                record.markdown,
                json.dumps(record.metadata, default=str),
                record.created_at,
            ),
        )
    return record


def get_resume_pack(store: LedgerStore, pack_id: str) -> ResumePackRecord | None:
    conn = store._get_readonly_connection()
    row = conn.execute("SELECT * FROM resume_packs WHERE id = ?", (pack_id,)).fetchone()
    return ResumePackRecord.from_row(row) if row else None


def list_resume_packs(store: LedgerStore, limit: int = 20) -> list[ResumePackRecord]:
    """Most recent packs first."""
    conn = store._get_readonly_connection()
    rows = conn.execute(
        "SELECT * FROM resume_packs ORDER BY created_at DESC, rowid DESC LIMIT ?",
        (max(1, limit),),
    ).fetchall()
    return [ResumePackRecord.from_row(row) for row in rows]
