"""Gemini source adapter.

Gemini keeps a flat prompt log (``~/.gemini/history.jsonl``) whose field
names vary between versions, so each field is looked up through an ordered
list of candidate keys. Every usable line becomes a ``request_sent`` event.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from context_ledger.config import (
    GeminiIntegrationConfig,
    expand_path,
    load_config,
    save_config,
)
from context_ledger.constants import (
    AGENT_GEMINI,
    PROVIDER_GOOGLE,
    SESSION_ID_KEYS,
    SESSION_PREFIX_GEMINI,
    SOURCE_GEMINI_HISTORY,
    TIMESTAMP_KEYS,
)
from context_ledger.ingest.common import (
    SyncResult,
    build_prompt_payload,
    extract_optional_string,
    extract_prompt_text,
    extract_repo_path,
    parse_json_object,
    prefixed_session_id,
)
from context_ledger.ingest.reader import read_incremental_lines
from context_ledger.models.enums import EventType
from context_ledger.store.models import RecordEventInput
from context_ledger.utils.timeutil import normalize_timestamp

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)

MISSING_HISTORY_REASON = "History file does not exist"


def _first_timestamp(entry: dict[str, Any]) -> str | None:
    for key in TIMESTAMP_KEYS:
        timestamp = normalize_timestamp(entry.get(key))
        if timestamp is not None:
            return timestamp
    return None


def enable_gemini(data_dir: Path, history_path: str | None = None) -> GeminiIntegrationConfig:
    """Enable the Gemini integration, keeping the existing cursor."""
    config = load_config(data_dir)
    integration = config.integrations.gemini or GeminiIntegrationConfig()
    integration.enabled = True
    if history_path and history_path.strip():
        integration.history_path = history_path.strip()
    config.integrations.gemini = integration
    save_config(config, data_dir)
    return integration


def sync_gemini(
    store: LedgerStore,
    data_dir: Path,
    history_path: str | None = None,
) -> SyncResult:
    """Ingest new Gemini prompt-log lines.

    Lines missing a session id, prompt text or usable timestamp are counted
    as skipped; the cursor still advances past them.
    """
    config = load_config(data_dir)
    integration = config.integrations.gemini or GeminiIntegrationConfig()
    if history_path:
        integration.history_path = history_path
    resolved = expand_path(integration.history_path)

    if not resolved.is_file():
        result = SyncResult.skipped_source(SOURCE_GEMINI_HISTORY, MISSING_HISTORY_REASON, resolved)
        result.cursor = integration.cursor
        return result

    result = SyncResult(source=SOURCE_GEMINI_HISTORY, paths=[str(resolved)])
    read = read_incremental_lines(resolved, integration.cursor)
    for line in read.lines:
        if not line.strip():
            continue
        entry = parse_json_object(line)
        if entry is None:
            result.skipped += 1
            continue

        raw_session_id = extract_optional_string(entry, SESSION_ID_KEYS)
        prompt = extract_prompt_text(entry)
        timestamp = _first_timestamp(entry)
        if raw_session_id is None or prompt is None or timestamp is None:
            result.skipped += 1
            continue

        session_id = prefixed_session_id(SESSION_PREFIX_GEMINI, raw_session_id)
        store.record_event(
            RecordEventInput(
                session_id=session_id,
                provider=PROVIDER_GOOGLE,
                agent=AGENT_GEMINI,
                event_type=EventType.REQUEST_SENT,
                timestamp=timestamp,
                repo_path=extract_repo_path(entry),
                payload=build_prompt_payload(prompt, SOURCE_GEMINI_HISTORY, config.privacy),
            )
        )
        result.inserted += 1
        result.touch(session_id)

    for session_id in result.touched_session_ids:
        result.mark_for_summary(session_id)

    integration.enabled = True
    integration.cursor = read.next_cursor
    config.integrations.gemini = integration
    save_config(config, data_dir)
    result.cursor = read.next_cursor
    logger.info(f"Gemini sync: inserted={result.inserted} skipped={result.skipped}")
    return result
