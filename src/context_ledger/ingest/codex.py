"""Codex source adapter.

Codex writes one structured rollout file per session under
``~/.codex/sessions/**/rollout-*.jsonl`` and a flat prompt log at
``~/.codex/history.jsonl``. Rollout files are preferred; the flat log is
only read when no rollout file exists.

Rollout record types handled:

- ``session_meta``: session id, cwd, git branch -> ``session_started``
- ``turn_context``: updates the best-known cwd
- ``event_msg`` ``user_message`` -> ``request_sent``;
  ``task_complete`` -> ``session_stopped`` (session queued for summary)
- ``response_item`` ``function_call`` / ``custom_tool_call`` ->
  ``tool_pre_use``; ``function_call_output`` / ``custom_tool_call_output``
  -> ``tool_post_use`` plus a tool call row
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from context_ledger.config import (
    CodexIntegrationConfig,
    PrivacyConfig,
    SessionFileState,
    expand_path,
    load_config,
    save_config,
)
from context_ledger.constants import (
    AGENT_CODEX,
    BRANCH_KEYS,
    CODEX_ROLLOUT_GLOB,
    PROVIDER_OPENAI,
    SESSION_PREFIX_CODEX,
    SOURCE_CODEX_HISTORY,
    SOURCE_CODEX_SESSIONS,
    UNKNOWN_TOOL_NAME,
)
from context_ledger.ingest.common import (
    SyncResult,
    as_dict,
    build_prompt_payload,
    extract_optional_string,
    extract_repo_path,
    iter_jsonl_files,
    parse_json_object,
    prefixed_session_id,
    session_id_from_filename,
    synthesize_session_id,
)
from context_ledger.ingest.correlation import (
    MemoryToolCallQueue,
    ToolCallCorrelator,
    classify_tool_result,
)
from context_ledger.ingest.reader import read_incremental_lines
from context_ledger.models.enums import EventType
from context_ledger.store.models import RecordEventInput, ToolCallInput
from context_ledger.utils.timeutil import normalize_timestamp, utc_now_iso

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)

TOOL_CALL_TYPES = ("function_call", "custom_tool_call")
TOOL_OUTPUT_TYPES = ("function_call_output", "custom_tool_call_output")
MISSING_SOURCES_REASON = "Codex sessions directory and history file are both missing"


def _codex_session_id(raw: str | None) -> str | None:
    if not raw or not raw.strip():
        return None
    return prefixed_session_id(SESSION_PREFIX_CODEX, raw.strip())


def _tool_input_keys(raw: Any) -> list[str] | None:
    if isinstance(raw, str):
        parsed = parse_json_object(raw)
        return list(parsed) if parsed is not None else None
    if isinstance(raw, dict):
        return list(raw)
    return None


def enable_codex(
    data_dir: Path,
    history_path: str | None = None,
    sessions_path: str | None = None,
) -> CodexIntegrationConfig:
    """Enable the Codex integration, keeping any existing cursors."""
    config = load_config(data_dir)
    integration = config.integrations.codex or CodexIntegrationConfig()
    integration.enabled = True
    if history_path and history_path.strip():
        integration.history_path = history_path.strip()
    if sessions_path and sessions_path.strip():
        integration.sessions_path = sessions_path.strip()
    config.integrations.codex = integration
    save_config(config, data_dir)
    return integration


class _RolloutFileSync:
    """Replays new lines of one rollout file into the store."""

    def __init__(
        self,
        store: LedgerStore,
        path: Path,
        state: SessionFileState,
        queue: MemoryToolCallQueue,
        privacy: PrivacyConfig,
        result: SyncResult,
    ):
        self.store = store
        self.path = path
        self.state = state
        self.correlator = ToolCallCorrelator(queue)
        self.privacy = privacy
        self.result = result

    def _record(
        self,
        event_type: EventType,
        timestamp: str,
        payload: dict[str, Any],
        tool_call: ToolCallInput | None = None,
    ) -> None:
        session_id = self._ensure_session_id()
        self.store.record_event(
            RecordEventInput(
                session_id=session_id,
                provider=PROVIDER_OPENAI,
                agent=AGENT_CODEX,
                event_type=event_type,
                timestamp=timestamp,
                repo_path=self.state.repo_path,
                branch=self.state.branch,
                payload=payload,
                tool_call=tool_call,
            )
        )
        self.result.inserted += 1
        self.result.touch(session_id)

    def _ensure_session_id(self) -> str:
        if self.state.session_id is None:
            self.state.session_id = synthesize_session_id(SESSION_PREFIX_CODEX, str(self.path))
        return self.state.session_id

    def process_line(self, line: str) -> None:
        if not line.strip():
            return
        record = parse_json_object(line)
        record_type = record.get("type") if record else None
        if record is None or not isinstance(record_type, str) or not record_type.strip():
            self.result.skipped += 1
            return

        timestamp = normalize_timestamp(record.get("timestamp")) or utc_now_iso()
        payload = as_dict(record.get("payload"))

        if record_type == "session_meta":
            self._handle_session_meta(payload, timestamp)
        elif record_type == "turn_context":
            self.state.repo_path = (
                extract_optional_string(payload, ("cwd", "repo_path", "repoPath"))
                or self.state.repo_path
            )
        elif record_type == "event_msg":
            self._handle_event_msg(payload, timestamp)
        elif record_type == "response_item":
            self._handle_response_item(payload, timestamp)

    def _handle_session_meta(self, meta: dict[str, Any], timestamp: str) -> None:
        session_id = _codex_session_id(extract_optional_string(meta, ("id",)))
        self.state.session_id = session_id or self._ensure_session_id()
        self.state.repo_path = extract_optional_string(meta, ("cwd",)) or self.state.repo_path
        self.state.branch = (
            extract_optional_string(as_dict(meta.get("git")), BRANCH_KEYS) or self.state.branch
        )

        event_payload: dict[str, Any] = {
            "source": SOURCE_CODEX_SESSIONS,
            "recordType": "session_meta",
        }
        for raw_key, payload_key in (
            ("model_provider", "modelProvider"),
            ("originator", "originator"),
            ("source", "sourceClient"),
            ("cli_version", "cliVersion"),
        ):
            if isinstance(meta.get(raw_key), str):
                event_payload[payload_key] = meta[raw_key]
        self._record(EventType.SESSION_STARTED, timestamp, event_payload)
        self.state.started = True

    def _handle_event_msg(self, payload: dict[str, Any], timestamp: str) -> None:
        message_type = payload.get("type")
        if message_type == "user_message":
            message = payload.get("message")
            if not isinstance(message, str) or not message.strip():
                return
            self._record(
                EventType.REQUEST_SENT,
                timestamp,
                build_prompt_payload(
                    message.strip(),
                    SOURCE_CODEX_SESSIONS,
                    self.privacy,
                    {"eventType": "user_message"},
                ),
            )
        elif message_type == "task_complete":
            session_id = self._ensure_session_id()
            self._record(
                EventType.SESSION_STOPPED,
                timestamp,
                {"source": SOURCE_CODEX_SESSIONS, "eventType": "task_complete"},
            )
            self.result.mark_for_summary(session_id)

    def _handle_response_item(self, payload: dict[str, Any], timestamp: str) -> None:
        payload_type = payload.get("type")
        call_id = extract_optional_string(payload, ("call_id",))

        if payload_type in TOOL_CALL_TYPES:
            tool_name = extract_optional_string(payload, ("name",)) or UNKNOWN_TOOL_NAME
            self.correlator.open(call_id, tool_name, timestamp)
            self._record(
                EventType.TOOL_PRE_USE,
                timestamp,
                {
                    "source": SOURCE_CODEX_SESSIONS,
                    "payloadType": payload_type,
                    "toolName": tool_name,
                    "callId": call_id or "",
                    "toolInputKeys": _tool_input_keys(
                        payload.get("arguments", payload.get("input"))
                    ),
                },
            )
        elif payload_type in TOOL_OUTPUT_TYPES:
            tool_call = self.correlator.close(
                call_id, timestamp, classify_tool_result(payload.get("output"))
            )
            self._record(
                EventType.TOOL_POST_USE,
                timestamp,
                {
                    "source": SOURCE_CODEX_SESSIONS,
                    "payloadType": payload_type,
                    "toolName": tool_call.tool_name,
                    "callId": call_id or "",
                },
                tool_call=tool_call,
            )


def _sync_rollout_files(
    store: LedgerStore,
    rollout_files: list[Path],
    integration: CodexIntegrationConfig,
    privacy: PrivacyConfig,
    result: SyncResult,
) -> None:
    active = {str(path) for path in rollout_files}
    for tracked in set(integration.session_file_cursors) | set(integration.session_file_state):
        if tracked not in active:
            logger.debug(f"Pruning state for vanished rollout file {tracked}")
            integration.forget_file(tracked)
    for tracked in list(integration.open_tool_calls):
        if tracked not in active:
            integration.open_tool_calls.pop(tracked, None)

    for path in rollout_files:
        key = str(path)
        try:
            read = read_incremental_lines(path, integration.session_file_cursors.get(key, 0))
        except OSError as e:
            logger.warning(f"Failed to read Codex rollout file {path}: {e}")
            continue

        state = integration.session_file_state.get(key) or SessionFileState()
        if state.session_id is None:
            state.session_id = _codex_session_id(session_id_from_filename(path))
        queue = MemoryToolCallQueue(integration.open_tool_calls.get(key))
        file_sync = _RolloutFileSync(store, path, state, queue, privacy, result)
        for line in read.lines:
            file_sync.process_line(line)

        integration.session_file_cursors[key] = read.next_cursor
        integration.session_file_state[key] = state
        pending = queue.to_state()
        if pending:
            integration.open_tool_calls[key] = pending
        else:
            integration.open_tool_calls.pop(key, None)


def _sync_history(
    store: LedgerStore,
    history_path: Path,
    integration: CodexIntegrationConfig,
    privacy: PrivacyConfig,
    result: SyncResult,
) -> None:
    read = read_incremental_lines(history_path, integration.cursor)
    for line in read.lines:
        if not line.strip():
            continue
        entry = parse_json_object(line)
        if entry is None:
            result.skipped += 1
            continue
        session_id = _codex_session_id(extract_optional_string(entry, ("session_id",)))
        timestamp = normalize_timestamp(entry.get("ts"))
        text = entry.get("text")
        if session_id is None or timestamp is None or not isinstance(text, str) or not text.strip():
            result.skipped += 1
            continue

        store.record_event(
            RecordEventInput(
                session_id=session_id,
                provider=PROVIDER_OPENAI,
                agent=AGENT_CODEX,
                event_type=EventType.REQUEST_SENT,
                timestamp=timestamp,
                repo_path=extract_repo_path(entry),
                payload=build_prompt_payload(text, SOURCE_CODEX_HISTORY, privacy),
            )
        )
        result.inserted += 1
        result.touch(session_id)

    integration.cursor = read.next_cursor


def sync_codex(
    store: LedgerStore,
    data_dir: Path,
    history_path: str | None = None,
    sessions_path: str | None = None,
) -> SyncResult:
    """Ingest new Codex activity and persist cursors/state.

    Args:
        store: Open ledger store.
        data_dir: Directory holding config.json.
        history_path: Override for the flat history log.
        sessions_path: Override for the rollout sessions directory.

    Returns:
        SyncResult; ``skipped`` when neither source exists.
    """
    config = load_config(data_dir)
    integration = config.integrations.codex or CodexIntegrationConfig()
    if history_path:
        integration.history_path = history_path
    if sessions_path:
        integration.sessions_path = sessions_path

    resolved_history = expand_path(integration.history_path)
    resolved_sessions = expand_path(integration.sessions_path)
    rollout_files = iter_jsonl_files(resolved_sessions, CODEX_ROLLOUT_GLOB)

    if not rollout_files and not resolved_history.is_file():
        result = SyncResult.skipped_source(SOURCE_CODEX_SESSIONS, MISSING_SOURCES_REASON)
        result.cursor = integration.cursor
        result.paths = [str(resolved_sessions), str(resolved_history)]
        return result

    if rollout_files:
        result = SyncResult(source=SOURCE_CODEX_SESSIONS, paths=[str(resolved_sessions)])
        _sync_rollout_files(store, rollout_files, integration, config.privacy, result)
    else:
        result = SyncResult(source=SOURCE_CODEX_HISTORY, paths=[str(resolved_history)])
        _sync_history(store, resolved_history, integration, config.privacy, result)
        # Flat logs carry no completion marker; every touched session is a candidate
        for session_id in result.touched_session_ids:
            result.mark_for_summary(session_id)

    integration.enabled = True
    config.integrations.codex = integration
    save_config(config, data_dir)
    result.cursor = integration.cursor
    logger.info(
        f"Codex sync: inserted={result.inserted} skipped={result.skipped} "
        f"sessions={len(result.touched_session_ids)}"
    )
    return result
