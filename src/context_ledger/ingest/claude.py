"""Claude Code source adapter.

Two feeds:

- Live hook payloads, one JSON object per hook invocation on stdin.
  Ingestion is fire-and-forget: it must never fail the calling agent, so
  every error is logged to the hooks log and swallowed. Tool starts are
  queued in the store's ``tool_call_queue`` because each hook runs in its
  own process.
- Backfill of per-session transcript files under
  ``~/.claude/projects/**/*.jsonl`` for history recorded before hooks were
  enabled. Once a scan inserts nothing the backfill is marked complete.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from context_ledger.config import (
    ClaudeIntegrationConfig,
    PrivacyConfig,
    SessionFileState,
    expand_path,
    load_config,
    save_config,
)
from context_ledger.constants import (
    AGENT_CLAUDE,
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    HOOK_SCOPE_PREFIX,
    HOOKS_LOGGER_NAME,
    PROVIDER_ANTHROPIC,
    SESSION_PREFIX_CLAUDE,
    SOURCE_CLAUDE_HOOK,
    SOURCE_CLAUDE_TRANSCRIPT,
    TRANSCRIPT_GLOB,
)
from context_ledger.ingest.common import (
    SyncResult,
    as_dict,
    build_prompt_payload,
    extract_optional_string,
    iter_jsonl_files,
    parse_json_object,
    session_id_from_filename,
    synthesize_session_id,
)
from context_ledger.ingest.correlation import (
    MemoryToolCallQueue,
    StoreToolCallQueue,
    ToolCallCorrelator,
    ToolResult,
    classify_tool_result,
)
from context_ledger.ingest.reader import read_incremental_lines
from context_ledger.models.enums import EventType, SessionStatus
from context_ledger.settings import resolve_db_path
from context_ledger.store.core import LedgerStore
from context_ledger.store.models import RecordEventInput, ToolCallInput
from context_ledger.utils.timeutil import normalize_timestamp, utc_now_iso

logger = logging.getLogger(__name__)
hooks_logger = logging.getLogger(HOOKS_LOGGER_NAME)

HOOK_EVENT_TYPES: dict[str, EventType] = {
    "SessionStart": EventType.SESSION_STARTED,
    "SessionEnd": EventType.SESSION_ENDED,
    "UserPromptSubmit": EventType.REQUEST_SENT,
    "PreToolUse": EventType.TOOL_PRE_USE,
    "PostToolUse": EventType.TOOL_POST_USE,
    "PostToolUseFailure": EventType.TOOL_POST_USE,
    "Stop": EventType.SESSION_STOPPED,
    "SubagentStop": EventType.SUBAGENT_STOPPED,
    "PreCompact": EventType.PRE_COMPACT,
    "Notification": EventType.NOTIFICATION,
}

MISSING_PROJECTS_REASON = "Claude projects directory does not exist"
BACKFILL_COMPLETE_REASON = "backfill_complete"


# =============================================================================
# Live hooks
# =============================================================================


def _hook_session_id(payload: dict[str, Any]) -> str:
    explicit = extract_optional_string(payload, ("session_id", "sessionId"))
    if explicit:
        return explicit
    transcript_path = payload.get("transcript_path")
    if isinstance(transcript_path, str) and transcript_path.strip():
        from_name = session_id_from_filename(Path(transcript_path))
        if from_name:
            return from_name
    return f"{SESSION_PREFIX_CLAUDE}{uuid.uuid4()}"


def _hook_metadata(payload: dict[str, Any], hook_event_name: str) -> dict[str, Any]:
    """Payload metadata that never includes prompt text or tool input values."""
    metadata: dict[str, Any] = {"source": SOURCE_CLAUDE_HOOK, "hookEventName": hook_event_name}
    for raw_key, key in (
        ("cwd", "cwd"),
        ("transcript_path", "transcriptPath"),
        ("tool_name", "toolName"),
        ("tool_use_id", "toolUseId"),
    ):
        if isinstance(payload.get(raw_key), str):
            metadata[key] = payload[raw_key]
    if isinstance(payload.get("tool_input"), dict):
        metadata["toolInputKeys"] = list(payload["tool_input"])
    return metadata


def record_hook_payload(
    store: LedgerStore, payload: dict[str, Any], privacy: PrivacyConfig
) -> str:
    """Normalize one hook payload and record it.

    Args:
        store: Open ledger store.
        payload: Parsed hook JSON.
        privacy: Privacy options for prompt capture/redaction.

    Returns:
        The recorded event id.
    """
    hook_event_name = payload.get("hook_event_name")
    if not isinstance(hook_event_name, str) or not hook_event_name:
        hook_event_name = "Unknown"
    event_type = HOOK_EVENT_TYPES.get(hook_event_name, EventType.OTHER)
    session_id = _hook_session_id(payload)
    timestamp = utc_now_iso()
    tool_name = extract_optional_string(payload, ("tool_name",))
    correlation_key = extract_optional_string(payload, ("tool_use_id",)) or tool_name
    scope = f"{HOOK_SCOPE_PREFIX}{session_id}"

    event_payload = _hook_metadata(payload, hook_event_name)
    prompt = payload.get("prompt")
    if event_type is EventType.REQUEST_SENT and isinstance(prompt, str):
        event_payload.update(
            build_prompt_payload(
                prompt, SOURCE_CLAUDE_HOOK, privacy, {"hookEventName": hook_event_name}
            )
        )

    tool_call: ToolCallInput | None = None
    correlator = ToolCallCorrelator(StoreToolCallQueue(store, scope))
    if event_type is EventType.TOOL_PRE_USE:
        correlator.open(correlation_key, tool_name, timestamp)
    elif event_type is EventType.TOOL_POST_USE:
        if hook_event_name == "PostToolUseFailure":
            result = ToolResult(success=False, metadata={"isError": True})
        else:
            result = classify_tool_result(payload.get("tool_response"))
        tool_call = correlator.close(correlation_key, timestamp, result, tool_name_hint=tool_name)

    event_id = store.record_event(
        RecordEventInput(
            session_id=session_id,
            provider=PROVIDER_ANTHROPIC,
            agent=AGENT_CLAUDE,
            event_type=event_type,
            timestamp=timestamp,
            repo_path=extract_optional_string(payload, ("cwd",)),
            branch=extract_optional_string(payload, ("git_branch", "gitBranch")),
            payload=event_payload,
            session_status=(
                SessionStatus.COMPLETED if event_type is EventType.SESSION_ENDED else None
            ),
            tool_call=tool_call,
        )
    )

    if event_type is EventType.SESSION_ENDED:
        dropped = store.clear_tool_call_scope(scope)
        if dropped:
            hooks_logger.info(f"Dropped {dropped} unfinished tool starts for {session_id}")
    return event_id


@dataclass
class HookIngestResult:
    event_id: str
    session_id: str
    session_ended: bool = False


def ingest_hook_payload(
    raw_payload: str,
    data_dir: Path,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
) -> HookIngestResult | None:
    """Record a raw hook payload without ever raising.

    Returns:
        What was recorded, or None when the payload was ignored or failed.
    """
    text = raw_payload.strip()
    if not text:
        return None

    payload: dict[str, Any] | None = None
    session_id: str | None = None
    # Hook ingestion never raises into the calling agent
    try:
        payload = parse_json_object(text)
        if payload is None:
            hooks_logger.warning("Ignoring hook payload that is not a JSON object")
            return None

        # Resolve once so a synthesized id is shared by the event and the result
        session_id = _hook_session_id(payload)
        payload["session_id"] = session_id
        config = load_config(data_dir)
        with LedgerStore(resolve_db_path(data_dir), busy_timeout=busy_timeout) as store:
            event_id = record_hook_payload(store, payload, config.privacy)
    except Exception as e:
        hook_event_name = payload.get("hook_event_name") if payload else None
        hooks_logger.error(
            f"[HOOK-ERROR] {hook_event_name} session={session_id}: {type(e).__name__}: {e}"
        )
        return None

    hooks_logger.info(
        f"[HOOK] {payload.get('hook_event_name')} session={session_id} "
        f"event={event_id}"
    )
    event_type = HOOK_EVENT_TYPES.get(str(payload.get("hook_event_name")))
    return HookIngestResult(
        event_id=event_id,
        session_id=session_id,
        session_ended=event_type is EventType.SESSION_ENDED,
    )


# =============================================================================
# Transcript backfill
# =============================================================================


def _content_items(message: dict[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, list):
        return [item for item in content if isinstance(item, dict)]
    return []


class _TranscriptFileSync:
    """Replays new lines of one transcript file into the store."""

    def __init__(
        self,
        store: LedgerStore,
        path: Path,
        state: SessionFileState,
        queue: MemoryToolCallQueue,
        privacy: PrivacyConfig,
        result: SyncResult,
        first_read: bool,
    ):
        self.store = store
        self.path = path
        self.state = state
        self.correlator = ToolCallCorrelator(queue)
        self.privacy = privacy
        self.result = result
        self.first_read = first_read

    def _record(
        self,
        event_type: EventType,
        timestamp: str,
        payload: dict[str, Any],
        tool_call: ToolCallInput | None = None,
    ) -> None:
        session_id = self.state.session_id
        if session_id is None:
            return
        self.store.record_event(
            RecordEventInput(
                session_id=session_id,
                provider=PROVIDER_ANTHROPIC,
                agent=AGENT_CLAUDE,
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

    def _resolve_session(self, record: dict[str, Any]) -> bool:
        """Fix the file's session id; False when the session was captured live."""
        if self.state.session_id is None:
            self.state.session_id = (
                extract_optional_string(record, ("sessionId", "session_id"))
                or session_id_from_filename(self.path)
                or synthesize_session_id(SESSION_PREFIX_CLAUDE, str(self.path))
            )
            if self.store.get_session(self.state.session_id) is not None:
                if self.first_read and self._captured_by_hooks(self.state.session_id):
                    logger.debug(
                        f"Session {self.state.session_id} already captured by hooks; "
                        f"skipping transcript {self.path}"
                    )
                    self.state.hook_captured = True
                else:
                    # Another transcript of the session (e.g. a subagent log) started it
                    self.state.started = True
        return not self.state.hook_captured

    def _captured_by_hooks(self, session_id: str) -> bool:
        return any(
            event.payload.get("source") == SOURCE_CLAUDE_HOOK
            for event in self.store.list_events(session_id)
        )

    def process_line(self, line: str) -> None:
        if not line.strip():
            return
        record = parse_json_object(line)
        if record is None:
            self.result.skipped += 1
            return

        record_type = record.get("type")
        message = as_dict(record.get("message"))
        if record_type not in ("user", "assistant") or not message:
            # Summaries, snapshots and other bookkeeping records
            return
        if not self._resolve_session(record):
            return

        self.state.repo_path = self.state.repo_path or extract_optional_string(record, ("cwd",))
        self.state.branch = self.state.branch or extract_optional_string(record, ("gitBranch",))
        timestamp = normalize_timestamp(record.get("timestamp")) or utc_now_iso()

        if not self.state.started:
            self.state.started = True
            self._record(
                EventType.SESSION_STARTED,
                timestamp,
                {"source": SOURCE_CLAUDE_TRANSCRIPT, "transcriptPath": str(self.path)},
            )

        if record.get("isMeta") is True:
            return
        if record_type == "user":
            self._handle_user(record, message, timestamp)
        else:
            self._handle_assistant(record, message, timestamp)

    def _handle_user(
        self, record: dict[str, Any], message: dict[str, Any], timestamp: str
    ) -> None:
        texts: list[str] = []
        for item in _content_items(message):
            item_type = item.get("type")
            if item_type == "text" and isinstance(item.get("text"), str):
                texts.append(item["text"])
            elif item_type == "tool_result":
                key = extract_optional_string(item, ("tool_use_id",)) or extract_optional_string(
                    record, ("parentUuid",)
                )
                is_error = item.get("is_error")
                tool_call = self.correlator.close(
                    key,
                    timestamp,
                    classify_tool_result(
                        item.get("content"), is_error if isinstance(is_error, bool) else None
                    ),
                )
                self._record(
                    EventType.TOOL_POST_USE,
                    timestamp,
                    {
                        "source": SOURCE_CLAUDE_TRANSCRIPT,
                        "toolName": tool_call.tool_name,
                        "toolUseId": key or "",
                    },
                    tool_call=tool_call,
                )

        prompt = "\n".join(text for text in texts if text.strip())
        if prompt.strip():
            self._record(
                EventType.REQUEST_SENT,
                timestamp,
                build_prompt_payload(prompt, SOURCE_CLAUDE_TRANSCRIPT, self.privacy),
            )

    def _handle_assistant(
        self, record: dict[str, Any], message: dict[str, Any], timestamp: str
    ) -> None:
        for item in _content_items(message):
            if item.get("type") != "tool_use":
                continue
            key = extract_optional_string(item, ("id",)) or extract_optional_string(
                record, ("uuid",)
            )
            tool_name = extract_optional_string(item, ("name",))
            self.correlator.open(key, tool_name, timestamp)
            tool_input = item.get("input")
            self._record(
                EventType.TOOL_PRE_USE,
                timestamp,
                {
                    "source": SOURCE_CLAUDE_TRANSCRIPT,
                    "toolName": tool_name,
                    "toolUseId": key or "",
                    "toolInputKeys": list(tool_input) if isinstance(tool_input, dict) else None,
                },
            )


def enable_claude(data_dir: Path, projects_path: str | None = None) -> ClaudeIntegrationConfig:
    """Enable transcript backfill, keeping existing cursors."""
    config = load_config(data_dir)
    integration = config.integrations.claude or ClaudeIntegrationConfig()
    integration.enabled = True
    if projects_path and projects_path.strip():
        integration.projects_path = projects_path.strip()
    config.integrations.claude = integration
    save_config(config, data_dir)
    return integration


def sync_claude_transcripts(
    store: LedgerStore,
    data_dir: Path,
    projects_path: str | None = None,
    force: bool = False,
) -> SyncResult:
    """Backfill Claude Code transcript files.

    Args:
        store: Open ledger store.
        data_dir: Directory holding config.json.
        projects_path: Override for the projects directory.
        force: Scan even when the backfill was already marked complete.

    Returns:
        SyncResult; ``skipped`` when the directory is missing or the
        backfill is complete.
    """
    config = load_config(data_dir)
    integration = config.integrations.claude or ClaudeIntegrationConfig()
    if projects_path:
        integration.projects_path = projects_path
    root = expand_path(integration.projects_path)

    if integration.backfill_complete and not force:
        return SyncResult.skipped_source(SOURCE_CLAUDE_TRANSCRIPT, BACKFILL_COMPLETE_REASON, root)
    if not root.is_dir():
        return SyncResult.skipped_source(SOURCE_CLAUDE_TRANSCRIPT, MISSING_PROJECTS_REASON, root)

    result = SyncResult(source=SOURCE_CLAUDE_TRANSCRIPT, paths=[str(root)])
    files = iter_jsonl_files(root, TRANSCRIPT_GLOB)
    active = {str(path) for path in files}
    for tracked in set(integration.session_file_cursors) | set(integration.open_tool_calls):
        if tracked not in active:
            integration.forget_file(tracked)

    for path in files:
        key = str(path)
        cursor = integration.session_file_cursors.get(key, 0)
        try:
            read = read_incremental_lines(path, cursor)
        except OSError as e:
            logger.warning(f"Failed to read transcript {path}: {e}")
            continue

        state = integration.session_file_state.get(key) or SessionFileState()
        queue = MemoryToolCallQueue(integration.open_tool_calls.get(key))
        file_sync = _TranscriptFileSync(
            store,
            path,
            state,
            queue,
            config.privacy,
            result,
            first_read=cursor == 0 and not state.started,
        )
        for line in read.lines:
            file_sync.process_line(line)

        integration.session_file_cursors[key] = read.next_cursor
        integration.session_file_state[key] = state
        pending = queue.to_state()
        if pending:
            integration.open_tool_calls[key] = pending
        else:
            integration.open_tool_calls.pop(key, None)

    # Backfilled sessions have no live completion signal; summarize what changed
    for session_id in result.touched_session_ids:
        result.mark_for_summary(session_id)

    if result.inserted == 0:
        integration.backfill_complete = True
        logger.info("Claude transcript backfill complete")
    integration.enabled = True
    config.integrations.claude = integration
    save_config(config, data_dir)
    logger.info(
        f"Claude backfill: files={len(files)} inserted={result.inserted} "
        f"skipped={result.skipped}"
    )
    return result

