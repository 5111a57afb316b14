"""Tests for the Claude Code adapter: live hooks and transcript backfill."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from context_ledger.config import PrivacyConfig, load_config
from context_ledger.ingest import claude as claude_adapter
from context_ledger.ingest import ingest_hook_payload, record_hook_payload, sync_claude_transcripts
from context_ledger.ingest.claude import BACKFILL_COMPLETE_REASON, MISSING_PROJECTS_REASON
from context_ledger.models.enums import EventType, SessionStatus, SyncStatus
from context_ledger.settings import resolve_db_path
from context_ledger.store import LedgerStore

TRANSCRIPT_SESSION = "5f0c1d2e-3a4b-4c5d-8e9f-0a1b2c3d4e5f"


def _hook(name: str, session_id: str = "c1", **fields: Any) -> dict[str, Any]:
    return {"hook_event_name": name, "session_id": session_id, **fields}


class TestRecordHookPayload:
    """Test normalization of individual hook payloads."""

    def test_session_lifecycle(self, store: LedgerStore) -> None:
        privacy = PrivacyConfig()
        record_hook_payload(store, _hook("SessionStart", cwd="/work/api"), privacy)
        record_hook_payload(store, _hook("SessionEnd"), privacy)

        session = store.get_session("c1")
        assert session is not None
        assert session.repo_path == "/work/api"
        assert session.status is SessionStatus.COMPLETED
        assert [event.event_type for event in store.list_events("c1")] == [
            EventType.SESSION_STARTED,
            EventType.SESSION_ENDED,
        ]

    def test_tool_use_pair_produces_tool_call(self, store: LedgerStore) -> None:
        privacy = PrivacyConfig()
        pre = _hook(
            "PreToolUse",
            tool_name="Bash",
            tool_use_id="toolu_1",
            tool_input={"command": "rm -rf build"},
        )
        post = _hook(
            "PostToolUse",
            tool_name="Bash",
            tool_use_id="toolu_1",
            tool_response={"stdout": "", "exit_code": 0},
        )
        record_hook_payload(store, pre, privacy)
        record_hook_payload(store, post, privacy)

        calls = store.list_tool_calls("c1")
        assert len(calls) == 1
        assert calls[0].tool_name == "Bash"
        assert calls[0].success is True
        assert calls[0].metadata["correlated"] is True
        assert calls[0].duration_ms is not None and calls[0].duration_ms >= 0

        pre_event = store.list_events("c1")[0]
        assert pre_event.payload["toolInputKeys"] == ["command"]
        assert "rm -rf build" not in json.dumps(pre_event.payload)

    def test_failure_hook_marks_call_failed(self, store: LedgerStore) -> None:
        privacy = PrivacyConfig()
        record_hook_payload(store, _hook("PreToolUse", tool_name="Edit"), privacy)
        record_hook_payload(store, _hook("PostToolUseFailure", tool_name="Edit"), privacy)

        calls = store.list_tool_calls("c1")
        assert len(calls) == 1
        assert calls[0].success is False

    def test_unmatched_post_uses_payload_tool_name(self, store: LedgerStore) -> None:
        record_hook_payload(
            store, _hook("PostToolUse", tool_name="Read", tool_use_id="toolu_9"), PrivacyConfig()
        )
        calls = store.list_tool_calls("c1")
        assert calls[0].tool_name == "Read"
        assert calls[0].duration_ms == 0

    def test_session_end_drops_open_starts(self, store: LedgerStore) -> None:
        privacy = PrivacyConfig()
        record_hook_payload(store, _hook("PreToolUse", tool_name="Bash", tool_use_id="t1"), privacy)
        record_hook_payload(store, _hook("SessionEnd"), privacy)

        assert store.pop_open_tool_call("hook:c1", "t1") is None

    def test_prompt_text_requires_capture(self, store: LedgerStore) -> None:
        prompt = _hook("UserPromptSubmit", prompt="deploy with sk-abcdefghijklmnop")
        record_hook_payload(store, prompt, PrivacyConfig())
        record_hook_payload(store, prompt, PrivacyConfig(capture_prompts=True))

        dropped, kept = store.list_events("c1")
        assert "prompt" not in dropped.payload
        assert dropped.payload["promptLength"] > 0
        assert kept.payload["prompt"] == "deploy with [REDACTED_OPENAI_KEY]"

    def test_unknown_hook_is_recorded_as_other(self, store: LedgerStore) -> None:
        record_hook_payload(store, _hook("BrandNewHook"), PrivacyConfig())
        event = store.list_events("c1")[0]
        assert event.event_type is EventType.OTHER
        assert event.payload["hookEventName"] == "BrandNewHook"

    def test_session_id_from_transcript_path(self, store: LedgerStore) -> None:
        payload = {
            "hook_event_name": "Stop",
            "transcript_path": f"/home/dev/.claude/projects/x/{TRANSCRIPT_SESSION}.jsonl",
        }
        record_hook_payload(store, payload, PrivacyConfig())
        assert store.get_session(TRANSCRIPT_SESSION) is not None


class TestIngestHookPayload:
    """Test the never-failing raw hook entry point."""

    def test_records_and_reports_session_end(self, data_dir: Path) -> None:
        result = ingest_hook_payload(json.dumps(_hook("SessionEnd", "c7")), data_dir)

        assert result is not None
        assert result.session_id == "c7"
        assert result.session_ended is True
        with LedgerStore(resolve_db_path(data_dir)) as store:
            assert store.get_session("c7") is not None

    def test_missing_session_id_is_synthesized_once(self, data_dir: Path) -> None:
        result = ingest_hook_payload(json.dumps({"hook_event_name": "Stop"}), data_dir)

        assert result is not None
        assert result.session_id.startswith("claude-")
        assert result.session_ended is False
        with LedgerStore(resolve_db_path(data_dir)) as store:
            assert store.get_session(result.session_id) is not None

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "not json",
            "[1, 2]",
            pytest.param('{"a":' + "[" * 200000, id="deeply-nested"),
        ],
    )
    def test_unusable_payloads_are_ignored(self, data_dir: Path, raw: str) -> None:
        assert ingest_hook_payload(raw, data_dir) is None

    def test_store_errors_are_swallowed(self, tmp_path: Path) -> None:
        """A data directory that cannot hold a database never raises."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file", encoding="utf-8")
        assert ingest_hook_payload(json.dumps(_hook("Stop")), blocker) is None

    def test_unexpected_errors_are_swallowed(
        self, data_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _explode(*args: Any, **kwargs: Any) -> str:
            raise KeyError("tool_response")

        monkeypatch.setattr(claude_adapter, "record_hook_payload", _explode)

        assert ingest_hook_payload(json.dumps(_hook("PostToolUse")), data_dir) is None


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    return tmp_path / "claude" / "projects"


def _transcript_path(projects_dir: Path) -> Path:
    return projects_dir / "-work-api" / f"{TRANSCRIPT_SESSION}.jsonl"


def _transcript_records() -> list[Any]:
    base = {"sessionId": TRANSCRIPT_SESSION, "cwd": "/work/api", "gitBranch": "main"}
    return [
        {"type": "summary", "summary": "Earlier work"},
        {
            **base,
            "type": "user",
            "timestamp": "2025-03-01T10:00:00.000Z",
            "message": {"role": "user", "content": "fix the failing test"},
        },
        {
            **base,
            "type": "assistant",
            "timestamp": "2025-03-01T10:00:10.000Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Running the tests"},
                    {
                        "type": "tool_use",
                        "id": "toolu_1",
                        "name": "Bash",
                        "input": {"command": "pytest"},
                    },
                ],
            },
        },
        {
            **base,
            "type": "user",
            "timestamp": "2025-03-01T10:00:40.000Z",
            "message": {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_1",
                        "content": "1 failed",
                        "is_error": True,
                    }
                ],
            },
        },
        "{broken",
    ]


class TestTranscriptBackfill:
    """Test sync_claude_transcripts()."""

    def test_backfill_replays_transcript(
        self,
        store: LedgerStore,
        data_dir: Path,
        projects_dir: Path,
        write_jsonl: Callable[..., Path],
    ) -> None:
        write_jsonl(_transcript_path(projects_dir), _transcript_records())

        result = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        assert result.inserted == 4
        assert result.skipped == 1
        assert result.summary_session_ids == [TRANSCRIPT_SESSION]
        assert [event.event_type for event in store.list_events(TRANSCRIPT_SESSION)] == [
            EventType.SESSION_STARTED,
            EventType.REQUEST_SENT,
            EventType.TOOL_PRE_USE,
            EventType.TOOL_POST_USE,
        ]
        calls = store.list_tool_calls(TRANSCRIPT_SESSION)
        assert len(calls) == 1
        assert calls[0].tool_name == "Bash"
        assert calls[0].duration_ms == 30000
        assert calls[0].success is False
        session = store.get_session(TRANSCRIPT_SESSION)
        assert session is not None
        assert session.branch == "main"

    def test_backfill_completes_after_empty_scan(
        self,
        store: LedgerStore,
        data_dir: Path,
        projects_dir: Path,
        write_jsonl: Callable[..., Path],
    ) -> None:
        write_jsonl(_transcript_path(projects_dir), _transcript_records())
        sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        empty = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))
        assert empty.inserted == 0
        claude = load_config(data_dir).integrations.claude
        assert claude is not None
        assert claude.backfill_complete is True

        skipped = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))
        assert skipped.status is SyncStatus.SKIPPED
        assert skipped.reason == BACKFILL_COMPLETE_REASON

        forced = sync_claude_transcripts(
            store, data_dir, projects_path=str(projects_dir), force=True
        )
        assert forced.status is SyncStatus.OK

    def test_hook_captured_session_is_not_replayed(
        self,
        store: LedgerStore,
        data_dir: Path,
        projects_dir: Path,
        write_jsonl: Callable[..., Path],
    ) -> None:
        record_hook_payload(store, _hook("SessionStart", TRANSCRIPT_SESSION), PrivacyConfig())
        write_jsonl(_transcript_path(projects_dir), _transcript_records())

        result = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        assert result.inserted == 0
        assert len(store.list_events(TRANSCRIPT_SESSION)) == 1

    def test_missing_projects_dir(
        self, store: LedgerStore, data_dir: Path, projects_dir: Path
    ) -> None:
        result = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))
        assert result.status is SyncStatus.SKIPPED
        assert result.reason == MISSING_PROJECTS_REASON

    def test_transcripts_sharing_a_session_are_all_replayed(
        self,
        store: LedgerStore,
        data_dir: Path,
        projects_dir: Path,
        write_jsonl: Callable[..., Path],
    ) -> None:
        """A subagent transcript of an already-backfilled session is not dropped."""
        base = {"sessionId": TRANSCRIPT_SESSION, "cwd": "/work/api", "type": "user"}
        write_jsonl(
            _transcript_path(projects_dir),
            [
                {
                    **base,
                    "timestamp": "2025-03-01T10:00:00.000Z",
                    "message": {"role": "user", "content": "plan the refactor"},
                }
            ],
        )
        write_jsonl(
            projects_dir / "-work-api" / TRANSCRIPT_SESSION / "subagents" / "agent-abc.jsonl",
            [
                {
                    **base,
                    "timestamp": "2025-03-01T10:05:00.000Z",
                    "message": {"role": "user", "content": "search for callers"},
                }
            ],
        )

        result = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        event_types = [event.event_type for event in store.list_events(TRANSCRIPT_SESSION)]
        assert result.inserted == 3
        assert event_types.count(EventType.SESSION_STARTED) == 1
        assert event_types.count(EventType.REQUEST_SENT) == 2

    def test_partial_line_is_replayed_once_completed(
        self,
        store: LedgerStore,
        data_dir: Path,
        projects_dir: Path,
        write_jsonl: Callable[..., Path],
    ) -> None:
        path = write_jsonl(_transcript_path(projects_dir), _transcript_records()[1:2])
        follow_up = json.dumps(
            {
                "sessionId": TRANSCRIPT_SESSION,
                "type": "user",
                "timestamp": "2025-03-01T10:02:00.000Z",
                "message": {"role": "user", "content": "now run the linter"},
            }
        )
        with open(path, "a", encoding="utf-8") as f:
            f.write(follow_up[:40])

        first = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        assert first.inserted == 2
        assert first.skipped == 0
        claude = load_config(data_dir).integrations.claude
        assert claude is not None
        assert claude.session_file_cursors[str(path)] == path.stat().st_size - 40

        with open(path, "a", encoding="utf-8") as f:
            f.write(follow_up[40:] + "\n")
        second = sync_claude_transcripts(store, data_dir, projects_path=str(projects_dir))

        assert second.inserted == 1
        assert second.skipped == 0
        event_types = [event.event_type for event in store.list_events(TRANSCRIPT_SESSION)]
        assert event_types == [
            EventType.SESSION_STARTED,
            EventType.REQUEST_SENT,
            EventType.REQUEST_SENT,
        ]
        claude = load_config(data_dir).integrations.claude
        assert claude is not None
        assert claude.session_file_cursors[str(path)] == path.stat().st_size
