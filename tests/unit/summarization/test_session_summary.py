"""Tests for session summarization.

Tests cover:
- Summary prompt construction and remote prompt withholding
- Tolerant parsing of summarizer output
- Fallback and normalized summaries
- summarize_session() statuses and persistence
- Command summarizer and background dispatch
"""

import json
import shlex
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from context_ledger.config import LedgerConfig, PrivacyConfig, SummarizerConfig
from context_ledger.exceptions import ConfigurationError, SummarizationError
from context_ledger.models.enums import EventType, SessionStatus
from context_ledger.store import LedgerStore, SessionSummarySource, ToolCallInput
from context_ledger.summarization import (
    BaseSummarizer,
    CommandSummarizer,
    StaticOutputSummarizer,
    build_fallback_summary,
    build_summary_prompt,
    create_summarizer,
    extract_json_string,
    parse_summary_output,
    summarize_session,
)
from context_ledger.summarization import dispatch
from context_ledger.summarization.summarizer import normalize_summary

WITHHELD_LINE = "- Prompt samples withheld (remote prompt transfer not allowed)."

VALID_OUTPUT = {
    "summary": "Fixed the flaky login test.",
    "keyOutcomes": ["Stabilized login test", "Stabilized login test", " "],
    "filesTouched": ["tests/test_login.py"],
    "commands": ["pytest tests/test_login.py"],
    "errors": [],
    "todoItems": ["Add retry to CI"],
    "primaryIntent": "Coding",
    "intentConfidence": 0.9,
    "tasks": [{"name": "debugging", "minutes": 18.4, "confidence": 0.7}],
}


class RecordingSummarizer(BaseSummarizer):
    """Returns canned output and remembers the prompts it was given."""

    name = "recording"

    def __init__(self, output: str, remote: bool = False):
        self.output = output
        self.remote = remote
        self.prompts: list[str] = []

    def is_available(self) -> bool:
        return True

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.output


class FailingSummarizer(BaseSummarizer):
    name = "failing"

    def is_available(self) -> bool:
        return True

    def complete(self, prompt: str) -> str:
        raise SummarizationError("model unavailable")


@pytest.fixture
def session(record: Callable[..., str]) -> str:
    """A completed 25 minute session with one captured prompt and one tool call."""
    record("s1", "2025-03-01T10:00:00.000Z", repo_path="/work/api", branch="main")
    record("s1", "2025-03-01T10:01:00.000Z", payload={"prompt": "fix the login test"})
    record(
        "s1",
        "2025-03-01T10:05:00.000Z",
        EventType.TOOL_POST_USE,
        tool_call=ToolCallInput(tool_name="Bash", started_at="2025-03-01T10:04:00.000Z"),
    )
    record(
        "s1",
        "2025-03-01T10:25:00.000Z",
        EventType.SESSION_ENDED,
        session_status=SessionStatus.COMPLETED,
    )
    return "s1"


@pytest.fixture
def source(store: LedgerStore, session: str) -> SessionSummarySource:
    loaded = store.load_summary_source(session)
    assert loaded is not None
    return loaded


class TestBuildSummaryPrompt:
    """Test build_summary_prompt()."""

    def test_includes_metadata_and_samples(self, source: SessionSummarySource) -> None:
        prompt = build_summary_prompt(source)

        assert "- Session ID: s1" in prompt
        assert "- Repo Path: /work/api" in prompt
        assert "- Session Duration Minutes: 25" in prompt
        assert "- Tool Call Count: 1" in prompt
        assert "- Bash: 1" in prompt
        assert "- [1] fix the login test" in prompt
        assert '"primaryIntent": "coding|incident|deploy|sql|docs|other"' in prompt

    def test_withheld_samples(self, source: SessionSummarySource) -> None:
        prompt = build_summary_prompt(source, include_prompt_samples=False)
        assert WITHHELD_LINE in prompt
        assert "fix the login test" not in prompt

    def test_no_prompts_captured(self, source: SessionSummarySource) -> None:
        source.prompts = []
        prompt = build_summary_prompt(source, include_prompt_samples=False)
        assert "- No prompt text captured (prompt capture likely disabled)." in prompt


class TestParseSummaryOutput:
    """Test tolerant parsing of summarizer output."""

    def test_plain_json(self) -> None:
        output = parse_summary_output(json.dumps(VALID_OUTPUT))
        assert output is not None
        assert output.primary_intent == "coding"
        assert output.todo_items == ["Add retry to CI"]

    def test_fenced_json(self) -> None:
        raw = "Here you go:\n```json\n" + json.dumps({"summary": "ok"}) + "\n```"
        assert extract_json_string(raw) == '{"summary": "ok"}'
        output = parse_summary_output(raw)
        assert output is not None
        assert output.primary_intent == "other"

    def test_json_embedded_in_prose(self) -> None:
        raw = 'Summary follows {"summary": "done", "primaryIntent": "docs"} hope it helps'
        output = parse_summary_output(raw)
        assert output is not None
        assert output.primary_intent == "docs"

    @pytest.mark.parametrize("intent", ["in_progress", "gardening", 7])
    def test_unknown_intents_collapse_to_other(self, intent: Any) -> None:
        output = parse_summary_output(json.dumps({"summary": "x", "primaryIntent": intent}))
        assert output is not None
        assert output.primary_intent == "other"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "no json here",
            '{"keyOutcomes": []}',
            '{"summary": "x", "intentConfidence": 1.5}',
            '{"summary": "x", "tasks": [{"name": "t", "minutes": -1}]}',
        ],
    )
    def test_unusable_output(self, raw: str) -> None:
        assert parse_summary_output(raw) is None


class TestSummaryShapes:
    """Test fallback and normalized summaries."""

    def test_fallback_summary(self, source: SessionSummarySource) -> None:
        summary = build_fallback_summary(source)

        assert summary.fallback is True
        assert summary.primary_intent == "other"
        assert summary.intent_confidence == 0.3
        assert summary.key_outcomes == ["Session s1 contains 4 events and 1 tool calls."]
        assert [(task.label, task.minutes) for task in summary.tasks] == [("general", 25)]
        assert summary.summary_markdown.startswith("## Session Summary")

    def test_normalized_summary_dedupes_and_rounds(self, source: SessionSummarySource) -> None:
        output = parse_summary_output(json.dumps(VALID_OUTPUT))
        assert output is not None

        summary = normalize_summary(output, source)

        assert summary.key_outcomes == ["Stabilized login test"]
        assert [(task.label, task.minutes, task.confidence) for task in summary.tasks] == [
            ("debugging", 18, 0.7)
        ]
        assert "## Primary Intent\n- coding (0.90)" in summary.summary_markdown

    def test_missing_tasks_use_session_duration(self, source: SessionSummarySource) -> None:
        output = parse_summary_output(json.dumps({"summary": "x", "primaryIntent": "deploy"}))
        assert output is not None
        tasks = normalize_summary(output, source).tasks
        assert [(task.label, task.minutes) for task in tasks] == [("deploy", 25)]


class TestSummarizeSession:
    """Test summarize_session() statuses and persistence."""

    def test_not_configured(self, store: LedgerStore, session: str) -> None:
        result = summarize_session(store, LedgerConfig(), session)
        assert result.status == "skipped"
        assert result.reason == "summarizer_not_configured"

    def test_session_not_found(self, store: LedgerStore) -> None:
        summarizer = StaticOutputSummarizer(json.dumps(VALID_OUTPUT))
        result = summarize_session(store, LedgerConfig(), "missing", summarizer=summarizer)
        assert result.status == "skipped"
        assert result.reason == "session_not_found"

    def test_stores_capsule_labels_and_tasks(self, store: LedgerStore, session: str) -> None:
        summarizer = StaticOutputSummarizer(json.dumps(VALID_OUTPUT))

        result = summarize_session(store, LedgerConfig(), "latest", summarizer=summarizer)

        assert result.to_dict() == {
            "status": "stored",
            "sessionId": "s1",
            "primaryIntent": "coding",
            "taskBuckets": 1,
            "outcomes": 1,
            "fallback": False,
        }
        capsule = store.get_capsule(session)
        assert capsule is not None
        assert capsule.todos == ["Add retry to CI"]
        assert capsule.files == ["tests/test_login.py"]
        labels = store.get_intent_labels(session)
        assert [(label.source, label.label) for label in labels] == [("manual", "coding")]
        assert labels[0].reason["promptSamplesIncluded"] is True
        assert [task.label for task in store.get_task_breakdown(session)] == ["debugging"]

    def test_fresh_capsule_is_skipped(self, store: LedgerStore, session: str) -> None:
        summarizer = StaticOutputSummarizer(json.dumps(VALID_OUTPUT))
        summarize_session(store, LedgerConfig(), session, summarizer=summarizer)

        again = summarize_session(store, LedgerConfig(), session, summarizer=summarizer)
        forced = summarize_session(
            store, LedgerConfig(), session, summarizer=summarizer, skip_if_fresh=False
        )

        assert again.status == "skipped"
        assert again.reason == "already_up_to_date"
        assert forced.status == "stored"

    def test_unparseable_output_stores_fallback(self, store: LedgerStore, session: str) -> None:
        result = summarize_session(
            store, LedgerConfig(), session, summarizer=StaticOutputSummarizer("sorry, no json")
        )
        assert result.status == "stored"
        assert result.fallback is True
        assert result.primary_intent == "other"

    def test_summarizer_error_is_reported(self, store: LedgerStore, session: str) -> None:
        result = summarize_session(store, LedgerConfig(), session, summarizer=FailingSummarizer())

        assert result.status == "failed"
        assert result.reason == "summarization_error"
        assert result.error == "model unavailable"
        assert store.get_capsule(session) is None

    def test_malformed_configured_command_is_reported(
        self, store: LedgerStore, session: str
    ) -> None:
        config = LedgerConfig(summarizer=SummarizerConfig(command="llm --system 'unterminated"))

        result = summarize_session(store, config, session)

        assert result.status == "failed"
        assert result.reason == "invalid_summarizer_command"
        assert result.error is not None
        assert "Invalid summarizer command" in result.error
        assert store.get_capsule(session) is None

    def test_source_override_replaces_only_that_source(
        self, store: LedgerStore, session: str
    ) -> None:
        summarizer = StaticOutputSummarizer(json.dumps(VALID_OUTPUT))
        summarize_session(store, LedgerConfig(), session, summarizer=summarizer)
        summarize_session(
            store,
            LedgerConfig(),
            session,
            summarizer=summarizer,
            source="review",
            skip_if_fresh=False,
        )
        assert sorted(label.source for label in store.get_intent_labels(session)) == [
            "manual",
            "review",
        ]

    @pytest.mark.parametrize(
        "remote,allow,expect_samples",
        [(False, False, True), (True, False, False), (True, True, True)],
    )
    def test_remote_prompt_withholding(
        self, store: LedgerStore, session: str, remote: bool, allow: bool, expect_samples: bool
    ) -> None:
        summarizer = RecordingSummarizer(json.dumps(VALID_OUTPUT), remote=remote)
        config = LedgerConfig(privacy=PrivacyConfig(allow_remote_prompt_transfer=allow))

        summarize_session(store, config, session, summarizer=summarizer)

        prompt = summarizer.prompts[0]
        assert ("fix the login test" in prompt) is expect_samples
        assert (WITHHELD_LINE in prompt) is not expect_samples
        label = store.get_intent_labels(session)[0]
        assert label.reason["promptSamplesIncluded"] is expect_samples
        assert label.reason["remote"] is remote


def _python_command(script: str) -> str:
    return shlex.join([sys.executable, "-c", script])


class TestCommandSummarizer:
    """Test the external command summarizer."""

    def test_prompt_on_stdin_json_on_stdout(self) -> None:
        script = (
            "import json, sys; prompt = sys.stdin.read(); "
            "print(json.dumps({'summary': 'chars=' + str(len(prompt))}))"
        )
        summarizer = CommandSummarizer(_python_command(script))

        raw = summarizer.complete("hello")

        assert json.loads(raw) == {"summary": "chars=5"}
        assert summarizer.is_available() is True

    def test_nonzero_exit_raises(self) -> None:
        script = "import sys; sys.stderr.write('boom'); sys.exit(3)"
        with pytest.raises(SummarizationError) as exc_info:
            CommandSummarizer(_python_command(script)).complete("x")
        assert exc_info.value.details["exit_code"] == 3
        assert exc_info.value.details["stderr"] == "boom"

    def test_missing_executable_raises(self) -> None:
        summarizer = CommandSummarizer("context-ledger-no-such-binary --flag")
        assert summarizer.is_available() is False
        with pytest.raises(SummarizationError):
            summarizer.complete("x")

    def test_create_summarizer_from_config(self) -> None:
        assert create_summarizer(None) is None
        assert create_summarizer(SummarizerConfig(command="   ")) is None

        summarizer = create_summarizer(
            SummarizerConfig(command="llm -m local", timeout_seconds=10, remote=True)
        )
        assert isinstance(summarizer, CommandSummarizer)
        assert summarizer.argv == ["llm", "-m", "local"]
        assert summarizer.timeout == 10
        assert summarizer.remote is True

    def test_unbalanced_quotes_raise_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_summarizer(SummarizerConfig(command='llm -m "local'))
        assert exc_info.value.key == "summarizer.command"


class TestDispatchSummaryJobs:
    """Test detached background summary launches."""

    def test_one_process_per_unique_session(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        launched: list[list[str]] = []

        def fake_popen(args: list[str], **kwargs: Any) -> None:
            launched.append(args)

        monkeypatch.setattr(dispatch.subprocess, "Popen", fake_popen)

        count = dispatch.dispatch_summary_jobs(["a", "b", "a"], tmp_path)

        assert count == 2
        assert [args[-2] for args in launched] == ["a", "b"]
        assert launched[0][1:4] == ["-m", "context_ledger", "--data-dir"]
        assert launched[0][-1] == "--skip-if-fresh"

    def test_launch_failures_are_not_counted(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        def failing_popen(args: list[str], **kwargs: Any) -> None:
            raise OSError("no fork for you")

        monkeypatch.setattr(dispatch.subprocess, "Popen", failing_popen)

        assert dispatch.dispatch_summary_jobs(["a"], tmp_path) == 0
