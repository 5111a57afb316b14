"""Tests for the ctx-ledger CLI.

Commands are exercised end to end through typer's CliRunner against a
temporary data directory. JSON output is parsed from stdout.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from context_ledger.cli import app


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner: CliRunner, data_dir: Path) -> Callable[..., Any]:
    """Return a helper running the CLI against the test data directory."""

    def _invoke(*args: str, input: str | None = None) -> Any:
        return runner.invoke(app, ["--data-dir", str(data_dir), *args], input=input)

    return _invoke


@pytest.fixture
def gemini_history(tmp_path: Path, write_jsonl: Callable[..., Path]) -> Path:
    return write_jsonl(
        tmp_path / "gemini" / "history.jsonl",
        [
            {"sessionId": "g1", "ts": 1740823200, "text": "add caching", "cwd": "/work/web"},
            {"sessionId": "g1", "ts": 1740823800, "text": "write tests"},
            {"sessionId": "g2", "ts": 1740910200, "text": "fix deploy"},
        ],
    )


@pytest.fixture
def synced(invoke: Callable[..., Any], gemini_history: Path) -> None:
    """Gemini enabled and synced: sessions gemini-g1 (10 min) and gemini-g2."""
    assert invoke("enable", "gemini", "--path", str(gemini_history)).exit_code == 0
    assert invoke("sync", "--json").exit_code == 0


def _json(result: Any) -> Any:
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestSetupCommands:
    """Test version, init, doctor and enable."""

    def test_version(self, invoke: Callable[..., Any]) -> None:
        result = invoke("version")
        assert result.exit_code == 0
        assert "ctx-ledger" in result.stdout

    def test_init_creates_store_and_config(
        self, invoke: Callable[..., Any], data_dir: Path
    ) -> None:
        result = invoke("init", "--capture-prompts", "--summarizer-command", "llm -m local")

        assert result.exit_code == 0
        assert "ContextLedger initialized" in result.stdout
        assert (data_dir / "context-ledger.db").exists()
        config = json.loads((data_dir / "config.json").read_text(encoding="utf-8"))
        assert config["privacy"]["capturePrompts"] is True
        assert config["summarizer"]["command"] == "llm -m local"
        assert config["summarizer"]["remote"] is False

    def test_doctor_reports_database_and_integrations(
        self, invoke: Callable[..., Any], gemini_history: Path
    ) -> None:
        invoke("init")
        invoke("enable", "gemini", "--path", str(gemini_history))

        report = _json(invoke("doctor", "--json"))

        assert report["database"]["counts"]["sessions"] == 0
        assert report["integrations"]["gemini"]["exists"] is True
        assert report["summarizer"] is None

    def test_init_rejects_malformed_summarizer_command(
        self, invoke: Callable[..., Any], data_dir: Path
    ) -> None:
        result = invoke("init", "--summarizer-command", "llm 'unterminated")

        assert result.exit_code == 1
        assert not (data_dir / "config.json").exists()

    def test_doctor_reports_malformed_summarizer_command(
        self, invoke: Callable[..., Any], data_dir: Path
    ) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / "config.json").write_text(
            json.dumps({"summarizer": {"command": "llm 'unterminated"}}), encoding="utf-8"
        )

        report = _json(invoke("doctor", "--json"))

        assert report["summarizer"]["available"] is False
        assert "Invalid summarizer command" in report["summarizer"]["error"]

    def test_doctor_before_init(self, invoke: Callable[..., Any]) -> None:
        report = _json(invoke("doctor", "--json"))
        assert report["database"] is None
        assert report["integrations"] == {}

    def test_enable_unknown_agent_fails(self, invoke: Callable[..., Any]) -> None:
        result = invoke("enable", "cursor")
        assert result.exit_code == 1

    def test_enable_accepts_agent_alias(self, invoke: Callable[..., Any], data_dir: Path) -> None:
        result = invoke("enable", "claude-code", "--path", "/tmp/projects")
        assert result.exit_code == 0
        config = json.loads((data_dir / "config.json").read_text(encoding="utf-8"))
        assert config["integrations"]["claude"]["projectsPath"] == "/tmp/projects"


class TestSyncAndHooks:
    """Test sync and hook-ingest."""

    def test_sync_without_integrations(self, invoke: Callable[..., Any]) -> None:
        assert _json(invoke("sync", "--json")) == {"results": []}

    def test_sync_reports_results(
        self, invoke: Callable[..., Any], gemini_history: Path
    ) -> None:
        invoke("enable", "gemini", "--path", str(gemini_history))

        first = _json(invoke("sync", "--json"))
        second = _json(invoke("sync", "gemini", "--json"))

        assert first["summariesDispatched"] == 0
        assert first["results"][0]["source"] == "gemini_history_jsonl"
        assert first["results"][0]["inserted"] == 3
        assert second["results"][0]["inserted"] == 0

    def test_sync_unknown_agent_fails(self, invoke: Callable[..., Any]) -> None:
        assert invoke("sync", "copilot").exit_code == 1

    def test_hook_ingest_records_payload(self, invoke: Callable[..., Any]) -> None:
        payload = {"hook_event_name": "SessionStart", "session_id": "c1", "cwd": "/work/api"}

        result = invoke("hook-ingest", input=json.dumps(payload))

        assert result.exit_code == 0
        sessions = _json(invoke("sessions", "--json"))["sessions"]
        assert [(s["id"], s["agentKey"], s["repoPath"]) for s in sessions] == [
            ("c1", "claude", "/work/api")
        ]

    @pytest.mark.parametrize(
        "payload",
        ["", "not json", "[]", pytest.param('{"a":' + "[" * 200000, id="deeply-nested")],
    )
    def test_hook_ingest_never_fails(self, invoke: Callable[..., Any], payload: str) -> None:
        assert invoke("hook-ingest", input=payload).exit_code == 0


@pytest.mark.usefixtures("synced")
class TestReporting:
    """Test sessions, stats, resume, summarize and packs."""

    def test_sessions_filters(self, invoke: Callable[..., Any]) -> None:
        all_sessions = _json(invoke("sessions", "--json"))["sessions"]
        assert [s["id"] for s in all_sessions] == ["gemini-g2", "gemini-g1"]
        assert all_sessions[1]["durationMinutes"] == 10.0

        limited = _json(invoke("sessions", "--limit", "1", "--json"))["sessions"]
        assert [s["id"] for s in limited] == ["gemini-g2"]

        by_repo = _json(invoke("sessions", "--repo", "/work/web", "--json"))["sessions"]
        assert [s["id"] for s in by_repo] == ["gemini-g1"]

        other_agent = _json(invoke("sessions", "--agent", "codex", "--json"))["sessions"]
        assert other_agent == []

    def test_stats_json(self, invoke: Callable[..., Any]) -> None:
        stats = _json(invoke("stats", "--json"))

        assert stats["rangeLabel"] == "all"
        assert stats["summary"]["sessions"] == 2
        assert stats["summary"]["events"] == 3
        assert stats["summary"]["totalMinutes"] == 10.0
        assert {row["projectPath"] for row in stats["byProject"]} == {"/work/web", "(unknown)"}

    def test_stats_invalid_range(self, invoke: Callable[..., Any]) -> None:
        assert invoke("stats", "--range", "fortnight").exit_code == 1

    def test_stats_table_output(self, invoke: Callable[..., Any]) -> None:
        result = invoke("stats")
        assert result.exit_code == 0
        assert "Sessions: 2" in result.stdout

    def test_resume_saves_pack(self, invoke: Callable[..., Any], tmp_path: Path) -> None:
        output = tmp_path / "out" / "resume.md"

        pack = _json(invoke("resume", "--budget", "600", "--output", str(output), "--json"))

        assert pack["sourceSessionIds"] == ["gemini-g1", "gemini-g2"]
        assert pack["tokenBudget"] == 600
        assert pack["estimatedTokens"] <= 600
        assert output.read_text(encoding="utf-8").startswith("# Resume 2025-03-01 to 2025-03-02")
        packs = _json(invoke("packs", "--json"))["packs"]
        assert [p["id"] for p in packs] == [pack["id"]]

    def test_resume_explicit_refs_without_saving(self, invoke: Callable[..., Any]) -> None:
        pack = _json(invoke("resume", "latest", "--no-save", "--title", "Handoff", "--json"))

        assert pack["title"] == "Handoff"
        assert pack["sourceSessionIds"] == ["gemini-g2"]
        assert pack["id"] is None
        assert _json(invoke("packs", "--json")) == {"packs": []}

    def test_resume_unknown_ref_fails(self, invoke: Callable[..., Any]) -> None:
        assert invoke("resume", "nope").exit_code == 1

    def test_summarize_from_input_file(self, invoke: Callable[..., Any], tmp_path: Path) -> None:
        summary_file = tmp_path / "summary.json"
        summary_file.write_text(
            json.dumps({"summary": "Added caching", "primaryIntent": "coding"}),
            encoding="utf-8",
        )

        result = _json(invoke("summarize", "gemini-g1", "--input", str(summary_file), "--json"))

        assert result["status"] == "stored"
        assert result["primaryIntent"] == "coding"
        sessions = _json(invoke("sessions", "--json"))["sessions"]
        g1 = next(s for s in sessions if s["id"] == "gemini-g1")
        assert g1["hasCapsule"] is True
        assert g1["intentLabel"] == "coding"

    def test_summarize_without_summarizer_is_skipped(self, invoke: Callable[..., Any]) -> None:
        result = _json(invoke("summarize", "--json"))
        assert result == {
            "status": "skipped",
            "sessionId": None,
            "reason": "summarizer_not_configured",
        }

    def test_summarize_missing_input_file(self, invoke: Callable[..., Any], tmp_path: Path) -> None:
        result = invoke("summarize", "--input", str(tmp_path / "missing.json"))
        assert result.exit_code == 1


class TestEmptyLedger:
    def test_resume_with_no_sessions_fails(self, invoke: Callable[..., Any]) -> None:
        assert invoke("resume").exit_code == 1

    def test_sessions_empty(self, invoke: Callable[..., Any]) -> None:
        result = invoke("sessions")
        assert result.exit_code == 0
        assert "No sessions recorded yet" in result.stdout
