"""Main CLI entry point for context-ledger."""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from rich.table import Table

from context_ledger import __version__
from context_ledger.analytics import (
    SessionFilter,
    get_usage_stats,
    list_sessions,
    load_resume_contexts,
    resolve_range,
    select_recent_session_ids,
)
from context_ledger.config import (
    SummarizerConfig,
    expand_path,
    get_config_path,
    load_config,
    save_config,
)
from context_ledger.constants import (
    AGENT_KEY_CLAUDE,
    AGENT_KEY_CODEX,
    AGENT_KEY_GEMINI,
    DEFAULT_RESUME_SESSION_COUNT,
    DEFAULT_SESSION_LIST_LIMIT,
    DEFAULT_TOKEN_BUDGET,
    LATEST_SESSION_REF,
    RANGE_ALL,
    SUMMARIZE_STATUS_FAILED,
    SUMMARIZE_STATUS_SKIPPED,
    SUMMARIZE_STATUS_STORED,
)
from context_ledger.exceptions import LedgerError, ValidationError
from context_ledger.ingest import (
    SyncResult,
    enable_claude,
    enable_codex,
    enable_gemini,
    ingest_hook_payload,
    sync_claude_transcripts,
    sync_codex,
    sync_gemini,
)
from context_ledger.logging_config import configure_hooks_logger, configure_logging
from context_ledger.models.enums import SyncStatus
from context_ledger.resume import build_resume_pack, save_resume_pack
from context_ledger.settings import LedgerSettings, resolve_db_path
from context_ledger.store import LedgerStore
from context_ledger.summarization import (
    StaticOutputSummarizer,
    create_summarizer,
    dispatch_summary_jobs,
    summarize_session,
)
from context_ledger.utils import (
    console,
    print_error,
    print_info,
    print_json,
    print_success,
    print_warning,
)

# Load .env file from current directory if it exists
load_dotenv(Path.cwd() / ".env", verbose=False)

app = typer.Typer(
    name="ctx-ledger",
    help="Local-first session analytics and memory handoff for coding agents.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

SUPPORTED_AGENTS = (AGENT_KEY_CLAUDE, AGENT_KEY_CODEX, AGENT_KEY_GEMINI)
_AGENT_INPUT_ALIASES = {"claude-code": AGENT_KEY_CLAUDE, "gemini-cli": AGENT_KEY_GEMINI}


@dataclass
class CliState:
    settings: LedgerSettings
    data_dir: Path

    @property
    def db_path(self) -> Path:
        return resolve_db_path(self.data_dir)

    def open_store(self) -> LedgerStore:
        return LedgerStore(self.db_path, busy_timeout=self.settings.busy_timeout_seconds)


def _load_settings() -> LedgerSettings:
    try:
        return LedgerSettings()
    except PydanticValidationError as e:
        print_warning(f"Ignoring invalid CTX_LEDGER_ environment settings: {e}")
        return LedgerSettings.model_construct()


def _state(ctx: typer.Context) -> CliState:
    state: CliState = ctx.obj
    return state


def _fail(message: str) -> NoReturn:
    print_error(message)
    raise typer.Exit(code=1)


def _normalize_agent(agent: str) -> str:
    key = agent.strip().lower()
    key = _AGENT_INPUT_ALIASES.get(key, key)
    if key not in SUPPORTED_AGENTS:
        raise ValidationError(
            f"Unknown agent: {agent}",
            field="agent",
            value=agent,
            expected=", ".join(SUPPORTED_AGENTS),
        )
    return key


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        "-d",
        help="Data directory (default: ~/.context-ledger or CTX_LEDGER_DATA_DIR)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Local-first session analytics and memory handoff for coding agents."""
    settings = _load_settings()
    resolved = (data_dir or settings.data_dir).expanduser()
    configure_logging(
        "DEBUG" if verbose else settings.log_level,
        settings.log_file,
        settings.log_max_bytes,
        settings.log_backup_count,
    )
    ctx.obj = CliState(settings=settings, data_dir=resolved)


@app.command("version")
def version() -> None:
    """Show the installed version."""
    console.print(f"ctx-ledger {__version__}")


@app.command("init")
def init(
    ctx: typer.Context,
    capture_prompts: bool | None = typer.Option(
        None,
        "--capture-prompts/--no-capture-prompts",
        help="Store (redacted) prompt text",
    ),
    summarizer_command: str | None = typer.Option(
        None,
        "--summarizer-command",
        help="Command that reads a summary prompt on stdin and prints JSON",
    ),
    remote_summarizer: bool = typer.Option(
        False,
        "--remote-summarizer",
        help="Mark the summarizer command as sending prompts off this machine",
    ),
) -> None:
    """Initialize the local data store and config.json."""
    state = _state(ctx)
    try:
        with state.open_store() as store:
            schema_version = store.get_schema_version()
        config = load_config(state.data_dir)
        if capture_prompts is not None:
            config.privacy.capture_prompts = capture_prompts
        if summarizer_command:
            config.summarizer = SummarizerConfig(
                command=summarizer_command, remote=remote_summarizer
            )
            create_summarizer(config.summarizer)
        config_path = save_config(config, state.data_dir)
    except LedgerError as e:
        _fail(str(e))

    print_success("ContextLedger initialized")
    console.print(f"  Data directory: {state.data_dir}")
    console.print(f"  Database: {state.db_path} (schema v{schema_version})")
    console.print(f"  Config: {config_path}")


@app.command("doctor")
def doctor(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show installation, datastore and integration status."""
    state = _state(ctx)
    config = load_config(state.data_dir)
    report: dict[str, Any] = {
        "dataDir": str(state.data_dir),
        "configPath": str(get_config_path(state.data_dir)),
        "database": None,
        "integrations": {},
        "summarizer": None,
    }
    if state.db_path.exists():
        with state.open_store() as store:
            report["database"] = store.inspect()

    integrations = config.integrations
    if integrations.claude is not None:
        report["integrations"]["claude"] = {
            "enabled": integrations.claude.enabled,
            "projectsPath": integrations.claude.projects_path,
            "exists": expand_path(integrations.claude.projects_path).is_dir(),
            "backfillComplete": integrations.claude.backfill_complete,
            "trackedFiles": len(integrations.claude.session_file_cursors),
        }
    if integrations.codex is not None:
        report["integrations"]["codex"] = {
            "enabled": integrations.codex.enabled,
            "historyPath": integrations.codex.history_path,
            "historyExists": expand_path(integrations.codex.history_path).is_file(),
            "sessionsPath": integrations.codex.sessions_path,
            "sessionsExist": expand_path(integrations.codex.sessions_path).is_dir(),
            "trackedFiles": len(integrations.codex.session_file_cursors),
        }
    if integrations.gemini is not None:
        report["integrations"]["gemini"] = {
            "enabled": integrations.gemini.enabled,
            "historyPath": integrations.gemini.history_path,
            "exists": expand_path(integrations.gemini.history_path).is_file(),
            "cursor": integrations.gemini.cursor,
        }
    if config.summarizer is not None and config.summarizer.command.strip():
        summarizer_report: dict[str, Any] = {
            "command": config.summarizer.command,
            "remote": config.summarizer.remote,
        }
        try:
            summarizer = create_summarizer(config.summarizer)
        except LedgerError as e:
            summarizer_report.update({"available": False, "error": str(e)})
        else:
            summarizer_report["available"] = summarizer is not None and summarizer.is_available()
        report["summarizer"] = summarizer_report

    if json_output:
        print_json(report)
        return

    console.print(f"[bold]Data directory:[/bold] {report['dataDir']}")
    console.print(f"[bold]Config:[/bold] {report['configPath']}")
    database = report["database"]
    if database is None:
        print_warning("Database not initialized yet. Run: ctx-ledger init")
    else:
        console.print(
            f"[bold]Database:[/bold] {database['dbPath']} "
            f"(schema v{database['schemaVersion']})"
        )
        for table_name, count in database["counts"].items():
            console.print(f"  {table_name}: {count}")
    if not report["integrations"]:
        print_info("No integrations enabled. Run: ctx-ledger enable <agent>")
    for name, details in report["integrations"].items():
        console.print(f"[bold]{name}[/bold]: {details}")
    if report["summarizer"] is None:
        print_info("No summarizer configured; capsules are not generated automatically")
    else:
        console.print(f"[bold]Summarizer:[/bold] {report['summarizer']}")


@app.command("enable")
def enable(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent to enable: claude, codex or gemini"),
    path: str | None = typer.Option(
        None,
        "--path",
        help="History file (codex/gemini) or projects directory (claude)",
    ),
    sessions_path: str | None = typer.Option(
        None, "--sessions-path", help="Codex rollout sessions directory"
    ),
) -> None:
    """Enable ingestion for an agent, keeping existing cursors."""
    state = _state(ctx)
    try:
        key = _normalize_agent(agent)
        if key == AGENT_KEY_CLAUDE:
            claude = enable_claude(state.data_dir, path)
            location = claude.projects_path
        elif key == AGENT_KEY_CODEX:
            codex = enable_codex(state.data_dir, path, sessions_path)
            location = f"{codex.sessions_path}, {codex.history_path}"
        else:
            gemini = enable_gemini(state.data_dir, path)
            location = gemini.history_path
    except LedgerError as e:
        _fail(str(e))
    print_success(f"Enabled {key} ingestion ({location})")


def _enabled_agents(state: CliState) -> list[str]:
    integrations = load_config(state.data_dir).integrations
    enabled = []
    for key, integration in (
        (AGENT_KEY_CLAUDE, integrations.claude),
        (AGENT_KEY_CODEX, integrations.codex),
        (AGENT_KEY_GEMINI, integrations.gemini),
    ):
        if integration is not None and integration.enabled:
            enabled.append(key)
    return enabled


def _run_sync(store: LedgerStore, data_dir: Path, key: str, force: bool) -> SyncResult:
    if key == AGENT_KEY_CLAUDE:
        return sync_claude_transcripts(store, data_dir, force=force)
    if key == AGENT_KEY_CODEX:
        return sync_codex(store, data_dir)
    return sync_gemini(store, data_dir)


@app.command("sync")
def sync(
    ctx: typer.Context,
    agent: str | None = typer.Argument(None, help="Only sync this agent"),
    force: bool = typer.Option(False, "--force", "-f", help="Rescan completed backfills"),
    summarize: bool = typer.Option(
        True, "--summarize/--no-summarize", help="Dispatch background summaries"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Ingest new activity from enabled agents."""
    state = _state(ctx)
    try:
        agents = [_normalize_agent(agent)] if agent else _enabled_agents(state)
    except LedgerError as e:
        _fail(str(e))
    if not agents:
        if json_output:
            print_json({"results": []})
        else:
            print_info("No integrations enabled. Run: ctx-ledger enable <agent>")
        return

    results: list[SyncResult] = []
    with state.open_store() as store:
        for key in agents:
            results.append(_run_sync(store, state.data_dir, key, force))

    summary_ids = [sid for result in results for sid in result.summary_session_ids]
    dispatched = 0
    config = load_config(state.data_dir)
    if summarize and summary_ids and config.summarizer and config.summarizer.auto_summarize:
        dispatched = dispatch_summary_jobs(summary_ids, state.data_dir)

    if json_output:
        print_json({"results": [r.to_dict() for r in results], "summariesDispatched": dispatched})
        return
    for result in results:
        if result.status is SyncStatus.SKIPPED:
            print_info(f"{result.source}: skipped ({result.reason})")
        else:
            print_success(
                f"{result.source}: inserted {result.inserted}, skipped {result.skipped}, "
                f"sessions {len(result.touched_session_ids)}"
            )
    if dispatched:
        print_info(f"Dispatched {dispatched} background summaries")


@app.command("hook-ingest")
def hook_ingest(ctx: typer.Context) -> None:
    """Record one Claude Code hook payload read from stdin (never fails)."""
    state = _state(ctx)
    configure_hooks_logger(
        state.data_dir, state.settings.log_max_bytes, state.settings.log_backup_count
    )
    try:
        raw = sys.stdin.read()
    except (OSError, UnicodeDecodeError):
        return
    result = ingest_hook_payload(raw, state.data_dir, state.settings.busy_timeout_seconds)
    if result is None or not result.session_ended:
        return
    config = load_config(state.data_dir)
    if config.summarizer and config.summarizer.auto_summarize:
        dispatch_summary_jobs([result.session_id], state.data_dir)


@app.command("sessions")
def sessions(
    ctx: typer.Context,
    limit: int = typer.Option(DEFAULT_SESSION_LIST_LIMIT, "--limit", "-n", min=1),
    agent: list[str] = typer.Option(None, "--agent", "-a", help="Filter by agent (repeatable)"),
    since: str = typer.Option(RANGE_ALL, "--range", "-r", help="all, today, <N>h, <N>d, <N>w"),
    repo: str | None = typer.Option(None, "--repo", help="Filter by repository path"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List recorded sessions, newest first."""
    state = _state(ctx)
    try:
        session_filter = SessionFilter(
            limit=limit, since=resolve_range(since), agents=agent or [], repo_path=repo
        )
        with state.open_store() as store:
            items = list_sessions(store, session_filter)
    except LedgerError as e:
        _fail(str(e))

    if json_output:
        print_json({"sessions": [item.to_dict() for item in items]})
        return
    if not items:
        print_info("No sessions recorded yet")
        return
    table = Table(title="Sessions")
    table.add_column("Session")
    table.add_column("Agent")
    table.add_column("Started")
    table.add_column("Minutes", justify="right")
    table.add_column("Intent")
    table.add_column("Repo")
    table.add_column("Capsule", justify="center")
    for item in items:
        intent = item.intent_label or "-"
        if item.intent_confidence is not None:
            intent = f"{intent} ({item.intent_confidence:.2f})"
        table.add_row(
            item.id,
            item.agent_display,
            item.started_at,
            f"{item.duration_minutes:.1f}",
            intent,
            item.repo_path or "-",
            "✓" if item.has_capsule else "",
        )
    console.print(table)


@app.command("stats")
def stats(
    ctx: typer.Context,
    range_label: str = typer.Option(
        RANGE_ALL, "--range", "-r", help="all, today, <N>h, <N>d, <N>w"
    ),
    agent: list[str] = typer.Option(None, "--agent", "-a", help="Filter by agent (repeatable)"),
    repo: str | None = typer.Option(None, "--repo", help="Filter by repository path"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show usage analytics."""
    state = _state(ctx)
    try:
        with state.open_store() as store:
            usage = get_usage_stats(
                store, range_label, SessionFilter(agents=agent or [], repo_path=repo)
            )
    except LedgerError as e:
        _fail(str(e))

    if json_output:
        print_json(usage.to_dict())
        return
    summary = usage.summary
    console.print(f"[bold]Usage ({usage.range_label})[/bold]")
    console.print(
        f"  Sessions: {summary.sessions}  Events: {summary.events}  "
        f"Tool calls: {summary.tool_calls}"
    )
    console.print(
        f"  Total: {summary.total_minutes} min  Planning: {summary.planning_minutes} min  "
        f"Execution: {summary.execution_minutes} min"
    )
    for title, rows, label_key in (
        ("By intent", usage.by_intent, "label"),
        ("By agent", usage.by_agent, "agentDisplay"),
        ("By project", usage.by_project, "projectPath"),
        ("By day", usage.by_day, "day"),
    ):
        if not rows:
            continue
        table = Table(title=title)
        table.add_column(label_key)
        table.add_column("Sessions", justify="right")
        table.add_column("Minutes", justify="right")
        for row in rows:
            table.add_row(str(row[label_key]), str(row["sessions"]), str(row["totalMinutes"]))
        console.print(table)
    if usage.by_tool:
        table = Table(title="By tool")
        table.add_column("Tool")
        table.add_column("Calls", justify="right")
        table.add_column("OK", justify="right")
        table.add_column("Seconds", justify="right")
        for row in usage.by_tool:
            table.add_row(
                row["toolName"],
                str(row["calls"]),
                str(row["successCalls"]),
                str(row["totalSeconds"]),
            )
        console.print(table)


@app.command("resume")
def resume(
    ctx: typer.Context,
    session_refs: list[str] = typer.Argument(None, help="Session ids or 'latest'"),
    last: int = typer.Option(
        DEFAULT_RESUME_SESSION_COUNT, "--last", min=1, help="Use the N most recent sessions"
    ),
    agent: list[str] = typer.Option(None, "--agent", "-a", help="Filter recent sessions by agent"),
    repo: str | None = typer.Option(None, "--repo", help="Filter recent sessions by repository"),
    budget: int = typer.Option(DEFAULT_TOKEN_BUDGET, "--budget", "-b", help="Token budget"),
    title: str | None = typer.Option(None, "--title", help="Pack title"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write markdown to a file"),
    save: bool = typer.Option(True, "--save/--no-save", help="Persist the pack in the ledger"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Build a token-budgeted resume pack from recent sessions."""
    state = _state(ctx)
    try:
        with state.open_store() as store:
            refs = session_refs or select_recent_session_ids(store, last, agent or [], repo)
            if not refs:
                _fail("No sessions recorded yet")
            contexts = load_resume_contexts(store, refs)
            result = build_resume_pack(contexts, title=title, token_budget=budget)
            if save:
                save_resume_pack(store, result)
    except LedgerError as e:
        _fail(str(e))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.markdown + "\n", encoding="utf-8")
    if json_output:
        print_json(result.to_dict())
    elif output is not None:
        print_success(f"Wrote {result.title} to {output} (~{result.estimated_tokens} tokens)")
    else:
        console.print(result.markdown, markup=False, highlight=False)


@app.command("summarize")
def summarize(
    ctx: typer.Context,
    session_ref: str = typer.Argument(LATEST_SESSION_REF, help="Session id or 'latest'"),
    input_file: Path | None = typer.Option(
        None,
        "--input",
        "-i",
        help="Use pre-produced summarizer JSON from a file instead of the configured command",
    ),
    source: str | None = typer.Option(None, "--source", help="Label source to replace"),
    skip_if_fresh: bool = typer.Option(
        False, "--skip-if-fresh", help="Skip when the capsule is newer than the last event"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Summarize a session into a capsule, intent label and task split."""
    state = _state(ctx)
    config = load_config(state.data_dir)
    summarizer = None
    if input_file is not None:
        try:
            summarizer = StaticOutputSummarizer(input_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            _fail(f"Failed to read {input_file}: {e}")

    with state.open_store() as store:
        result = summarize_session(
            store,
            config,
            session_ref,
            summarizer=summarizer,
            source=source,
            skip_if_fresh=skip_if_fresh,
        )

    if json_output:
        print_json(result.to_dict())
    elif result.status == SUMMARIZE_STATUS_STORED:
        print_success(f"Stored summary for {result.session_id} (intent: {result.primary_intent})")
    elif result.status == SUMMARIZE_STATUS_SKIPPED:
        print_info(f"Skipped: {result.reason}")
    else:
        print_error(f"Summarization failed for {result.session_id}: {result.error}")
    if result.status == SUMMARIZE_STATUS_FAILED:
        raise typer.Exit(code=1)


@app.command("packs")
def packs(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List saved resume packs, newest first."""
    state = _state(ctx)
    with state.open_store() as store:
        records = store.list_resume_packs(limit)
    if json_output:
        print_json(
            {
                "packs": [
                    {
                        "id": record.id,
                        "title": record.title,
                        "sourceSessionIds": record.source_session_ids,
                        "tokenBudget": record.token_budget,
                        "createdAt": record.created_at,
                    }
                    for record in records
                ]
            }
        )
        return
    if not records:
        print_info("No resume packs saved yet")
        return
    table = Table(title="Resume packs")
    table.add_column("Pack")
    table.add_column("Title")
    table.add_column("Sessions", justify="right")
    table.add_column("Budget", justify="right")
    table.add_column("Created")
    for record in records:
        table.add_row(
            record.id,
            record.title,
            str(len(record.source_session_ids)),
            str(record.token_budget),
            record.created_at,
        )
    console.print(table)


if __name__ == "__main__":
    app()
