"""Pytest configuration and fixtures for context-ledger tests."""

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from context_ledger.config import PrivacyConfig
from context_ledger.constants import AGENT_CLAUDE, PROVIDER_ANTHROPIC
from context_ledger.models.enums import EventType, SessionStatus
from context_ledger.settings import resolve_db_path
from context_ledger.store import LedgerStore, RecordEventInput, ToolCallInput


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Ledger data directory (config.json, database, logs).

    Returns:
        Path to a not-yet-created data directory
    """
    return tmp_path / "ledger-data"


@pytest.fixture
def store(data_dir: Path) -> Iterator[LedgerStore]:
    """Create a fresh ledger store for testing.

    Yields:
        Open LedgerStore backed by a temporary database
    """
    ledger = LedgerStore(resolve_db_path(data_dir))
    try:
        yield ledger
    finally:
        ledger.close()


@pytest.fixture
def capture_privacy() -> PrivacyConfig:
    """Privacy settings that keep (redacted) prompt text."""
    return PrivacyConfig(capture_prompts=True)


@pytest.fixture
def write_jsonl() -> Callable[..., Path]:
    """Return a helper writing records as JSON lines.

    Records may be dicts (serialized) or raw strings (written verbatim, for
    malformed lines). ``append=True`` extends an existing file.
    """

    def _write(path: Path, records: list[Any], append: bool = False) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        with open(path, "a" if append else "w", encoding="utf-8", newline="") as f:
            for line in lines:
                f.write(line + "\n")
        return path

    return _write


@pytest.fixture
def record(store: LedgerStore) -> Callable[..., str]:
    """Return a helper that records one event with sensible defaults."""

    def _record(
        session_id: str,
        timestamp: str,
        event_type: EventType = EventType.REQUEST_SENT,
        agent: str = AGENT_CLAUDE,
        provider: str = PROVIDER_ANTHROPIC,
        repo_path: str | None = None,
        branch: str | None = None,
        payload: dict[str, Any] | None = None,
        session_status: SessionStatus | None = None,
        tool_call: ToolCallInput | None = None,
    ) -> str:
        return store.record_event(
            RecordEventInput(
                session_id=session_id,
                provider=provider,
                agent=agent,
                event_type=event_type,
                timestamp=timestamp,
                repo_path=repo_path,
                branch=branch,
                payload=payload or {},
                session_status=session_status,
                tool_call=tool_call,
            )
        )

    return _record
