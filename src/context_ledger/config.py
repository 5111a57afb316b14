"""Persisted configuration and integration state (``config.json``).

The document stores privacy options, the optional summarizer command and,
per agent integration, the crash-safe ingestion state: byte cursors, per-file
session state and open tool-call queues. Keys are camelCase on disk.

Loading never fails: an unreadable document yields defaults, an invalid
section is dropped (or reset to defaults) with a warning, and invalid cursors
are normalized to 0.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from context_ledger.constants import (
    CONFIG_FILENAME,
    CONFIG_VERSION,
    DEFAULT_CLAUDE_PROJECTS_DIR,
    DEFAULT_CODEX_HISTORY_PATH,
    DEFAULT_CODEX_SESSIONS_DIR,
    DEFAULT_GEMINI_HISTORY_PATH,
    DEFAULT_SUMMARIZER_TIMEOUT_SECONDS,
)
from context_ledger.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def normalize_cursor(value: Any) -> int:
    """Return a valid byte cursor (non-negative int), else 0."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def expand_path(value: str | Path) -> Path:
    return Path(os.path.expandvars(str(value))).expanduser()


class _StateModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PrivacyConfig(_StateModel):
    """Privacy options applied to every captured prompt."""

    capture_prompts: bool = Field(default=False, description="Store prompt text (redacted)")
    redact_secrets: bool = Field(default=True, description="Apply built-in secret patterns")
    redact_emails: bool = Field(default=False, description="Redact e-mail addresses")
    additional_redaction_patterns: list[str] = Field(
        default_factory=list,
        description="Extra case-insensitive regexes; invalid ones are ignored",
    )
    patterns_file: str | None = Field(
        default=None,
        description="Optional YAML file of additional named patterns",
    )
    allow_remote_prompt_transfer: bool = Field(
        default=False,
        description="Allow prompt samples to be sent to a remote summarizer",
    )

    @field_validator("additional_redaction_patterns", mode="before")
    @classmethod
    def _keep_string_patterns(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str) and item.strip()]


class SummarizerConfig(_StateModel):
    """External summarizer command (reads the prompt on stdin, prints JSON)."""

    command: str = Field(description="Command line of the summarizer")
    timeout_seconds: float = Field(default=DEFAULT_SUMMARIZER_TIMEOUT_SECONDS, gt=0)
    remote: bool = Field(
        default=False,
        description="True when the command forwards prompts to a remote service",
    )
    auto_summarize: bool = Field(
        default=True,
        description="Dispatch background summaries after each sync",
    )


class OpenToolCallState(_StateModel):
    """A tool invocation start waiting for its matching end."""

    tool_name: str
    started_at: str


class SessionFileState(_StateModel):
    """Best-known session facts for one source file, carried across runs."""

    session_id: str | None = None
    repo_path: str | None = None
    branch: str | None = None
    started: bool = False
    # Session already recorded live by hooks; transcript lines are not replayed
    hook_captured: bool = False


class _FileTrackingMixin(_StateModel):
    session_file_cursors: dict[str, int] = Field(default_factory=dict)
    session_file_state: dict[str, SessionFileState] = Field(default_factory=dict)
    open_tool_calls: dict[str, dict[str, list[OpenToolCallState]]] = Field(default_factory=dict)

    @field_validator("session_file_cursors", mode="before")
    @classmethod
    def _normalize_cursors(cls, value: Any) -> dict[str, int]:
        if not isinstance(value, dict):
            return {}
        return {str(path): normalize_cursor(cursor) for path, cursor in value.items()}

    @field_validator("session_file_state", mode="before")
    @classmethod
    def _drop_invalid_state(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {str(path): state for path, state in value.items() if isinstance(state, dict)}

    @field_validator("open_tool_calls", mode="before")
    @classmethod
    def _drop_invalid_queues(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        cleaned: dict[str, Any] = {}
        for path, queues in value.items():
            if not isinstance(queues, dict):
                continue
            file_queues = {}
            for key, entries in queues.items():
                if not isinstance(entries, list):
                    continue
                valid = [
                    entry
                    for entry in entries
                    if isinstance(entry, dict)
                    and isinstance(entry.get("toolName", entry.get("tool_name")), str)
                    and isinstance(entry.get("startedAt", entry.get("started_at")), str)
                ]
                if valid:
                    file_queues[str(key)] = valid
            if file_queues:
                cleaned[str(path)] = file_queues
        return cleaned

    def forget_file(self, path: str) -> None:
        self.session_file_cursors.pop(path, None)
        self.session_file_state.pop(path, None)
        self.open_tool_calls.pop(path, None)


class ClaudeIntegrationConfig(_FileTrackingMixin):
    """Claude Code transcript backfill state."""

    enabled: bool = True
    projects_path: str = DEFAULT_CLAUDE_PROJECTS_DIR
    backfill_complete: bool = False


class CodexIntegrationConfig(_FileTrackingMixin):
    """Codex rollout files plus flat history fallback."""

    enabled: bool = True
    history_path: str = DEFAULT_CODEX_HISTORY_PATH
    cursor: int = 0
    sessions_path: str = DEFAULT_CODEX_SESSIONS_DIR

    @field_validator("cursor", mode="before")
    @classmethod
    def _normalize_cursor(cls, value: Any) -> int:
        return normalize_cursor(value)


class GeminiIntegrationConfig(_StateModel):
    """Gemini flat prompt-history log."""

    enabled: bool = True
    history_path: str = DEFAULT_GEMINI_HISTORY_PATH
    cursor: int = 0

    @field_validator("cursor", mode="before")
    @classmethod
    def _normalize_cursor(cls, value: Any) -> int:
        return normalize_cursor(value)


class IntegrationsConfig(_StateModel):
    claude: ClaudeIntegrationConfig | None = None
    codex: CodexIntegrationConfig | None = None
    gemini: GeminiIntegrationConfig | None = None


class LedgerConfig(_StateModel):
    """Root of config.json."""

    version: int = CONFIG_VERSION
    summarizer: SummarizerConfig | None = None
    privacy: PrivacyConfig = Field(default_factory=PrivacyConfig)
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)


def get_config_path(data_dir: Path) -> Path:
    return data_dir / CONFIG_FILENAME


def _validate_section(
    model_cls: type[ModelT], raw: Any, section: str, config_path: Path
) -> ModelT | None:
    """Validate one section of the document, returning None when unusable."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring non-object '{section}' section in {config_path}")
        return None
    try:
        return model_cls.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring invalid '{section}' section in {config_path}: {e}")
        return None


def load_config(data_dir: Path) -> LedgerConfig:
    """Load config.json, falling back to defaults on any problem.

    Args:
        data_dir: Ledger data directory.

    Returns:
        Normalized configuration (never raises for bad content).
    """
    config_path = get_config_path(data_dir)
    if not config_path.exists():
        return LedgerConfig()

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read {config_path}, using defaults: {e}")
        return LedgerConfig()

    if not isinstance(raw, dict):
        logger.warning(f"{config_path} is not a JSON object, using defaults")
        return LedgerConfig()

    raw_integrations = raw.get("integrations")
    if not isinstance(raw_integrations, dict):
        raw_integrations = {}

    privacy = _validate_section(PrivacyConfig, raw.get("privacy"), "privacy", config_path)
    version = raw.get("version")
    return LedgerConfig(
        version=version if isinstance(version, int) and not isinstance(version, bool) else 1,
        summarizer=_validate_section(
            SummarizerConfig, raw.get("summarizer"), "summarizer", config_path
        ),
        privacy=privacy or PrivacyConfig(),
        integrations=IntegrationsConfig(
            claude=_validate_section(
                ClaudeIntegrationConfig,
                raw_integrations.get("claude"),
                "integrations.claude",
                config_path,
            ),
            codex=_validate_section(
                CodexIntegrationConfig,
                raw_integrations.get("codex"),
                "integrations.codex",
                config_path,
            ),
            gemini=_validate_section(
                GeminiIntegrationConfig,
                raw_integrations.get("gemini"),
                "integrations.gemini",
                config_path,
            ),
        ),
    )


def save_config(config: LedgerConfig, data_dir: Path) -> Path:
    """Atomically write config.json (temp file + rename).

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    config_path = get_config_path(data_dir)
    payload = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.write("\n")
            os.replace(tmp_name, config_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise ConfigurationError(f"Failed to write config: {e}", config_file=config_path) from e
    return config_path
