"""Runtime settings for context-ledger.

Uses Pydantic Settings so every value can be overridden with a
``CTX_LEDGER_`` prefixed environment variable (or a ``.env`` file loaded by
the CLI).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_ledger.constants import (
    DB_FILENAME,
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    DEFAULT_DATA_DIR_NAME,
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_MAX_BYTES,
)


class LedgerSettings(BaseSettings):
    """Process-level settings.

    Can be overridden via environment variables with CTX_LEDGER_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="CTX_LEDGER_")

    data_dir: Path = Field(
        default_factory=lambda: Path.home() / DEFAULT_DATA_DIR_NAME,
        description="Directory holding the database, config.json and logs",
    )
    log_level: str = Field(default="WARNING", description="Log level for the CLI")
    log_file: Path | None = Field(
        default=None,
        description="Optional log file (rotated); stderr is used when unset",
    )
    log_max_bytes: int = Field(default=DEFAULT_LOG_MAX_BYTES, ge=1024)
    log_backup_count: int = Field(default=DEFAULT_LOG_BACKUP_COUNT, ge=0)
    busy_timeout_seconds: float = Field(
        default=DEFAULT_BUSY_TIMEOUT_SECONDS,
        gt=0,
        description="How long a writer waits for the SQLite write lock",
    )


def resolve_db_path(data_dir: Path) -> Path:
    return data_dir / DB_FILENAME
