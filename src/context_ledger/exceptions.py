"""Custom exceptions for context-ledger.

Exception hierarchy:
    LedgerError (base)
    ├── ConfigurationError
    │   └── ValidationError
    ├── SessionNotFoundError
    └── SummarizationError

Storage failures are not wrapped: ``sqlite3.Error`` propagates from the
store call that failed after its transaction has been rolled back.
"""

from pathlib import Path
from typing import Any


class LedgerError(Exception):
    """Base exception for all context-ledger errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(LedgerError):
    """Raised when configuration is invalid or cannot be written."""

    def __init__(
        self,
        message: str,
        config_file: Path | None = None,
        key: str | None = None,
    ):
        details: dict[str, Any] = {}
        if config_file:
            details["config_file"] = str(config_file)
        if key:
            details["key"] = key
        super().__init__(message, details)
        self.config_file = config_file
        self.key = key


class ValidationError(ConfigurationError):
    """Raised when a user-supplied value fails validation.

    Examples:
        - Unparseable time range label
        - Unknown agent name
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
    ):
        super().__init__(message, key=field)
        if value is not None:
            self.details["value"] = value
        if expected:
            self.details["expected"] = expected
        self.field = field
        self.value = value
        self.expected = expected


# =============================================================================
# Lookup / Summarization Errors
# =============================================================================


class SessionNotFoundError(LedgerError):
    """Raised when a session reference does not resolve to a stored session."""

    def __init__(self, session_ref: str):
        super().__init__("Session not found", {"session": session_ref})
        self.session_ref = session_ref


class SummarizationError(LedgerError):
    """Raised when the external summarizer cannot produce output."""
