"""Constants for context-ledger.

Centralizes file names, source identifiers, field-name fallbacks and the
tuning values used by analytics and the resume pack builder.
"""

from typing import Final

# =============================================================================
# Paths and file names
# =============================================================================

DEFAULT_DATA_DIR_NAME: Final[str] = ".context-ledger"
DB_FILENAME: Final[str] = "context-ledger.db"
CONFIG_FILENAME: Final[str] = "config.json"
HOOKS_LOG_FILENAME: Final[str] = "hooks.log"
CONFIG_VERSION: Final[int] = 1

DEFAULT_CLAUDE_PROJECTS_DIR: Final[str] = "~/.claude/projects"
DEFAULT_CODEX_HISTORY_PATH: Final[str] = "~/.codex/history.jsonl"
DEFAULT_CODEX_SESSIONS_DIR: Final[str] = "~/.codex/sessions"
DEFAULT_GEMINI_HISTORY_PATH: Final[str] = "~/.gemini/history.jsonl"

CODEX_ROLLOUT_GLOB: Final[str] = "rollout-*.jsonl"
TRANSCRIPT_GLOB: Final[str] = "*.jsonl"

# =============================================================================
# Providers, agents and sources
# =============================================================================

PROVIDER_ANTHROPIC: Final[str] = "anthropic"
PROVIDER_OPENAI: Final[str] = "openai"
PROVIDER_GOOGLE: Final[str] = "google"

AGENT_CLAUDE: Final[str] = "claude-code"
AGENT_CODEX: Final[str] = "codex"
AGENT_GEMINI: Final[str] = "gemini"

SOURCE_CLAUDE_HOOK: Final[str] = "claude_hook"
SOURCE_CLAUDE_TRANSCRIPT: Final[str] = "claude_transcript_jsonl"
SOURCE_CODEX_HISTORY: Final[str] = "codex_history_jsonl"
SOURCE_CODEX_SESSIONS: Final[str] = "codex_sessions_jsonl"
SOURCE_GEMINI_HISTORY: Final[str] = "gemini_history_jsonl"

SESSION_PREFIX_CLAUDE: Final[str] = "claude-"
SESSION_PREFIX_CODEX: Final[str] = "codex-"
SESSION_PREFIX_GEMINI: Final[str] = "gemini-"

# Hook correlation scopes are stored per session in tool_call_queue
HOOK_SCOPE_PREFIX: Final[str] = "hook:"

# Normalized agent keys and their display names / raw aliases
AGENT_KEY_CLAUDE: Final[str] = "claude"
AGENT_KEY_CODEX: Final[str] = "codex"
AGENT_KEY_GEMINI: Final[str] = "gemini"
AGENT_ALIASES: Final[dict[str, tuple[str, ...]]] = {
    AGENT_KEY_CLAUDE: ("claude", "claude-code"),
    AGENT_KEY_CODEX: ("codex",),
    AGENT_KEY_GEMINI: ("gemini", "gemini-cli"),
}
AGENT_DISPLAY_NAMES: Final[dict[str, str]] = {
    AGENT_KEY_CLAUDE: "Claude Code",
    AGENT_KEY_CODEX: "Codex",
    AGENT_KEY_GEMINI: "Gemini",
}

# =============================================================================
# Field-name fallbacks for flat prompt logs
# =============================================================================

REPO_PATH_KEYS: Final[tuple[str, ...]] = (
    "cwd",
    "repo_path",
    "repoPath",
    "workspace",
    "workspace_path",
    "project_path",
    "projectPath",
)
SESSION_ID_KEYS: Final[tuple[str, ...]] = ("session_id", "sessionId", "conversation_id", "chat_id")
PROMPT_TEXT_KEYS: Final[tuple[str, ...]] = ("text", "prompt", "input", "message")
TIMESTAMP_KEYS: Final[tuple[str, ...]] = ("ts", "timestamp", "created_at", "createdAt", "time")
BRANCH_KEYS: Final[tuple[str, ...]] = ("branch", "current_branch", "currentBranch", "name")

# Epoch values above this are milliseconds, below are seconds
EPOCH_MILLIS_THRESHOLD: Final[float] = 1e12

# =============================================================================
# Tool calls
# =============================================================================

UNKNOWN_TOOL_NAME: Final[str] = "unknown"
PROCESS_EXIT_PATTERN: Final[str] = r"Process exited with code\s+(-?\d+)"
TOOL_FAILURE_MARKERS: Final[tuple[str, ...]] = (
    "<tool_use_error>",
    "Traceback (most recent call last)",
)
TOOL_FAILURE_PREFIXES: Final[tuple[str, ...]] = ("error:", "fatal:")

# =============================================================================
# Analytics
# =============================================================================

UNKNOWN_PROJECT_LABEL: Final[str] = "(unknown)"
UNLABELED_INTENT: Final[str] = "unlabeled"
MINUTES_PRECISION: Final[int] = 2
RATIO_PRECISION: Final[int] = 3
DEFAULT_SESSION_LIST_LIMIT: Final[int] = 50

SQL_INTENT_KEYWORDS: Final[tuple[str, ...]] = (
    "sql",
    "query",
    "select",
    "join",
    "postgres",
    "mysql",
)
INFERRED_SQL_CONFIDENCE: Final[float] = 0.56
INFERRED_CODING_CONFIDENCE: Final[float] = 0.5
INFERRED_IN_PROGRESS_CONFIDENCE: Final[float] = 0.3

RANGE_ALL: Final[str] = "all"
RANGE_TODAY: Final[str] = "today"

# =============================================================================
# Resume packs
# =============================================================================

CHARS_PER_TOKEN: Final[int] = 4
MIN_TOKEN_BUDGET: Final[int] = 256
DEFAULT_TOKEN_BUDGET: Final[int] = 2000
MAX_FIT_ITERATIONS: Final[int] = 500
TRUNCATION_MARKER: Final[str] = "\n\n[truncated for token budget]"
TRUNCATION_RESERVE_CHARS: Final[int] = 24
MIN_TRUNCATED_CHARS: Final[int] = 120
DEFAULT_RESUME_TITLE: Final[str] = "Resume Pack"
DEFAULT_RESUME_SESSION_COUNT: Final[int] = 3

RESUME_LIMIT_OUTCOMES: Final[int] = 8
RESUME_LIMIT_TODOS: Final[int] = 8
RESUME_LIMIT_FILES: Final[int] = 12
RESUME_LIMIT_COMMANDS: Final[int] = 12
RESUME_LIMIT_ERRORS: Final[int] = 6
RESUME_LIMIT_PROMPTS: Final[int] = 4
RESUME_SUMMARY_CHARS: Final[int] = 500
RESUME_SUMMARY_MIN_CHARS: Final[int] = 180
RESUME_SUMMARY_STEP: Final[int] = 40

# =============================================================================
# Summaries
# =============================================================================

SUMMARY_MAX_PROMPT_SAMPLES: Final[int] = 15
SUMMARY_MAX_PROMPT_CHARS: Final[int] = 700
SUMMARY_DEFAULT_CONFIDENCE: Final[float] = 0.5
SUMMARY_TASK_DEFAULT_CONFIDENCE: Final[float] = 0.6
FALLBACK_INTENT_CONFIDENCE: Final[float] = 0.3
FALLBACK_TASK_LABEL: Final[str] = "general"
DEFAULT_SUMMARIZER_TIMEOUT_SECONDS: Final[float] = 45.0
SUMMARY_SOURCE_COMMAND: Final[str] = "command"
SUMMARY_SOURCE_MANUAL: Final[str] = "manual"

SUMMARIZE_STATUS_STORED: Final[str] = "stored"
SUMMARIZE_STATUS_SKIPPED: Final[str] = "skipped"
SUMMARIZE_STATUS_FAILED: Final[str] = "failed"

# =============================================================================
# Storage and logging
# =============================================================================

DEFAULT_BUSY_TIMEOUT_SECONDS: Final[float] = 5.0
LATEST_SESSION_REF: Final[str] = "latest"
LOG_FORMAT: Final[str] = "%(asctime)s [%(levelname)s] %(message)s"
LOG_FORMAT_DEBUG: Final[str] = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s"
HOOKS_LOGGER_NAME: Final[str] = "context_ledger.hooks"
DEFAULT_LOG_MAX_BYTES: Final[int] = 5 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT: Final[int] = 3
