"""Database schema for the ledger store.

Contains schema version and SQL for creating the database schema.
"""

# Schema version for migrations
# v1: sessions, events, tool_calls, intent_labels, capsules, resume_packs
# v2: Added task_breakdowns (per-source minutes per task)
# v3: Added tool_call_queue (open tool invocations shared by hook processes)
SCHEMA_VERSION = 3

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- One row per agent session; repo_path/branch are fill-only-if-null
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    agent TEXT NOT NULL,
    repo_path TEXT,
    branch TEXT,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Append-only normalized events
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    duration_ms INTEGER,
    payload_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- Completed (or unmatched) tool invocations
CREATE TABLE IF NOT EXISTS tool_calls (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    event_id TEXT,
    tool_name TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    duration_ms INTEGER,
    success INTEGER NOT NULL DEFAULT 1,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
    FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE SET NULL
);

-- Intent labels, replaced as a set per (session, source)
CREATE TABLE IF NOT EXISTS intent_labels (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    label TEXT NOT NULL,
    confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
    source TEXT NOT NULL,
    reason_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- One capsule (structured summary) per session
CREATE TABLE IF NOT EXISTS capsules (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL UNIQUE,
    summary_markdown TEXT NOT NULL,
    decisions_json TEXT NOT NULL DEFAULT '[]',
    todos_json TEXT NOT NULL DEFAULT '[]',
    files_json TEXT NOT NULL DEFAULT '[]',
    commands_json TEXT NOT NULL DEFAULT '[]',
    errors_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- Immutable resume documents
CREATE TABLE IF NOT EXISTS resume_packs (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    source_session_ids_json TEXT NOT NULL,
    token_budget INTEGER NOT NULL,
    markdown TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

-- Minutes per task, replaced as a set per (session, source)
CREATE TABLE IF NOT EXISTS task_breakdowns (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    label TEXT NOT NULL,
    minutes REAL NOT NULL CHECK (minutes >= 0),
    confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

-- Tool invocations started but not yet finished, FIFO per (scope, key)
CREATE TABLE IF NOT EXISTS tool_call_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scope TEXT NOT NULL,
    correlation_key TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    started_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_started_at ON sessions(started_at);
CREATE INDEX IF NOT EXISTS idx_sessions_agent ON sessions(agent);
CREATE INDEX IF NOT EXISTS idx_events_session_timestamp ON events(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_tool_calls_session ON tool_calls(session_id);
CREATE INDEX IF NOT EXISTS idx_intent_labels_session ON intent_labels(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_task_breakdowns_session ON task_breakdowns(session_id);
CREATE INDEX IF NOT EXISTS idx_resume_packs_created_at ON resume_packs(created_at);
CREATE INDEX IF NOT EXISTS idx_tool_call_queue_scope_key
    ON tool_call_queue(scope, correlation_key, id);
"""
