"""Source adapters that turn agent activity logs into ledger events."""

from context_ledger.ingest.claude import (
    HookIngestResult,
    enable_claude,
    ingest_hook_payload,
    record_hook_payload,
    sync_claude_transcripts,
)
from context_ledger.ingest.codex import enable_codex, sync_codex
from context_ledger.ingest.common import SyncResult
from context_ledger.ingest.gemini import enable_gemini, sync_gemini
from context_ledger.ingest.reader import IncrementalRead, read_incremental_lines

__all__ = [
    "HookIngestResult",
    "IncrementalRead",
    "SyncResult",
    "enable_claude",
    "enable_codex",
    "enable_gemini",
    "ingest_hook_payload",
    "read_incremental_lines",
    "record_hook_payload",
    "sync_claude_transcripts",
    "sync_codex",
    "sync_gemini",
]
