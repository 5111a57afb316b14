"""Helpers shared by the source adapters.

Record field extraction, session id derivation, privacy-aware prompt
payloads and the SyncResult returned by every sync.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from context_ledger.constants import PROMPT_TEXT_KEYS, REPO_PATH_KEYS
from context_ledger.models.enums import SyncStatus
from context_ledger.privacy.redact import redact_text

if TYPE_CHECKING:
    from context_ledger.config import PrivacyConfig

UUID_PATTERN = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


@dataclass
class SyncResult:
    """Outcome of one adapter sync."""

    source: str
    status: SyncStatus = SyncStatus.OK
    inserted: int = 0
    skipped: int = 0
    cursor: int | None = None
    paths: list[str] = field(default_factory=list)
    touched_session_ids: list[str] = field(default_factory=list)
    summary_session_ids: list[str] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def skipped_source(cls, source: str, reason: str, path: Path | None = None) -> SyncResult:
        """Result for a source that could not be read at all."""
        return cls(
            source=source,
            status=SyncStatus.SKIPPED,
            reason=reason,
            paths=[str(path)] if path else [],
        )

    def touch(self, session_id: str) -> None:
        if session_id not in self.touched_session_ids:
            self.touched_session_ids.append(session_id)

    def mark_for_summary(self, session_id: str) -> None:
        if session_id not in self.summary_session_ids:
            self.summary_session_ids.append(session_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source": self.source,
            "status": self.status.value,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "touchedSessionIds": self.touched_session_ids,
            "summarySessionIds": self.summary_session_ids,
        }
        if self.cursor is not None:
            data["cursor"] = self.cursor
        if self.paths:
            data["paths"] = self.paths
        if self.reason:
            data["reason"] = self.reason
        return data


def parse_json_object(line: str) -> dict[str, Any] | None:
    """Parse one log line; None for malformed JSON or non-object values."""
    try:
        value = json.loads(line)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_optional_string(record: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    """First non-blank string value among ``keys``."""
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_repo_path(record: dict[str, Any]) -> str | None:
    return extract_optional_string(record, REPO_PATH_KEYS)


def extract_prompt_text(record: dict[str, Any]) -> str | None:
    """Prompt text from the usual field names (string values only)."""
    for key in PROMPT_TEXT_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def session_id_from_filename(path: Path) -> str | None:
    """The last UUID embedded in a file name, if any."""
    matches = UUID_PATTERN.findall(path.name)
    return matches[-1].lower() if matches else None


def prefixed_session_id(prefix: str, raw_id: str) -> str:
    return raw_id if raw_id.startswith(prefix) else f"{prefix}{raw_id}"


def synthesize_session_id(prefix: str, seed: str | None = None) -> str:
    """Stable id derived from ``seed`` (a file path), else a random one."""
    if seed:
        return f"{prefix}{uuid.uuid5(uuid.NAMESPACE_URL, seed)}"
    return f"{prefix}{uuid.uuid4()}"


def build_prompt_payload(
    prompt: str,
    source: str,
    privacy: PrivacyConfig,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Payload for a request_sent event.

    Only the prompt length is kept unless prompt capture is enabled, in
    which case the redacted text is stored as well.
    """
    redacted = redact_text(prompt, privacy)
    payload: dict[str, Any] = {"source": source, "promptLength": len(redacted)}
    if extra:
        payload.update(extra)
    if privacy.capture_prompts:
        payload["prompt"] = redacted
    return payload


def iter_jsonl_files(root: Path, pattern: str) -> list[Path]:
    """Files under ``root`` matching ``pattern``, sorted for stable ordering."""
    if not root.is_dir():
        return []
    return sorted(path for path in root.rglob(pattern) if path.is_file())
