"""Tool-call correlation.

Pairs invocation-start events with their ends. Starts are queued FIFO per
correlation key (a tool-use/call id, or a fallback key chosen by the
adapter); an end consumes the oldest start for its key. An end with no
queued start still produces a tool call, with the default tool name and a
zero duration.

Two queue backends exist:

- ``MemoryToolCallQueue``: per source file, serialized into the integration
  state next to the file's cursor so both persist together.
- ``StoreToolCallQueue``: the ``tool_call_queue`` table, shared by
  concurrently running hook processes.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from context_ledger.config import OpenToolCallState
from context_ledger.constants import (
    PROCESS_EXIT_PATTERN,
    TOOL_FAILURE_MARKERS,
    TOOL_FAILURE_PREFIXES,
    UNKNOWN_TOOL_NAME,
)
from context_ledger.store.models import OpenToolCall, ToolCallInput
from context_ledger.utils.timeutil import epoch_ms

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore

logger = logging.getLogger(__name__)

_PROCESS_EXIT_RE = re.compile(PROCESS_EXIT_PATTERN)


class ToolCallQueue(Protocol):
    """FIFO of open invocations keyed by correlation key."""

    def push(self, key: str, entry: OpenToolCall) -> None: ...

    def pop(self, key: str) -> OpenToolCall | None: ...


class MemoryToolCallQueue:
    """In-memory queue that round-trips through the integration state."""

    def __init__(self, state: dict[str, list[OpenToolCallState]] | None = None):
        self._queues: dict[str, deque[OpenToolCall]] = {}
        for key, entries in (state or {}).items():
            self._queues[key] = deque(
                OpenToolCall(tool_name=entry.tool_name, started_at=entry.started_at)
                for entry in entries
            )

    def push(self, key: str, entry: OpenToolCall) -> None:
        self._queues.setdefault(key, deque()).append(entry)

    def pop(self, key: str) -> OpenToolCall | None:
        pending = self._queues.get(key)
        if not pending:
            return None
        entry = pending.popleft()
        if not pending:
            del self._queues[key]
        return entry

    def __len__(self) -> int:
        return sum(len(pending) for pending in self._queues.values())

    def to_state(self) -> dict[str, list[OpenToolCallState]]:
        return {
            key: [
                OpenToolCallState(tool_name=entry.tool_name, started_at=entry.started_at)
                for entry in pending
            ]
            for key, pending in self._queues.items()
            if pending
        }


class StoreToolCallQueue:
    """Queue persisted in SQLite under one scope (e.g. ``hook:<session>``)."""

    def __init__(self, store: LedgerStore, scope: str):
        self.store = store
        self.scope = scope

    def push(self, key: str, entry: OpenToolCall) -> None:
        self.store.push_open_tool_call(self.scope, key, entry.tool_name, entry.started_at)

    def pop(self, key: str) -> OpenToolCall | None:
        return self.store.pop_open_tool_call(self.scope, key)


@dataclass
class ToolResult:
    """Success classification of a tool invocation end."""

    success: bool
    metadata: dict[str, Any] = field(default_factory=dict)


class ToolCallCorrelator:
    """FIFO start/end pairing over a ToolCallQueue."""

    def __init__(self, queue: ToolCallQueue):
        self.queue = queue

    def open(self, key: str | None, tool_name: str | None, started_at: str) -> None:
        """Queue an invocation start. Starts without a key cannot be paired."""
        if not key:
            logger.debug(f"Tool start without correlation key ({tool_name}); not queued")
            return
        self.queue.push(
            key,
            OpenToolCall(tool_name=tool_name or UNKNOWN_TOOL_NAME, started_at=started_at),
        )

    def close(
        self,
        key: str | None,
        finished_at: str,
        result: ToolResult | None = None,
        tool_name_hint: str | None = None,
    ) -> ToolCallInput:
        """Pair an invocation end with the oldest queued start for ``key``.

        Args:
            key: Correlation key of the end record.
            finished_at: Timestamp of the end record.
            result: Success classification and metadata.
            tool_name_hint: Tool name carried by the end record itself, used
                only when no start is queued.

        Returns:
            The tool call to store with the end event.
        """
        result = result or ToolResult(success=True)
        match = self.queue.pop(key) if key else None
        metadata = dict(result.metadata)
        if key:
            metadata["correlationKey"] = key

        if match is None:
            metadata["correlated"] = False
            return ToolCallInput(
                tool_name=tool_name_hint or UNKNOWN_TOOL_NAME,
                started_at=finished_at,
                finished_at=finished_at,
                duration_ms=0,
                success=result.success,
                metadata=metadata,
            )

        start_ms = epoch_ms(match.started_at)
        end_ms = epoch_ms(finished_at)
        duration_ms = 0
        if start_ms is not None and end_ms is not None:
            duration_ms = max(0, round(end_ms - start_ms))
        metadata["correlated"] = True
        return ToolCallInput(
            tool_name=match.tool_name,
            started_at=match.started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
            success=result.success,
            metadata=metadata,
        )


# =============================================================================
# Success heuristics
# =============================================================================


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _structured(output: Any) -> dict[str, Any] | None:
    if isinstance(output, dict):
        return output
    if isinstance(output, str) and output.lstrip().startswith("{"):
        try:
            parsed = json.loads(output)
        except (ValueError, RecursionError):
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _explicit_error_flag(data: dict[str, Any]) -> bool | None:
    for key in ("is_error", "isError"):
        if isinstance(data.get(key), bool):
            return bool(data[key])
    if isinstance(data.get("success"), bool):
        return not data["success"]
    return None


def _exit_code(data: dict[str, Any] | None, text: str) -> int | None:
    if data is not None:
        for container in (data, data.get("metadata")):
            if not isinstance(container, dict):
                continue
            for key in ("exit_code", "exitCode"):
                code = _as_int(container.get(key))
                if code is not None:
                    return code
    match = _PROCESS_EXIT_RE.search(text)
    return int(match.group(1)) if match else None


def output_text(output: Any) -> str:
    """Flatten tool output to text (strings, content item lists, JSON)."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        parts = []
        for item in output:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    if isinstance(output, dict):
        for key in ("output", "stdout", "content", "text"):
            if isinstance(output.get(key), str):
                return str(output[key])
    try:
        return json.dumps(output, default=str)
    except (TypeError, ValueError):
        return str(output)


def _has_failure_marker(text: str) -> bool:
    head = text.lstrip().lower()
    if any(head.startswith(prefix) for prefix in TOOL_FAILURE_PREFIXES):
        return True
    return any(marker in text for marker in TOOL_FAILURE_MARKERS)


def classify_tool_result(output: Any, is_error: bool | None = None) -> ToolResult:
    """Decide whether a tool invocation succeeded.

    Precedence: an explicit error flag (argument, then ``is_error`` /
    ``isError`` / ``success`` fields), then an exit code (structured
    ``exit_code``/``exitCode`` fields, including under ``metadata``, or a
    "Process exited with code N" line), then free-text failure markers.
    """
    data = _structured(output)
    text = output_text(output)
    metadata: dict[str, Any] = {"outputLength": len(text)}

    explicit = is_error
    if explicit is None and data is not None:
        explicit = _explicit_error_flag(data)

    code = _exit_code(data, text)
    if code is not None:
        metadata["exitCode"] = code

    if explicit is not None:
        metadata["isError"] = explicit
        return ToolResult(success=not explicit, metadata=metadata)
    if code is not None:
        return ToolResult(success=code == 0, metadata=metadata)
    return ToolResult(success=not _has_failure_marker(text), metadata=metadata)
