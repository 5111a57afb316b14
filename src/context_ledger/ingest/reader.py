"""Crash-safe incremental reader for append-only line logs.

Only fully terminated lines are returned. A trailing fragment without a line
break (a writer mid-append) is left for the next read, so the returned
cursor always sits on a line boundary:
``next_cursor == file_length - len(fragment_bytes)``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class IncrementalRead:
    """Result of one incremental read."""

    lines: list[str] = field(default_factory=list)
    next_cursor: int = 0
    file_length: int = 0
    cursor_reset: bool = False


def _valid_cursor(cursor: Any, file_length: int) -> bool:
    return (
        isinstance(cursor, int)
        and not isinstance(cursor, bool)
        and 0 <= cursor <= file_length
    )


def read_incremental_lines(path: Path, cursor: Any) -> IncrementalRead:
    """Read complete lines appended after ``cursor``.

    Args:
        path: Log file to read.
        cursor: Byte offset from a previous read. Anything that is not an
            int within ``[0, file_length]`` (corrupt state, truncated or
            rotated file) restarts the read from offset 0.

    Returns:
        Decoded lines (without terminators) and the cursor to persist.

    Raises:
        OSError: If the file cannot be opened.
    """
    with open(path, "rb") as f:
        f.seek(0, 2)
        file_length = f.tell()

        cursor_reset = False
        if not _valid_cursor(cursor, file_length):
            logger.warning(f"Resetting invalid cursor {cursor!r} for {path} (size {file_length})")
            cursor = 0
            cursor_reset = True

        f.seek(cursor)
        chunk = f.read(file_length - cursor)

    last_break = max(chunk.rfind(b"\n"), chunk.rfind(b"\r"))
    if last_break == -1:
        return IncrementalRead(
            lines=[],
            next_cursor=cursor,
            file_length=file_length,
            cursor_reset=cursor_reset,
        )

    complete = chunk[: last_break + 1]
    raw_lines = complete.split(b"\n")
    if raw_lines and raw_lines[-1] in (b"", b"\r"):
        raw_lines.pop()

    lines = [raw.rstrip(b"\r").decode("utf-8", errors="replace") for raw in raw_lines]
    return IncrementalRead(
        lines=lines,
        next_cursor=cursor + len(complete),
        file_length=file_length,
        cursor_reset=cursor_reset,
    )
