"""Tests for the crash-safe incremental line reader.

Tests cover:
- Complete lines and cursor advancement
- Trailing fragments left for the next read
- Invalid, stale and non-integer cursors restarting from 0
- CRLF line endings
"""

from pathlib import Path

import pytest

from context_ledger.ingest.reader import read_incremental_lines


def _write(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path


class TestReadIncrementalLines:
    """Test read_incremental_lines() cursor handling."""

    def test_reads_complete_lines(self, tmp_path: Path) -> None:
        """All terminated lines are returned and the cursor ends at EOF."""
        data = b'{"a": 1}\n{"b": 2}\n'
        path = _write(tmp_path / "log.jsonl", data)

        read = read_incremental_lines(path, 0)

        assert read.lines == ['{"a": 1}', '{"b": 2}']
        assert read.next_cursor == len(data)
        assert read.file_length == len(data)
        assert read.cursor_reset is False

    def test_trailing_fragment_is_left_for_next_read(self, tmp_path: Path) -> None:
        """A line without a terminator is not consumed until it is completed."""
        path = _write(tmp_path / "log.jsonl", b"one\ntwo")

        first = read_incremental_lines(path, 0)
        assert first.lines == ["one"]
        assert first.next_cursor == 4
        assert first.next_cursor == first.file_length - len(b"two")

        with open(path, "ab") as f:
            f.write(b"\n")
        second = read_incremental_lines(path, first.next_cursor)

        assert second.lines == ["two"]
        assert second.next_cursor == 8

    def test_fragment_only_keeps_cursor(self, tmp_path: Path) -> None:
        """A file holding only a fragment yields nothing and keeps the cursor."""
        path = _write(tmp_path / "log.jsonl", b"partial")

        read = read_incremental_lines(path, 0)

        assert read.lines == []
        assert read.next_cursor == 0

    def test_cursor_at_end_returns_nothing(self, tmp_path: Path) -> None:
        """Re-reading from the end of the file is a no-op."""
        path = _write(tmp_path / "log.jsonl", b"a\nb\n")

        read = read_incremental_lines(path, 4)

        assert read.lines == []
        assert read.next_cursor == 4

    @pytest.mark.parametrize("cursor", [999, -1, "12", None, True, 1.5])
    def test_invalid_cursor_restarts_from_zero(self, tmp_path: Path, cursor: object) -> None:
        """Cursors that are not ints within the file restart the read."""
        path = _write(tmp_path / "log.jsonl", b"a\nb\n")

        read = read_incremental_lines(path, cursor)

        assert read.cursor_reset is True
        assert read.lines == ["a", "b"]
        assert read.next_cursor == 4

    def test_truncated_file_restarts_from_zero(self, tmp_path: Path) -> None:
        """A cursor beyond a rotated (shorter) file resets."""
        path = _write(tmp_path / "log.jsonl", b"first line\nsecond line\n")
        cursor = read_incremental_lines(path, 0).next_cursor

        _write(path, b"new\n")
        read = read_incremental_lines(path, cursor)

        assert read.cursor_reset is True
        assert read.lines == ["new"]

    def test_crlf_line_endings(self, tmp_path: Path) -> None:
        """Carriage returns are stripped from CRLF-terminated lines."""
        data = b"a\r\nb\r\n"
        path = _write(tmp_path / "log.jsonl", data)

        read = read_incremental_lines(path, 0)

        assert read.lines == ["a", "b"]
        assert read.next_cursor == len(data)

    def test_invalid_utf8_is_replaced(self, tmp_path: Path) -> None:
        """Undecodable bytes do not abort the read."""
        path = _write(tmp_path / "log.jsonl", b"ok \xff\n")

        read = read_incremental_lines(path, 0)

        assert len(read.lines) == 1
        assert read.lines[0].startswith("ok ")

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Missing files surface as OSError for the adapter to handle."""
        with pytest.raises(OSError):
            read_incremental_lines(tmp_path / "missing.jsonl", 0)
