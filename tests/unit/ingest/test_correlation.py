"""Tests for tool-call correlation and success classification."""

from context_ledger.constants import UNKNOWN_TOOL_NAME
from context_ledger.ingest.correlation import (
    MemoryToolCallQueue,
    StoreToolCallQueue,
    ToolCallCorrelator,
    classify_tool_result,
    output_text,
)
from context_ledger.store import LedgerStore

T0 = "2025-03-01T10:00:00.000Z"
T1 = "2025-03-01T10:00:01.000Z"
T2 = "2025-03-01T10:00:03.000Z"
T3 = "2025-03-01T10:00:06.000Z"


class TestToolCallCorrelator:
    """Test FIFO start/end pairing."""

    def test_interleaved_pairs_each_match_their_start(self) -> None:
        """N interleaved invocations produce N calls with their own durations."""
        correlator = ToolCallCorrelator(MemoryToolCallQueue())
        correlator.open("call-a", "Read", T0)
        correlator.open("call-b", "Bash", T1)
        correlator.open("call-c", "Edit", T2)

        c = correlator.close("call-c", T3)
        a = correlator.close("call-a", T3)
        b = correlator.close("call-b", T3)

        assert (a.tool_name, a.duration_ms) == ("Read", 6000)
        assert (b.tool_name, b.duration_ms) == ("Bash", 5000)
        assert (c.tool_name, c.duration_ms) == ("Edit", 3000)
        assert all(call.metadata["correlated"] for call in (a, b, c))

    def test_same_key_is_first_in_first_out(self) -> None:
        correlator = ToolCallCorrelator(MemoryToolCallQueue())
        correlator.open("Bash", "Bash", T0)
        correlator.open("Bash", "Bash", T1)

        first = correlator.close("Bash", T2)
        second = correlator.close("Bash", T3)

        assert first.started_at == T0
        assert second.started_at == T1

    def test_unmatched_end_uses_default_name(self) -> None:
        correlator = ToolCallCorrelator(MemoryToolCallQueue())

        call = correlator.close("orphan", T1)

        assert call.tool_name == UNKNOWN_TOOL_NAME
        assert call.duration_ms == 0
        assert call.started_at == T1
        assert call.finished_at == T1
        assert call.metadata["correlated"] is False
        assert call.metadata["correlationKey"] == "orphan"

    def test_unmatched_end_prefers_hint(self) -> None:
        correlator = ToolCallCorrelator(MemoryToolCallQueue())
        call = correlator.close("orphan", T1, tool_name_hint="Grep")
        assert call.tool_name == "Grep"

    def test_start_without_key_is_not_queued(self) -> None:
        queue = MemoryToolCallQueue()
        ToolCallCorrelator(queue).open(None, "Read", T0)
        assert len(queue) == 0

    def test_end_before_start_has_zero_duration(self) -> None:
        correlator = ToolCallCorrelator(MemoryToolCallQueue())
        correlator.open("k", "Read", T2)
        assert correlator.close("k", T0).duration_ms == 0

    def test_memory_queue_survives_state_round_trip(self) -> None:
        """Open starts persisted with the cursor are matched on the next run."""
        queue = MemoryToolCallQueue()
        ToolCallCorrelator(queue).open("call-1", "Bash", T0)

        restored = MemoryToolCallQueue(queue.to_state())
        call = ToolCallCorrelator(restored).close("call-1", T2)

        assert call.tool_name == "Bash"
        assert call.duration_ms == 3000
        assert restored.to_state() == {}

    def test_store_queue_pairs_across_correlators(self, store: LedgerStore) -> None:
        """Separate hook processes share starts through the store."""
        ToolCallCorrelator(StoreToolCallQueue(store, "hook:s1")).open("tu-1", "Write", T0)

        call = ToolCallCorrelator(StoreToolCallQueue(store, "hook:s1")).close("tu-1", T1)
        other_scope = ToolCallCorrelator(StoreToolCallQueue(store, "hook:s2")).close("tu-1", T1)

        assert call.tool_name == "Write"
        assert call.duration_ms == 1000
        assert other_scope.metadata["correlated"] is False


class TestClassifyToolResult:
    """Test the success heuristics and their precedence."""

    def test_explicit_argument_wins(self) -> None:
        assert classify_tool_result("all good", is_error=True).success is False

    def test_error_flag_beats_exit_code(self) -> None:
        result = classify_tool_result({"is_error": False, "exit_code": 1})
        assert result.success is True
        assert result.metadata["exitCode"] == 1
        assert result.metadata["isError"] is False

    def test_success_field_is_an_error_flag(self) -> None:
        assert classify_tool_result({"success": False}).success is False

    def test_structured_exit_code_in_json_string(self) -> None:
        result = classify_tool_result('{"output": "x", "metadata": {"exit_code": 2}}')
        assert result.success is False
        assert result.metadata["exitCode"] == 2

    def test_exit_code_beats_failure_markers(self) -> None:
        text = "Traceback (most recent call last)\nProcess exited with code 0"
        assert classify_tool_result(text).success is True

    def test_nonzero_exit_line(self) -> None:
        assert classify_tool_result("Process exited with code 127").success is False

    def test_failure_prefix(self) -> None:
        assert classify_tool_result("  Error: file not found").success is False

    def test_tool_use_error_marker(self) -> None:
        assert classify_tool_result("<tool_use_error>nope</tool_use_error>").success is False

    def test_content_item_list(self) -> None:
        output = [{"type": "text", "text": "fatal: not a git repository"}]
        assert classify_tool_result(output).success is False

    def test_plain_output_succeeds(self) -> None:
        result = classify_tool_result("3 files changed")
        assert result.success is True
        assert result.metadata == {"outputLength": len("3 files changed")}

    def test_missing_output_succeeds(self) -> None:
        assert classify_tool_result(None).success is True

    def test_output_text_flattens_dicts(self) -> None:
        assert output_text({"stdout": "hello"}) == "hello"
        assert output_text(["a", {"text": "b"}]) == "a\nb"
