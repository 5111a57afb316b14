"""Utility helpers for context-ledger."""

from context_ledger.utils.output import (
    console,
    print_error,
    print_info,
    print_json,
    print_success,
    print_warning,
)
from context_ledger.utils.timeutil import (
    format_iso,
    normalize_timestamp,
    parse_iso,
    utc_now_iso,
)

__all__ = [
    "console",
    "format_iso",
    "normalize_timestamp",
    "parse_iso",
    "print_error",
    "print_info",
    "print_json",
    "print_success",
    "print_warning",
    "utc_now_iso",
]
