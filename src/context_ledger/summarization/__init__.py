"""Session summarization (capsules, intent labels, task breakdowns)."""

from context_ledger.summarization.base import BaseSummarizer
from context_ledger.summarization.dispatch import dispatch_summary_jobs
from context_ledger.summarization.providers import (
    CommandSummarizer,
    StaticOutputSummarizer,
    create_summarizer,
)
from context_ledger.summarization.session_summary import SummarizeResult, summarize_session
from context_ledger.summarization.summarizer import (
    GeneratedSummary,
    SummaryOutput,
    build_fallback_summary,
    build_summary_prompt,
    extract_json_string,
    parse_summary_output,
)

__all__ = [
    "BaseSummarizer",
    "CommandSummarizer",
    "GeneratedSummary",
    "StaticOutputSummarizer",
    "SummarizeResult",
    "SummaryOutput",
    "build_fallback_summary",
    "build_summary_prompt",
    "create_summarizer",
    "dispatch_summary_jobs",
    "extract_json_string",
    "parse_summary_output",
    "summarize_session",
]
