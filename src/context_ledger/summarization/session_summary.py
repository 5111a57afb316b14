"""Summarize one session and store the result.

Stores the capsule and replaces the intent label set and task breakdown set
for the label source. Sessions whose capsule is newer than their latest event
are skipped unless freshness checking is disabled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from context_ledger.constants import (
    SUMMARIZE_STATUS_FAILED,
    SUMMARIZE_STATUS_SKIPPED,
    SUMMARIZE_STATUS_STORED,
)
from context_ledger.exceptions import ConfigurationError, SummarizationError
from context_ledger.store.models import CapsuleInput, IntentLabelInput
from context_ledger.summarization.providers import create_summarizer
from context_ledger.summarization.summarizer import generate_summary

if TYPE_CHECKING:
    from context_ledger.config import LedgerConfig
    from context_ledger.store.core import LedgerStore
    from context_ledger.summarization.base import BaseSummarizer

logger = logging.getLogger(__name__)

REASON_NOT_CONFIGURED = "summarizer_not_configured"
REASON_SESSION_NOT_FOUND = "session_not_found"
REASON_UP_TO_DATE = "already_up_to_date"
REASON_SUMMARIZATION_ERROR = "summarization_error"
REASON_INVALID_SUMMARIZER = "invalid_summarizer_command"


@dataclass
class SummarizeResult:
    status: str
    session_id: str | None = None
    reason: str | None = None
    error: str | None = None
    primary_intent: str | None = None
    task_buckets: int = 0
    outcomes: int = 0
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "sessionId": self.session_id}
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        if self.status == SUMMARIZE_STATUS_STORED:
            data.update(
                {
                    "primaryIntent": self.primary_intent,
                    "taskBuckets": self.task_buckets,
                    "outcomes": self.outcomes,
                    "fallback": self.fallback,
                }
            )
        return data


def summarize_session(
    store: LedgerStore,
    config: LedgerConfig,
    session_ref: str,
    summarizer: BaseSummarizer | None = None,
    source: str | None = None,
    skip_if_fresh: bool = True,
) -> SummarizeResult:
    """Summarize a session and persist capsule, intent label and task split.

    Args:
        store: The LedgerStore instance.
        config: Loaded configuration (summarizer and privacy settings).
        session_ref: Session id or ``latest``.
        summarizer: Summarizer to use (defaults to the configured command).
        source: Label source to replace (defaults to the summarizer name).
        skip_if_fresh: Skip sessions whose capsule is already up to date.

    Returns:
        SummarizeResult with status stored, skipped or failed.
    """
    if summarizer is None:
        try:
            summarizer = create_summarizer(config.summarizer)
        except ConfigurationError as e:
            logger.warning(f"Summarizer misconfigured: {e}")
            return SummarizeResult(
                status=SUMMARIZE_STATUS_FAILED, reason=REASON_INVALID_SUMMARIZER, error=str(e)
            )
    if summarizer is None:
        return SummarizeResult(status=SUMMARIZE_STATUS_SKIPPED, reason=REASON_NOT_CONFIGURED)

    summary_source = store.load_summary_source(session_ref)
    if summary_source is None:
        return SummarizeResult(status=SUMMARIZE_STATUS_SKIPPED, reason=REASON_SESSION_NOT_FOUND)

    session_id = summary_source.session.id
    if skip_if_fresh and store.freshness(session_id).is_fresh:
        logger.debug(f"Capsule for {session_id} is up to date")
        return SummarizeResult(
            status=SUMMARIZE_STATUS_SKIPPED, session_id=session_id, reason=REASON_UP_TO_DATE
        )

    include_prompts = not summarizer.remote or config.privacy.allow_remote_prompt_transfer
    try:
        summary = generate_summary(
            summary_source, summarizer, include_prompt_samples=include_prompts
        )
    except SummarizationError as e:
        logger.warning(f"Summarization failed for {session_id}: {e}")
        return SummarizeResult(
            status=SUMMARIZE_STATUS_FAILED,
            session_id=session_id,
            reason=REASON_SUMMARIZATION_ERROR,
            error=str(e),
        )

    label_source = source or summarizer.name
    store.save_capsule(
        CapsuleInput(
            session_id=session_id,
            summary_markdown=summary.summary_markdown,
            outcomes=summary.key_outcomes,
            todos=summary.todo_items,
            files=summary.files_touched,
            commands=summary.commands,
            errors=summary.errors,
        )
    )
    store.replace_intent_labels(
        session_id,
        label_source,
        [
            IntentLabelInput(
                label=summary.primary_intent,
                confidence=summary.intent_confidence,
                reason={
                    "summarizer": summarizer.name,
                    "remote": summarizer.remote,
                    "promptSamplesIncluded": include_prompts,
                    "promptCount": len(summary_source.prompts),
                    "fallback": summary.fallback,
                },
            )
        ],
    )
    store.replace_task_breakdown(session_id, label_source, summary.tasks)
    logger.info(
        f"Stored summary for {session_id}: intent={summary.primary_intent} "
        f"tasks={len(summary.tasks)} fallback={summary.fallback}"
    )
    return SummarizeResult(
        status=SUMMARIZE_STATUS_STORED,
        session_id=session_id,
        primary_intent=summary.primary_intent,
        task_buckets=len(summary.tasks),
        outcomes=len(summary.key_outcomes),
        fallback=summary.fallback,
    )
