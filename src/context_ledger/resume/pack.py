"""Resume pack builder.

Renders recent session history into a markdown handoff document that fits a
token budget. Tokens are estimated as ``ceil(chars / 4)``, a planning bound
rather than a tokenizer match.

Fitting is greedy: render at the maximal per-section limits, then while the
estimate exceeds the budget shrink one section at a time in a fixed order
(prompt samples, commands, files, errors, outcomes, todos, summary excerpt
length and finally the number of sessions) and re-render. Sessions are only
dropped once every per-session section is at its minimum. If the smallest
rendering is still too large the text is hard-truncated.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from context_ledger.constants import (
    CHARS_PER_TOKEN,
    DEFAULT_RESUME_TITLE,
    DEFAULT_TOKEN_BUDGET,
    MAX_FIT_ITERATIONS,
    MIN_TOKEN_BUDGET,
    MIN_TRUNCATED_CHARS,
    RESUME_LIMIT_COMMANDS,
    RESUME_LIMIT_ERRORS,
    RESUME_LIMIT_FILES,
    RESUME_LIMIT_OUTCOMES,
    RESUME_LIMIT_PROMPTS,
    RESUME_LIMIT_TODOS,
    RESUME_SUMMARY_CHARS,
    RESUME_SUMMARY_MIN_CHARS,
    RESUME_SUMMARY_STEP,
    TRUNCATION_MARKER,
    TRUNCATION_RESERVE_CHARS,
)
from context_ledger.utils.timeutil import format_iso

if TYPE_CHECKING:
    from context_ledger.analytics.context import ResumeSessionContext
    from context_ledger.store.core import LedgerStore
    from context_ledger.store.models import ResumePackRecord

logger = logging.getLogger(__name__)

SNAPSHOT_TEXT = (
    "Use this as seed context for the next coding-agent session. "
    "Validate branches/files against current repo state before applying changes."
)
MIN_CARRY_FORWARD_TODOS = 5
MAX_TASK_SPLIT_ROWS = 5

_SUMMARY_HEADING_RE = re.compile(r"^## Session Summary\s*", re.IGNORECASE)


@dataclass
class RenderLimits:
    """Per-section item limits used for one rendering."""

    session_count: int
    outcomes: int = RESUME_LIMIT_OUTCOMES
    todos: int = RESUME_LIMIT_TODOS
    files: int = RESUME_LIMIT_FILES
    commands: int = RESUME_LIMIT_COMMANDS
    errors: int = RESUME_LIMIT_ERRORS
    prompts: int = RESUME_LIMIT_PROMPTS
    summary_chars: int = RESUME_SUMMARY_CHARS

    def reduce(self) -> bool:
        """Shrink the least valuable section by one step.

        Returns:
            False when every section is already at its minimum.
        """
        if self.prompts > 0:
            self.prompts -= 1
        elif self.commands > 2:
            self.commands -= 1
        elif self.files > 2:
            self.files -= 1
        elif self.errors > 1:
            self.errors -= 1
        elif self.outcomes > 2:
            self.outcomes -= 1
        elif self.todos > 2:
            self.todos -= 1
        elif self.summary_chars > RESUME_SUMMARY_MIN_CHARS:
            self.summary_chars = max(
                RESUME_SUMMARY_MIN_CHARS, self.summary_chars - RESUME_SUMMARY_STEP
            )
        elif self.session_count > 1:
            self.session_count -= 1
        else:
            return False
        return True


@dataclass
class ResumePackResult:
    title: str
    markdown: str
    estimated_tokens: int
    token_budget: int
    source_session_ids: list[str]
    limits: RenderLimits
    truncated: bool = False
    pack_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.pack_id,
            "title": self.title,
            "markdown": self.markdown,
            "estimatedTokens": self.estimated_tokens,
            "tokenBudget": self.token_budget,
            "sourceSessionIds": self.source_session_ids,
            "sessionCount": self.limits.session_count,
            "truncated": self.truncated,
            "sections": {
                "outcomes": self.limits.outcomes,
                "todos": self.limits.todos,
                "files": self.limits.files,
                "commands": self.limits.commands,
                "errors": self.limits.errors,
                "promptSamples": self.limits.prompts,
                "summaryChars": self.limits.summary_chars,
            },
        }

    def metadata(self) -> dict[str, Any]:
        return {
            "estimatedTokens": self.estimated_tokens,
            "truncated": self.truncated,
            "limits": asdict(self.limits),
        }


def estimate_tokens(text: str) -> int:
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        item = value.strip()
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def default_title(contexts: list[ResumeSessionContext]) -> str:
    if not contexts:
        return DEFAULT_RESUME_TITLE
    if len(contexts) == 1:
        return f"Resume {contexts[0].session.id}"
    first = contexts[0].session.started_at[:10]
    last = contexts[-1].session.started_at[:10]
    return f"Resume {first} to {last}"


def _bullets(lines: list[str], heading: str, items: list[str]) -> None:
    if not items:
        return
    lines.append(f"- {heading}:")
    lines.extend(f"  - {item}" for item in items)


def _render_session(context: ResumeSessionContext, limits: RenderLimits) -> list[str]:
    session = context.session
    capsule = context.capsule
    lines = [
        f"### Session {session.id}",
        f"- Agent: {session.agent} ({session.provider}) | "
        f"Duration: {session.duration_minutes:.1f} min | Started: {session.started_at}",
    ]
    if session.intent_label:
        confidence = (
            f" ({session.intent_confidence:.2f})" if session.intent_confidence is not None else ""
        )
        lines.append(f"- Intent: {session.intent_label}{confidence}")

    if capsule is not None and capsule.summary_markdown:
        summary = _SUMMARY_HEADING_RE.sub("", capsule.summary_markdown)
        summary = re.sub(r"\n+", " ", summary).strip()[: limits.summary_chars]
        if summary:
            lines.append(f"- Summary: {summary}")

    if capsule is not None:
        _bullets(lines, "Key Outcomes", _dedupe(capsule.outcomes)[: limits.outcomes])
        _bullets(lines, "Open TODOs", _dedupe(capsule.todos)[: limits.todos])
        _bullets(lines, "Files Touched", _dedupe(capsule.files)[: limits.files])
        _bullets(lines, "Commands Used", _dedupe(capsule.commands)[: limits.commands])
        _bullets(lines, "Errors/Fixes", _dedupe(capsule.errors)[: limits.errors])
    _bullets(lines, "Prompt Samples", _dedupe(context.prompts)[: limits.prompts])

    if context.task_breakdown:
        lines.append("- Task Time Split:")
        for task in context.task_breakdown[:MAX_TASK_SPLIT_ROWS]:
            lines.append(f"  - {task.label}: {task.minutes:.1f} min ({task.confidence:.2f})")
    lines.append("")
    return lines


def _selected(
    contexts: list[ResumeSessionContext], limits: RenderLimits
) -> list[ResumeSessionContext]:
    return contexts[-limits.session_count :] if contexts else []


def render_resume(
    contexts: list[ResumeSessionContext], title: str, limits: RenderLimits, generated_at: str
) -> str:
    """Render the pack markdown for the most recent ``limits.session_count`` sessions."""
    selected = _selected(contexts, limits)
    lines = [
        f"# {title}",
        "",
        f"Generated: {generated_at}",
        f"Sessions Included: {len(selected)}",
        "",
        "## Snapshot",
        SNAPSHOT_TEXT,
        "",
        "## Session Context",
        "",
    ]
    for context in selected:
        lines.extend(_render_session(context, limits))

    todos = [todo for context in selected if context.capsule for todo in context.capsule.todos]
    carry_forward = _dedupe(todos)[: max(MIN_CARRY_FORWARD_TODOS, limits.todos)]
    if carry_forward:
        lines.append("## Immediate Next Steps")
        lines.extend(f"- {todo}" for todo in carry_forward)
        lines.append("")
    return "\n".join(lines).strip()


def build_resume_pack(
    contexts: list[ResumeSessionContext],
    title: str | None = None,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    now: datetime | None = None,
) -> ResumePackResult:
    """Build a budget-bounded resume pack.

    Args:
        contexts: Session contexts, oldest first.
        title: Pack title (defaults to one derived from the sessions).
        token_budget: Token budget, clamped to at least 256.
        now: Generation time stamped into the document.

    Returns:
        The rendered pack. ``estimated_tokens <= token_budget`` unless even a
        single minimally rendered session is too large, in which case the
        text is cut to ``budget * 4`` characters plus the truncation marker.
    """
    title = (title or "").strip() or default_title(contexts)
    budget = max(MIN_TOKEN_BUDGET, int(token_budget))
    generated_at = format_iso(now or datetime.now(UTC))
    limits = RenderLimits(session_count=max(1, len(contexts)))

    markdown = render_resume(contexts, title, limits, generated_at)
    estimated = estimate_tokens(markdown)
    iterations = 0
    while estimated > budget and iterations < MAX_FIT_ITERATIONS:
        if not limits.reduce():
            break
        markdown = render_resume(contexts, title, limits, generated_at)
        estimated = estimate_tokens(markdown)
        iterations += 1

    truncated = False
    if estimated > budget:
        keep_chars = max(MIN_TRUNCATED_CHARS, budget * CHARS_PER_TOKEN - TRUNCATION_RESERVE_CHARS)
        markdown = markdown[:keep_chars].strip() + TRUNCATION_MARKER
        estimated = estimate_tokens(markdown)
        truncated = True
        logger.info(f"Resume pack truncated to {keep_chars} chars for budget {budget}")

    logger.debug(f"Resume pack fitted in {iterations} reductions ({estimated}/{budget} tokens)")
    return ResumePackResult(
        title=title,
        markdown=markdown,
        estimated_tokens=estimated,
        token_budget=budget,
        source_session_ids=[context.session.id for context in _selected(contexts, limits)],
        limits=limits,
        truncated=truncated,
    )


def save_resume_pack(store: LedgerStore, result: ResumePackResult) -> ResumePackRecord:
    """Persist a built pack and remember its id on the result."""
    record = store.save_resume_pack(
        title=result.title,
        source_session_ids=result.source_session_ids,
        token_budget=result.token_budget,
        markdown=result.markdown,
        metadata=result.metadata(),
    )
    result.pack_id = record.id
    return record
