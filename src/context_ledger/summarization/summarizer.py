"""Summary prompt construction and output parsing.

The summarizer is asked for a JSON object describing the session. Its output
is validated with pydantic; unknown intents collapse to ``other`` and list
fields default to empty. Output that cannot be parsed at all yields a
metadata-only fallback summary instead.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from context_ledger.constants import (
    FALLBACK_INTENT_CONFIDENCE,
    FALLBACK_TASK_LABEL,
    SUMMARY_DEFAULT_CONFIDENCE,
    SUMMARY_MAX_PROMPT_CHARS,
    SUMMARY_MAX_PROMPT_SAMPLES,
    SUMMARY_TASK_DEFAULT_CONFIDENCE,
)
from context_ledger.models.enums import Intent
from context_ledger.store.models import SessionSummarySource, TaskBreakdownItem
from context_ledger.summarization.base import BaseSummarizer
from context_ledger.utils.timeutil import epoch_ms

logger = logging.getLogger(__name__)

SUMMARY_HEADING = "## Session Summary"
MAX_OUTCOMES = 20
MAX_LIST_ITEMS = 200


class SummaryTask(BaseModel):
    name: str
    minutes: float = Field(ge=0)
    confidence: float = Field(default=SUMMARY_TASK_DEFAULT_CONFIDENCE, ge=0, le=1)


class SummaryOutput(BaseModel):
    """Structured summary returned by the summarizer (camelCase JSON)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    summary: str
    key_outcomes: list[str] = Field(default_factory=list)
    files_touched: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    todo_items: list[str] = Field(default_factory=list)
    primary_intent: str = Intent.OTHER.value
    intent_confidence: float = Field(default=SUMMARY_DEFAULT_CONFIDENCE, ge=0, le=1)
    tasks: list[SummaryTask] = Field(default_factory=list)

    @field_validator("primary_intent", mode="before")
    @classmethod
    def _known_intent(cls, value: Any) -> str:
        intent = Intent.parse(value if isinstance(value, str) else None)
        return intent.value if intent.value in Intent.summary_values() else Intent.OTHER.value


@dataclass
class GeneratedSummary:
    """Normalized summary ready to be stored."""

    summary_markdown: str
    key_outcomes: list[str] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    todo_items: list[str] = field(default_factory=list)
    primary_intent: str = Intent.OTHER.value
    intent_confidence: float = FALLBACK_INTENT_CONFIDENCE
    tasks: list[TaskBreakdownItem] = field(default_factory=list)
    fallback: bool = False


def _trim_list(values: list[str], max_items: int) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        item = value.strip()
        if not item or item in seen:
            continue
        seen.add(item)
        result.append(item)
        if len(result) >= max_items:
            break
    return result


def session_duration_minutes(source: SessionSummarySource) -> int:
    """Whole minutes from session start to its end (or last event), else 0."""
    start = epoch_ms(source.session.started_at)
    if start is None:
        return 0
    for candidate in (source.session.ended_at, source.last_event_at):
        end = epoch_ms(candidate)
        if end is not None and end > start:
            return round((end - start) / 60000)
    return 0


def _counts_block(counts: dict[str, int]) -> str:
    if not counts:
        return "- none"
    ordered = sorted(counts.items(), key=lambda item: -item[1])
    return "\n".join(f"- {name}: {count}" for name, count in ordered)


def build_summary_prompt(source: SessionSummarySource, include_prompt_samples: bool = True) -> str:
    """Build the summarization prompt for one session.

    Args:
        source: Session, events, tool calls and captured prompts.
        include_prompt_samples: Whether captured prompt text may be included.

    Returns:
        Prompt text asking for the structured summary JSON.
    """
    tool_counts: dict[str, int] = {}
    for call in source.tool_calls:
        tool_counts[call.tool_name] = tool_counts.get(call.tool_name, 0) + 1

    samples = []
    if include_prompt_samples:
        samples = [
            prompt[:SUMMARY_MAX_PROMPT_CHARS]
            for prompt in source.prompts[:SUMMARY_MAX_PROMPT_SAMPLES]
        ]
    if samples:
        prompt_block = "\n".join(f"- [{i}] {sample}" for i, sample in enumerate(samples, 1))
    elif source.prompts:
        prompt_block = "- Prompt samples withheld (remote prompt transfer not allowed)."
    else:
        prompt_block = "- No prompt text captured (prompt capture likely disabled)."

    session = source.session
    intents = "|".join(Intent.summary_values())
    return "\n".join(
        [
            "You are analyzing a local coding-assistant session log.",
            "",
            "Return JSON only with this shape:",
            "{",
            '  "summary": "string",',
            '  "keyOutcomes": ["string"],',
            '  "filesTouched": ["string"],',
            '  "commands": ["string"],',
            '  "errors": ["string"],',
            '  "todoItems": ["string"],',
            f'  "primaryIntent": "{intents}",',
            '  "intentConfidence": 0.0,',
            '  "tasks": [{"name":"string","minutes":0,"confidence":0.0}]',
            "}",
            "",
            "Rules:",
            "- Infer intent from prompts + tools + session metadata.",
            "- `tasks` should estimate where time went (minutes) "
            "and sum close to session duration.",
            "- Keep `filesTouched` to likely file paths only.",
            "- Keep outputs concise and factual.",
            "",
            "Session metadata:",
            f"- Session ID: {session.id}",
            f"- Provider: {session.provider}",
            f"- Agent: {session.agent}",
            f"- Repo Path: {session.repo_path or 'unknown'}",
            f"- Branch: {session.branch or 'unknown'}",
            f"- Session Duration Minutes: {session_duration_minutes(source)}",
            f"- Event Count: {len(source.events)}",
            f"- Tool Call Count: {len(source.tool_calls)}",
            "",
            "Tool usage:",
            _counts_block(tool_counts),
            "",
            "Event types:",
            _counts_block(source.event_counts),
            "",
            "Captured prompt samples:",
            prompt_block,
        ]
    )


def extract_json_string(raw: str) -> str:
    """Extract the JSON object from raw model text (code fences or prose around it)."""
    text = raw.strip()
    if text.startswith("{") and text.endswith("}"):
        return text
    code_block = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if code_block and code_block.group(1).strip().startswith("{"):
        return code_block.group(1).strip()
    first, last = text.find("{"), text.rfind("}")
    if first >= 0 and last > first:
        return text[first : last + 1]
    return text


def parse_summary_output(raw: str) -> SummaryOutput | None:
    """Parse and validate summarizer output, or None when unusable."""
    if not raw or not raw.strip():
        logger.debug("Summarizer returned empty output")
        return None
    json_str = extract_json_string(raw)
    try:
        return SummaryOutput.model_validate(json.loads(json_str))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        logger.debug(f"Failed to parse summarizer output: {e}")
        logger.debug(f"Attempted to parse: {json_str[:300]}")
        return None


def build_fallback_summary(source: SessionSummarySource) -> GeneratedSummary:
    """Metadata-only summary used when no model output is usable."""
    duration = session_duration_minutes(source)
    outcome = (
        f"Session {source.session.id} contains {len(source.events)} events "
        f"and {len(source.tool_calls)} tool calls."
    )
    markdown = "\n".join(
        [
            SUMMARY_HEADING,
            "",
            outcome,
            "",
            "No model-generated summary was available, "
            "so this capsule was created from metadata only.",
        ]
    )
    tasks = []
    if duration > 0:
        tasks.append(
            TaskBreakdownItem(
                label=FALLBACK_TASK_LABEL, minutes=duration, confidence=FALLBACK_INTENT_CONFIDENCE
            )
        )
    return GeneratedSummary(
        summary_markdown=markdown,
        key_outcomes=[outcome],
        primary_intent=Intent.OTHER.value,
        intent_confidence=FALLBACK_INTENT_CONFIDENCE,
        tasks=tasks,
        fallback=True,
    )


def normalize_summary(output: SummaryOutput, source: SessionSummarySource) -> GeneratedSummary:
    """Turn validated output into a stored summary (deduped lists, task fallback)."""
    tasks = [
        TaskBreakdownItem(
            label=task.name.strip(), minutes=max(0, round(task.minutes)), confidence=task.confidence
        )
        for task in output.tasks
        if task.name.strip()
    ]
    duration = session_duration_minutes(source)
    if not tasks and duration > 0:
        tasks = [
            TaskBreakdownItem(
                label=output.primary_intent,
                minutes=duration,
                confidence=output.intent_confidence,
            )
        ]

    outcomes = _trim_list(output.key_outcomes, MAX_OUTCOMES)
    markdown = "\n".join(
        [
            SUMMARY_HEADING,
            "",
            output.summary.strip(),
            "",
            "## Key Outcomes",
            *([f"- {item}" for item in outcomes] or ["- none"]),
            "",
            "## Primary Intent",
            f"- {output.primary_intent} ({output.intent_confidence:.2f})",
        ]
    )
    return GeneratedSummary(
        summary_markdown=markdown,
        key_outcomes=outcomes,
        files_touched=_trim_list(output.files_touched, MAX_LIST_ITEMS),
        commands=_trim_list(output.commands, MAX_LIST_ITEMS),
        errors=_trim_list(output.errors, MAX_LIST_ITEMS),
        todo_items=_trim_list(output.todo_items, MAX_LIST_ITEMS),
        primary_intent=output.primary_intent,
        intent_confidence=output.intent_confidence,
        tasks=tasks,
    )


def generate_summary(
    source: SessionSummarySource,
    summarizer: BaseSummarizer,
    include_prompt_samples: bool = True,
) -> GeneratedSummary:
    """Run the summarizer for one session.

    Raises:
        SummarizationError: If the summarizer itself fails. Unparseable
            output is not an error; it produces the fallback summary.
    """
    prompt = build_summary_prompt(source, include_prompt_samples=include_prompt_samples)
    raw = summarizer.complete(prompt)
    output = parse_summary_output(raw)
    if output is None:
        logger.info(f"Summarizer output unusable for {source.session.id}; using fallback")
        return build_fallback_summary(source)
    return normalize_summary(output, source)
