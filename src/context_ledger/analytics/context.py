"""Resume context loading.

Collects, per session, what the resume pack builder renders: the session
list item, its capsule, prompt samples and task-time split.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from context_ledger.analytics.sessions import (
    SessionFilter,
    SessionListItem,
    get_session_item,
    list_sessions,
)
from context_ledger.constants import DEFAULT_RESUME_SESSION_COUNT
from context_ledger.exceptions import SessionNotFoundError
from context_ledger.models.enums import EventType

if TYPE_CHECKING:
    from context_ledger.store.core import LedgerStore
    from context_ledger.store.models import Capsule, TaskBreakdown

# Prompt samples loaded per session (the builder trims further)
MAX_CONTEXT_PROMPTS = 20


@dataclass
class ResumeSessionContext:
    session: SessionListItem
    capsule: Capsule | None = None
    prompts: list[str] = field(default_factory=list)
    task_breakdown: list[TaskBreakdown] = field(default_factory=list)


def _prompt_samples(store: LedgerStore, session_id: str) -> list[str]:
    prompts = []
    for event in store.list_events(session_id):
        if event.event_type is not EventType.REQUEST_SENT:
            continue
        prompt = event.payload.get("prompt")
        if isinstance(prompt, str) and prompt.strip():
            prompts.append(prompt.strip())
        if len(prompts) >= MAX_CONTEXT_PROMPTS:
            break
    return prompts


def load_resume_contexts(store: LedgerStore, session_refs: list[str]) -> list[ResumeSessionContext]:
    """Load resume contexts for session references (ids or ``latest``).

    Duplicate references are collapsed. Contexts are returned oldest first.

    Raises:
        SessionNotFoundError: If a reference does not resolve to a session.
    """
    session_ids: list[str] = []
    for ref in session_refs:
        session_id = store.resolve_session_ref(ref)
        if session_id is None:
            raise SessionNotFoundError(ref)
        if session_id not in session_ids:
            session_ids.append(session_id)

    contexts = []
    for session_id in session_ids:
        item = get_session_item(store, session_id)
        if item is None:
            raise SessionNotFoundError(session_id)
        contexts.append(
            ResumeSessionContext(
                session=item,
                capsule=store.get_capsule(session_id),
                prompts=_prompt_samples(store, session_id),
                task_breakdown=store.get_task_breakdown(session_id),
            )
        )
    return sorted(contexts, key=lambda context: context.session.started_at)


def select_recent_session_ids(
    store: LedgerStore,
    count: int = DEFAULT_RESUME_SESSION_COUNT,
    agents: list[str] | None = None,
    repo_path: str | None = None,
) -> list[str]:
    """Ids of the ``count`` most recently started sessions matching the criteria."""
    items = list_sessions(
        store, SessionFilter(limit=max(1, count), agents=agents or [], repo_path=repo_path)
    )
    return [item.id for item in items]
