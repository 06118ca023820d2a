"""Retrieval-first routing for knowledge questions.

Single Responsibility: Decide whether a synthetic ``localSearch`` call must be
placed ahead of the planner's calls. Pure functions, no I/O.

Lore questions must be grounded by retrieval even when the planner forgets
to propose it. Explicit read requests ("read [[Some Note]]") and commands
that are not knowledge questions are left to the planner.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from .constants import (
    DEFAULT_LOCAL_SEARCH_QUERY,
    MAX_SALIENT_TERMS,
    _ACTION_VERB_RE,
    _AT_COMMAND_RE,
    _BARE_OPEN_COMMAND_RE,
    _MD_FILE_RE,
    _PATH_TOKEN_RE,
    _READ_VERB_NOUN_RE,
    _UTILITY_QUERY_RE,
    _WEB_SEARCH_RE,
    _WIKI_LINK_RE,
)
from .tool_args import (
    coerce_salient_terms,
    normalize_retrieval_query,
    normalize_salient_terms_for_query,
)
from .types import ToolCall, ToolName

logger = logging.getLogger(__name__)


def is_explicit_read_intent(query: str) -> bool:
    """True when the message asks to read or open a concrete document."""
    trimmed = str(query or "").strip()
    if not trimmed:
        return False

    if _WIKI_LINK_RE.search(trimmed):
        return True
    if _MD_FILE_RE.search(trimmed):
        return True
    if _PATH_TOKEN_RE.search(trimmed):
        return True
    if _READ_VERB_NOUN_RE.search(trimmed):
        return True
    if _BARE_OPEN_COMMAND_RE.match(trimmed):
        return True

    lower = trimmed.lower()
    return lower.startswith("read [[") or lower.startswith("open [[")


def should_force_retrieval_first_routing(query: str) -> bool:
    """Heuristic gate for retrieval-first routing on factual Q&A turns."""
    without_commands = _AT_COMMAND_RE.sub(" ", str(query or "")).strip()
    if not without_commands:
        return False
    if is_explicit_read_intent(without_commands):
        return False
    if _ACTION_VERB_RE.match(without_commands):
        return False
    if _WEB_SEARCH_RE.search(without_commands):
        return False
    if _UTILITY_QUERY_RE.match(without_commands):
        return False
    return True


def build_forced_local_search_call(
    query: str,
    salient_terms: Iterable[str] | None,
    max_salient_terms: int = MAX_SALIENT_TERMS,
) -> ToolCall:
    """Deterministic ``localSearch`` call for retrieval-first routing."""
    normalized_query = normalize_retrieval_query(str(query or "").strip()) or DEFAULT_LOCAL_SEARCH_QUERY
    terms = normalize_salient_terms_for_query(
        normalized_query, coerce_salient_terms(salient_terms), max_salient_terms
    )
    return ToolCall(
        tool_name=ToolName.LOCAL_SEARCH.value,
        args={"query": normalized_query, "salientTerms": terms},
    )


def route_tool_calls(
    user_message: str,
    planned_calls: List[ToolCall],
    salient_terms: Iterable[str] | None = None,
    max_salient_terms: int = MAX_SALIENT_TERMS,
) -> List[ToolCall]:
    """Return the final, ordered call list for a turn.

    The forced call is prepended only when the message warrants retrieval and
    no planned call already targets ``localSearch``.
    """
    calls = list(planned_calls or [])
    if any(call.tool_name == ToolName.LOCAL_SEARCH.value for call in calls):
        logger.debug("Planner already proposed localSearch; no forced call")
        return calls

    if not should_force_retrieval_first_routing(user_message):
        logger.debug("Retrieval-first routing bypassed for %r", user_message[:80])
        return calls

    forced = build_forced_local_search_call(user_message, salient_terms, max_salient_terms)
    logger.debug("Forcing localSearch first: query=%r", forced.args.get("query"))
    return [forced, *calls]
