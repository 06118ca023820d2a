"""Deterministic weak-result fallback chain.

Single Responsibility: Execute routed tool calls in order and, when the first
``localSearch`` result is weak, recover with a title lookup followed by a
direct read of the best candidate note.

The chain is: localSearch -> findNotesByTitle -> readNote. It runs at most
once per turn and only on demonstrated weakness; a failing primary call
counts as a zero-result weak outcome.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from .constants import (
    DEFAULT_SOURCE_SCORE,
    FALLBACK_EXCLUDED_PATH_SUBSTRINGS,
    LOCAL_SEARCH_WEAK_THRESHOLD,
    TITLE_SOURCE_LIMIT,
)
from .helpers import get_basename, normalize_path_text, parse_exclusion_patterns, parse_tool_payload
from .tool_execution import ToolExecutor
from .types import (
    Explanation,
    RetrievalOutcome,
    SourceEntry,
    ToolCall,
    ToolEvidence,
    ToolName,
    ToolOutputRecord,
    _finite_float,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payload inspection (pure)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalSearchStrength:
    has_context_docs: bool
    top_score: float
    is_weak: bool
    top_title: str | None = None


def _includable_documents(payload: Dict[str, Any] | None) -> List[Dict[str, Any]]:
    if not payload or payload.get("type") != "local_search":
        return []
    documents = payload.get("documents")
    if not isinstance(documents, list):
        return []
    return [d for d in documents if isinstance(d, dict) and d.get("includeInContext") is not False]


def _document_score(doc: Dict[str, Any]) -> float:
    rerank = _finite_float(doc.get("rerank_score"))
    if rerank is not None:
        return rerank
    return _finite_float(doc.get("score")) or 0.0


def evaluate_local_search_strength(
    payload: Any,
    threshold: float = LOCAL_SEARCH_WEAK_THRESHOLD,
) -> LocalSearchStrength:
    """Classify a ``localSearch`` result as weak or strong.

    Weak means no includable documents, or a top score (rerank score when
    present, else score) below ``threshold``.
    """
    docs = _includable_documents(parse_tool_payload(payload))
    if not docs:
        return LocalSearchStrength(has_context_docs=False, top_score=0.0, is_weak=True)

    top = max(docs, key=_document_score)
    top_score = max(0.0, _document_score(top))
    title = str(top.get("title") or "").strip() or get_basename(str(top.get("path") or "")) or None
    return LocalSearchStrength(
        has_context_docs=True,
        top_score=top_score,
        is_weak=top_score < threshold,
        top_title=title,
    )


def extract_local_search_sources(payload: Any) -> List[SourceEntry]:
    """Includable ``localSearch`` documents as sources, keeping retriever provenance."""
    sources: List[SourceEntry] = []
    for doc in _includable_documents(parse_tool_payload(payload)):
        path = str(doc.get("path") or "")
        if not path:
            continue
        sources.append(
            SourceEntry(
                title=str(doc.get("title") or get_basename(path) or "Untitled"),
                path=path,
                score=_document_score(doc),
                explanation=Explanation.from_payload(doc.get("explanation")),
            )
        )
    return sources


def extract_find_title_sources(payload: Any, limit: int = TITLE_SOURCE_LIMIT) -> List[SourceEntry]:
    """Title-lookup rows as sources carrying ``findNotesByTitle`` tool evidence."""
    parsed = parse_tool_payload(payload) or {}
    query = parsed.get("query") if isinstance(parsed.get("query"), str) else None
    results = parsed.get("results") if isinstance(parsed.get("results"), list) else []

    sources: List[SourceEntry] = []
    for row in results[:limit]:
        if not isinstance(row, dict):
            continue
        path = str(row.get("path") or "")
        score = _finite_float(row.get("score")) or 0.0
        sources.append(
            SourceEntry(
                title=str(row.get("title") or get_basename(path) or "Untitled"),
                path=path,
                score=score,
                explanation=Explanation(
                    tool_evidence=ToolEvidence(
                        tool=ToolName.FIND_NOTES_BY_TITLE,
                        query=query,
                        match_score=score,
                    )
                ),
            )
        )
    return sources


def extract_read_note_sources(payload: Any) -> List[SourceEntry]:
    """A successful ``readNote`` result as one source with ``readNote`` tool evidence."""
    parsed = parse_tool_payload(payload)
    if not parsed:
        return []

    status = parsed.get("status")
    if isinstance(status, str) and status and status != "ok":
        return []

    path = parsed.get("notePath") if isinstance(parsed.get("notePath"), str) else ""
    if not path:
        return []

    note_title = parsed.get("noteTitle")
    title = note_title if isinstance(note_title, str) and note_title.strip() else get_basename(path)
    chunk_id = parsed.get("chunkId") if isinstance(parsed.get("chunkId"), str) else None
    score = 1.0 if chunk_id else DEFAULT_SOURCE_SCORE

    return [
        SourceEntry(
            title=title,
            path=path,
            score=score,
            explanation=Explanation(
                tool_evidence=ToolEvidence(tool=ToolName.READ_NOTE, chunk_id=chunk_id, match_score=score)
            ),
        )
    ]


def pick_best_fallback_path(payload: Any, exclusion_patterns: Sequence[str] = ()) -> str | None:
    """Best markdown candidate from a title lookup.

    Conversation logs and configured exclusions are skipped. Ranked by score,
    ties broken by path.
    """
    parsed = parse_tool_payload(payload) or {}
    results = parsed.get("results") if isinstance(parsed.get("results"), list) else []

    candidates: List[tuple[float, str]] = []
    for row in results:
        if not isinstance(row, dict):
            continue
        path = str(row.get("path") or "")
        if not path:
            continue
        extension = str(row.get("extension") or "").lower()
        if extension != "md" and not path.lower().endswith(".md"):
            continue
        normalized = normalize_path_text(path)
        if any(fragment in normalized for fragment in FALLBACK_EXCLUDED_PATH_SUBSTRINGS):
            continue
        if any(fragment in normalized for fragment in exclusion_patterns):
            continue
        candidates.append((_finite_float(row.get("score")) or 0.0, path))

    if not candidates:
        return None
    candidates.sort(key=lambda c: (-c[0], c[1]))
    return candidates[0][1]


def sources_from_tool_output(record: ToolOutputRecord, title_limit: int = TITLE_SOURCE_LIMIT) -> List[SourceEntry]:
    if not record.success:
        return []
    if record.tool == ToolName.LOCAL_SEARCH.value:
        return extract_local_search_sources(record.result)
    if record.tool == ToolName.FIND_NOTES_BY_TITLE.value:
        return extract_find_title_sources(record.result, title_limit)
    if record.tool == ToolName.READ_NOTE.value:
        return extract_read_note_sources(record.result)
    return []


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class FallbackExecutor:
    """Sequential tool execution with a single weak-result recovery chain."""

    def __init__(
        self,
        tool_executor: ToolExecutor,
        *,
        weak_score_threshold: float = LOCAL_SEARCH_WEAK_THRESHOLD,
        title_source_limit: int = TITLE_SOURCE_LIMIT,
        qa_exclusions: str = "",
    ):
        self.tool_executor = tool_executor
        self.weak_score_threshold = weak_score_threshold
        self.title_source_limit = title_source_limit
        self.exclusion_patterns = parse_exclusion_patterns(qa_exclusions)

    async def execute(
        self,
        tool_calls: Sequence[ToolCall],
        *,
        user_message: str,
        cancel_event: asyncio.Event | None = None,
    ) -> RetrievalOutcome:
        """Run ``tool_calls`` in order and return the collected outcome.

        ``sources`` holds every source the calls produced, in execution order;
        ranking happens later in the source assembler.

        Raises:
            TurnCancelled: when ``cancel_event`` is set before a call starts.
        """
        outcome = RetrievalOutcome()
        primary_inspected = False

        for call in tool_calls:
            record = await self._run(call, outcome, user_message, cancel_event)
            if record.tool != ToolName.LOCAL_SEARCH.value or primary_inspected:
                continue

            primary_inspected = True
            payload = parse_tool_payload(record.result) if record.success else None
            strength = evaluate_local_search_strength(payload, self.weak_score_threshold)
            outcome.debug["primary_strength"] = {
                "has_context_docs": strength.has_context_docs,
                "top_score": strength.top_score,
                "is_weak": strength.is_weak,
                "failed": not record.success,
            }
            if not strength.is_weak:
                continue

            title_query = strength.top_title or str(record.args.get("query") or "") or user_message
            logger.debug(
                "Weak localSearch (top=%.3f, docs=%s); running title fallback for %r",
                strength.top_score,
                strength.has_context_docs,
                title_query,
            )
            await self._run_fallback(title_query, outcome, user_message, cancel_event)

        return outcome

    async def _run(
        self,
        call: ToolCall,
        outcome: RetrievalOutcome,
        user_message: str,
        cancel_event: asyncio.Event | None,
    ) -> ToolOutputRecord:
        record = await self.tool_executor.execute(call, user_message=user_message, cancel_event=cancel_event)
        outcome.tool_outputs.append(record)
        outcome.sources.extend(sources_from_tool_output(record, self.title_source_limit))
        if record.tool == ToolName.LOCAL_SEARCH.value and record.success:
            payload = parse_tool_payload(record.result) or {}
            if payload.get("entityQueryMode") is True:
                outcome.entity_query_mode = True
        return record

    async def _run_fallback(
        self,
        title_query: str,
        outcome: RetrievalOutcome,
        user_message: str,
        cancel_event: asyncio.Event | None,
    ) -> None:
        title_record = await self._run(
            ToolCall(tool_name=ToolName.FIND_NOTES_BY_TITLE.value, args={"query": title_query}),
            outcome,
            user_message,
            cancel_event,
        )
        if not title_record.success:
            outcome.debug["fallback"] = "title_lookup_failed"
            return

        best_path = pick_best_fallback_path(title_record.result, self.exclusion_patterns)
        if best_path is None:
            logger.debug("Title fallback found no readable markdown candidate")
            outcome.debug["fallback"] = "no_candidate"
            return

        read_record = await self._run(
            ToolCall(tool_name=ToolName.READ_NOTE.value, args={"notePath": best_path}),
            outcome,
            user_message,
            cancel_event,
        )
        outcome.debug["fallback"] = "read" if read_record.success else "read_failed"
        outcome.debug["fallback_path"] = best_path
