"""Entity evidence classification.

Single Responsibility: Derive ``entity_query_mode`` and
``entity_evidence_found`` for one turn and normalize both answering engines'
evidence into a ``RetrievalOutcome`` for the shared gate.

Only structured provenance counts as evidence: an ``entityGraph`` block or
``toolEvidence`` on at least one source. A high similarity score, or a bare
``entityEvidence: true`` flag from the retriever, is never enough.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Sequence

from .helpers import get_basename, parse_tool_payload
from .types import (
    Explanation,
    RetrievalOutcome,
    RetrievedDocument,
    SourceEntry,
    ToolName,
    ToolOutputRecord,
    _finite_float,
)


def has_entity_evidence(sources: Iterable[SourceEntry]) -> bool:
    return any(source.has_entity_evidence for source in sources or [])


def entity_query_mode_from_tool_outputs(tool_outputs: Iterable[ToolOutputRecord]) -> bool:
    """True when any successful ``localSearch`` payload flags an entity query."""
    for record in tool_outputs or []:
        if record.tool != ToolName.LOCAL_SEARCH.value or not record.success:
            continue
        payload = parse_tool_payload(record.result)
        if payload and payload.get("entityQueryMode") is True:
            return True
    return False


def entity_query_mode_from_documents(documents: Iterable[RetrievedDocument]) -> bool:
    return any((doc.metadata or {}).get("entityQueryMode") is True for doc in documents or [])


def classify(outcome: RetrievalOutcome) -> RetrievalOutcome:
    """Recompute the evidence flag from the outcome's sources (in place)."""
    outcome.entity_evidence_found = has_entity_evidence(outcome.sources)
    return outcome


# ---------------------------------------------------------------------------
# Engine adapters
# ---------------------------------------------------------------------------


def outcome_from_tool_outputs(
    tool_outputs: Sequence[ToolOutputRecord],
    sources: Sequence[SourceEntry],
) -> RetrievalOutcome:
    """Tool-calling engine: flags come from ``localSearch`` payloads."""
    outcome = RetrievalOutcome(
        tool_outputs=list(tool_outputs),
        sources=list(sources),
        entity_query_mode=entity_query_mode_from_tool_outputs(tool_outputs),
    )
    return classify(outcome)


def source_from_document(doc: RetrievedDocument) -> SourceEntry | None:
    metadata = doc.metadata or {}
    path = str(metadata.get("path") or "")
    if not path:
        return None
    score: Any = metadata.get("rerank_score")
    if _finite_float(score) is None:
        score = metadata.get("score")
    return SourceEntry(
        title=str(metadata.get("title") or get_basename(path)),
        path=path,
        score=_finite_float(score) or 0.0,
        explanation=Explanation.from_payload(metadata.get("explanation")),
    )


def outcome_from_documents(documents: Sequence[RetrievedDocument]) -> RetrievalOutcome:
    """Retrieval-QA engine: flags come from retrieved-document metadata."""
    sources: List[SourceEntry] = [
        source for source in (source_from_document(doc) for doc in documents) if source is not None
    ]
    outcome = RetrievalOutcome(
        sources=sources,
        entity_query_mode=entity_query_mode_from_documents(documents),
        context_documents=list(documents),
    )
    return classify(outcome)
