"""Source assembly and explanation rendering.

Single Responsibility: Merge the sources one turn produced (retriever hits,
title-lookup rows, directly read notes) into one ranked, de-duplicated list,
and render human-readable provenance lines for each entry.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Sequence

from .helpers import normalize_path_text
from .types import Explanation, SourceEntry

logger = logging.getLogger(__name__)

MAX_DETAIL_PATHS = 4
MAX_DETAIL_EVIDENCE_REFS = 4


def merge_explanations(first: Explanation | None, second: Explanation | None) -> Explanation | None:
    """Combine two explanations of the same source.

    Fields already set on ``first`` win; ``second`` only fills gaps. Lexical
    matches are unioned in first-seen order.
    """
    if first is None:
        return second
    if second is None:
        return first

    lexical = list(first.lexical_matches)
    for match in second.lexical_matches:
        if match not in lexical:
            lexical.append(match)

    return Explanation(
        lexical_matches=tuple(lexical),
        semantic_score=first.semantic_score if first.semantic_score is not None else second.semantic_score,
        folder_boost=first.folder_boost or second.folder_boost,
        graph_connections=first.graph_connections or second.graph_connections,
        entity_graph=first.entity_graph or second.entity_graph,
        tool_evidence=first.tool_evidence or second.tool_evidence,
        base_score=first.base_score if first.base_score is not None else second.base_score,
        final_score=first.final_score if first.final_score is not None else second.final_score,
    )


def _source_key(source: SourceEntry) -> str:
    return normalize_path_text(source.path) or f"title:{source.title.strip().lower()}"


def assemble_sources(sources: Sequence[SourceEntry], limit: int | None = None) -> List[SourceEntry]:
    """Merge duplicates by path and rank by descending score.

    The merged entry keeps the first-seen title, path and position, takes the
    highest score and combines explanations. Ties keep first-seen order.
    """
    merged: Dict[str, SourceEntry] = {}
    for source in sources or []:
        key = _source_key(source)
        existing = merged.get(key)
        if existing is None:
            merged[key] = source
            continue
        merged[key] = replace(
            existing,
            score=max(existing.score, source.score),
            explanation=merge_explanations(existing.explanation, source.explanation),
        )

    # dict preserves first-seen order and sorted() is stable
    ranked = sorted(merged.values(), key=lambda s: s.score, reverse=True)
    if limit is not None and limit > 0:
        ranked = ranked[:limit]
    logger.debug("Assembled %d sources from %d inputs", len(ranked), len(sources or []))
    return ranked


def build_explanation_details(explanation: Explanation | None, *, show_entity_panel: bool = True) -> List[str]:
    """Human-readable provenance lines for one source."""
    if explanation is None:
        return []

    details: List[str] = []

    if explanation.lexical_matches:
        fields: List[str] = []
        queries: List[str] = []
        for field_name, query in explanation.lexical_matches:
            if field_name not in fields:
                fields.append(field_name)
            if query not in queries:
                queries.append(query)
        details.append('Lexical: matched "%s" in %s' % ('", "'.join(queries), ", ".join(fields)))

    if explanation.semantic_score is not None and explanation.semantic_score > 0:
        details.append(f"Semantic: {explanation.semantic_score * 100:.1f}% similarity")

    if explanation.folder_boost is not None:
        fb = explanation.folder_boost
        details.append(
            f"Folder boost: {fb.boost_factor:.2f}x ({fb.document_count} docs in {fb.folder or 'root'})"
        )

    gc = explanation.graph_connections
    if gc is not None:
        parts = []
        if gc.backlinks > 0:
            parts.append(f"{gc.backlinks} backlinks")
        if gc.co_citations > 0:
            parts.append(f"{gc.co_citations} co-citations")
        if gc.shared_tags > 0:
            parts.append(f"{gc.shared_tags} shared tags")
        if parts:
            details.append(f"Graph connections: {gc.score:.1f} score ({', '.join(parts)})")

    eg = explanation.entity_graph
    if show_entity_panel and eg is not None:
        relations = ", ".join(eg.relation_types) or "n/a"
        matched = ", ".join(eg.matched_entities) or "n/a"
        details.append(
            f"Entity graph: hop {eg.hop_depth}, {eg.evidence_count} evidence refs, "
            f"relations: {relations}, matched: {matched}"
        )
        details.extend(f"Path: {path}" for path in eg.relation_paths[:MAX_DETAIL_PATHS])
        details.extend(
            f"Evidence: {ref.chunk_id or ref.path} ({ref.extractor})"
            for ref in eg.evidence_refs[:MAX_DETAIL_EVIDENCE_REFS]
        )
    elif show_entity_panel:
        details.append("Entity graph: no graph evidence attached for this source.")

    te = explanation.tool_evidence
    if te is not None:
        parts = [f"Tool evidence: {te.tool.value}"]
        if te.match_score is not None:
            parts.append(f"score {te.match_score:.3f}")
        if te.chunk_id:
            parts.append(f"chunk {te.chunk_id}")
        if te.query:
            parts.append(f'query "{te.query}"')
        details.append(" | ".join(parts))

    if (
        explanation.base_score is not None
        and explanation.final_score is not None
        and explanation.base_score != explanation.final_score
    ):
        details.append(f"Score: {explanation.base_score:.4f} -> {explanation.final_score:.4f}")

    return details
