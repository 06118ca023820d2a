"""Core types for the grounded answer pipeline.

Single Responsibility: Type definitions and payload parsing only. No pipeline logic.

Tool and retriever payloads arrive as camelCase dicts. They are parsed into the
dataclasses below at the boundary (``from_payload``) and rendered back with
``to_dict()`` for API output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class ToolName(str, Enum):
    LOCAL_SEARCH = "localSearch"
    FIND_NOTES_BY_TITLE = "findNotesByTitle"
    READ_NOTE = "readNote"


class GateDecision(str, Enum):
    PASS = "PASS"
    PRE_ANSWER_ABSTAIN = "PRE_ANSWER_ABSTAIN"
    POST_ANSWER_ABSTAIN = "POST_ANSWER_ABSTAIN"


class TurnStatus(str, Enum):
    ANSWERED = "answered"
    ABSTAINED = "abstained"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _finite_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _str_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(v) for v in value if v is not None)


# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvidenceRef:
    """Pointer to the note (and optionally chunk) a graph relation came from."""
    path: str
    extractor: str
    chunk_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "EvidenceRef | None":
        if not isinstance(payload, dict):
            return None
        path = str(payload.get("path") or "").strip()
        if not path:
            return None
        chunk_id = payload.get("chunkId")
        return cls(
            path=path,
            extractor=str(payload.get("extractor") or ""),
            chunk_id=str(chunk_id) if chunk_id else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"path": self.path, "extractor": self.extractor}
        if self.chunk_id:
            out["chunkId"] = self.chunk_id
        return out


@dataclass(frozen=True)
class EntityGraphEvidence:
    """Graph-derived proof linking the matched entities to a document."""
    matched_entities: tuple[str, ...] = ()
    relation_types: tuple[str, ...] = ()
    hop_depth: int = 0
    evidence_count: int = 0
    relation_paths: tuple[str, ...] = ()
    evidence_refs: tuple[EvidenceRef, ...] = ()
    score_contribution: float = 0.0

    @classmethod
    def from_payload(cls, payload: Any) -> "EntityGraphEvidence | None":
        if not isinstance(payload, dict):
            return None
        refs = tuple(
            ref
            for ref in (EvidenceRef.from_payload(r) for r in list(payload.get("evidenceRefs") or []))
            if ref is not None
        )
        try:
            hop_depth = int(payload.get("hopDepth") or 0)
        except (TypeError, ValueError):
            hop_depth = 0
        try:
            evidence_count = int(payload.get("evidenceCount") or 0)
        except (TypeError, ValueError):
            evidence_count = 0
        return cls(
            matched_entities=_str_list(payload.get("matchedEntities")),
            relation_types=_str_list(payload.get("relationTypes")),
            hop_depth=hop_depth,
            evidence_count=evidence_count,
            relation_paths=_str_list(payload.get("relationPaths")),
            evidence_refs=refs,
            score_contribution=_finite_float(payload.get("scoreContribution")) or 0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchedEntities": list(self.matched_entities),
            "relationTypes": list(self.relation_types),
            "hopDepth": self.hop_depth,
            "evidenceCount": self.evidence_count,
            "relationPaths": list(self.relation_paths),
            "evidenceRefs": [r.to_dict() for r in self.evidence_refs],
            "scoreContribution": self.score_contribution,
        }


@dataclass(frozen=True)
class ToolEvidence:
    """Proof that a deterministic tool produced or confirmed a source."""
    tool: ToolName
    chunk_id: str | None = None
    query: str | None = None
    match_score: float | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ToolEvidence | None":
        if not isinstance(payload, dict):
            return None
        try:
            tool = ToolName(str(payload.get("tool") or ""))
        except ValueError:
            return None
        chunk_id = payload.get("chunkId")
        query = payload.get("query")
        return cls(
            tool=tool,
            chunk_id=str(chunk_id) if chunk_id else None,
            query=str(query) if query else None,
            match_score=_finite_float(payload.get("matchScore")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"tool": self.tool.value}
        if self.chunk_id is not None:
            out["chunkId"] = self.chunk_id
        if self.query is not None:
            out["query"] = self.query
        if self.match_score is not None:
            out["matchScore"] = self.match_score
        return out


@dataclass(frozen=True)
class FolderBoost:
    boost_factor: float
    document_count: int
    folder: str | None = None


@dataclass(frozen=True)
class GraphConnections:
    score: float
    backlinks: int = 0
    co_citations: int = 0
    shared_tags: int = 0


@dataclass(frozen=True)
class Explanation:
    """Provenance detail for a source. Immutable once attached."""
    lexical_matches: tuple[tuple[str, str], ...] = ()
    semantic_score: float | None = None
    folder_boost: FolderBoost | None = None
    graph_connections: GraphConnections | None = None
    entity_graph: EntityGraphEvidence | None = None
    tool_evidence: ToolEvidence | None = None
    base_score: float | None = None
    final_score: float | None = None

    @property
    def has_entity_evidence(self) -> bool:
        return self.entity_graph is not None or self.tool_evidence is not None

    @classmethod
    def from_payload(cls, payload: Any) -> "Explanation | None":
        if not isinstance(payload, dict):
            return None

        lexical: list[tuple[str, str]] = []
        for match in list(payload.get("lexicalMatches") or []):
            if isinstance(match, dict):
                lexical.append((str(match.get("field") or ""), str(match.get("query") or "")))

        folder_boost = None
        fb = payload.get("folderBoost")
        if isinstance(fb, dict) and _finite_float(fb.get("boostFactor")) is not None:
            folder_boost = FolderBoost(
                boost_factor=_finite_float(fb.get("boostFactor")) or 0.0,
                document_count=int(_finite_float(fb.get("documentCount")) or 0),
                folder=str(fb["folder"]) if fb.get("folder") else None,
            )

        graph_connections = None
        gc = payload.get("graphConnections")
        if isinstance(gc, dict):
            graph_connections = GraphConnections(
                score=_finite_float(gc.get("score")) or 0.0,
                backlinks=int(_finite_float(gc.get("backlinks")) or 0),
                co_citations=int(_finite_float(gc.get("coCitations")) or 0),
                shared_tags=int(_finite_float(gc.get("sharedTags")) or 0),
            )

        return cls(
            lexical_matches=tuple(lexical),
            semantic_score=_finite_float(payload.get("semanticScore")),
            folder_boost=folder_boost,
            graph_connections=graph_connections,
            entity_graph=EntityGraphEvidence.from_payload(payload.get("entityGraph")),
            tool_evidence=ToolEvidence.from_payload(payload.get("toolEvidence")),
            base_score=_finite_float(payload.get("baseScore")),
            final_score=_finite_float(payload.get("finalScore")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.lexical_matches:
            out["lexicalMatches"] = [{"field": f, "query": q} for f, q in self.lexical_matches]
        if self.semantic_score is not None:
            out["semanticScore"] = self.semantic_score
        if self.folder_boost is not None:
            out["folderBoost"] = {
                "boostFactor": self.folder_boost.boost_factor,
                "documentCount": self.folder_boost.document_count,
                "folder": self.folder_boost.folder,
            }
        if self.graph_connections is not None:
            out["graphConnections"] = {
                "score": self.graph_connections.score,
                "backlinks": self.graph_connections.backlinks,
                "coCitations": self.graph_connections.co_citations,
                "sharedTags": self.graph_connections.shared_tags,
            }
        if self.entity_graph is not None:
            out["entityGraph"] = self.entity_graph.to_dict()
        if self.tool_evidence is not None:
            out["toolEvidence"] = self.tool_evidence.to_dict()
        if self.base_score is not None:
            out["baseScore"] = self.base_score
        if self.final_score is not None:
            out["finalScore"] = self.final_score
        return out


@dataclass(frozen=True)
class SourceEntry:
    """A citable unit backing an answer."""
    title: str
    path: str
    score: float
    explanation: Explanation | None = None

    @property
    def has_entity_evidence(self) -> bool:
        return self.explanation is not None and self.explanation.has_entity_evidence

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"title": self.title, "path": self.path, "score": self.score}
        if self.explanation is not None:
            out["explanation"] = self.explanation.to_dict()
        return out


# ---------------------------------------------------------------------------
# Tool calls and retrieval outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCall:
    """A planned capability invocation."""
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutputRecord:
    """Result of one executed ToolCall."""
    tool: str
    result: Any
    success: bool = True
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"tool": self.tool, "result": self.result, "success": self.success, "args": dict(self.args)}


@dataclass(frozen=True)
class RetrievedDocument:
    """A document returned by a retriever (retrieval-QA engine)."""
    page_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievalOutcome:
    """Normalized result of retrieval for one turn, consumed by the gate."""
    tool_outputs: List[ToolOutputRecord] = field(default_factory=list)
    sources: List[SourceEntry] = field(default_factory=list)
    entity_query_mode: bool = False
    entity_evidence_found: bool = False
    context_documents: List[RetrievedDocument] = field(default_factory=list)
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TurnResult:
    """What the finalize/history layer receives for one turn."""
    final_text: str
    sources: List[SourceEntry]
    status: TurnStatus
    gate_decision: GateDecision | None = None
    was_truncated: bool = False
    tool_outputs: List[ToolOutputRecord] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ArchivistError(RuntimeError):
    """Raised when the pipeline encounters a recoverable error."""


class ToolExecutionError(ArchivistError):
    """A tool call raised or returned an unusable payload."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class TurnCancelled(ArchivistError):
    """The caller cancelled the turn."""
