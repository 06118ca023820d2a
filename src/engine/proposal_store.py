"""Session-scoped store for semantic relation proposals found in tool output.

Single Responsibility: Extract, canonicalize and buffer relation proposals
(``notePath --predicate--> targetPath``) that tools emit as a side product.

The store is constructed explicitly and injected into the tool executor. It
is shared by concurrent turns of one session, so mutations take a lock.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List

logger = logging.getLogger(__name__)

MAX_STORED_PROPOSALS = 2000

SEMANTIC_PREDICATES = frozenset({
    "parent_of", "child_of", "sibling_of", "spouse_of", "house_of",
    "allied_with", "rival_of", "rules", "ruled_by", "vassal_of", "overlord_of",
    "member_of", "leads", "founded", "founded_by", "located_in", "governs",
    "borders", "part_of", "participated_in", "occurred_at", "during_era",
    "wields", "bound_to", "artifact_of",
})

PREDICATE_ALIASES: Dict[str, str] = {
    "parent": "parent_of",
    "child": "child_of",
    "sibling": "sibling_of",
    "spouse": "spouse_of",
    "house": "house_of",
    "ally": "allied_with",
    "allies_with": "allied_with",
    "rival": "rival_of",
    "enemy_of": "rival_of",
    "opposes": "rival_of",
    "at_war_with": "rival_of",
    "serves": "member_of",
    "resides_in": "located_in",
    "headquartered_in": "located_in",
    "operates_in": "located_in",
    "inhabits": "located_in",
    "stored_in": "located_in",
    "border_dispute_with": "borders",
    "sacred_to": "bound_to",
}

_PROPOSAL_LIST_KEYS = (
    "semanticRelationProposals",
    "semantic_relations",
    "relationProposals",
    "relations",
    "proposals",
    "items",
)
_NESTED_KEYS = ("data", "result", "payload")
_WIKI_WRAPPER_RE = re.compile(r"^\[\[([^\]|#]+)(?:#[^\]]+)?(?:\|[^\]]+)?\]\]$")
_JSON_DECODER = json.JSONDecoder()


@dataclass(frozen=True)
class SemanticRelationProposal:
    note_path: str
    predicate: str
    target_path: str
    confidence: int | None = None
    source_field: str | None = None

    @property
    def key(self) -> str:
        return f"{self.note_path}|{self.predicate}|{self.target_path}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notePath": self.note_path,
            "predicate": self.predicate,
            "targetPath": self.target_path,
            "confidence": self.confidence,
            "sourceField": self.source_field,
        }


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def canonicalize_predicate(value: Any) -> str | None:
    """Map a raw predicate (``allyOf``, ``Located In``, ``ally``) to a canonical id."""
    if not isinstance(value, str):
        return None
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", value.strip()).lower()
    key = re.sub(r"[^a-z0-9_]+", "_", key)
    key = re.sub(r"_+", "_", key).strip("_")
    if not key:
        return None
    if key in SEMANTIC_PREDICATES:
        return key
    return PREDICATE_ALIASES.get(key)


def _normalize_path(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return ""
    trimmed = value.strip()
    match = _WIKI_WRAPPER_RE.match(trimmed)
    core = match.group(1) if match else trimmed
    core = core.split("#", 1)[0].split("|", 1)[0].strip()
    if not core:
        return ""
    return core if core.endswith(".md") else f"{core}.md"


def _normalize_confidence(value: Any) -> int | None:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if num != num:
        return None
    scaled = num * 100 if num <= 1 else num
    return int(min(100, max(0, scaled)))


def normalize_proposal(candidate: Any) -> SemanticRelationProposal | None:
    """Canonical proposal from a loosely-shaped dict, or None if unusable."""
    if not isinstance(candidate, dict):
        return None
    note_path = _normalize_path(
        candidate.get("notePath") or candidate.get("sourcePath") or candidate.get("path")
        or candidate.get("fromPath") or candidate.get("from")
    )
    target_path = _normalize_path(
        candidate.get("targetPath") or candidate.get("target") or candidate.get("to")
        or candidate.get("entity")
    )
    predicate = canonicalize_predicate(
        candidate.get("predicate") or candidate.get("relation") or candidate.get("type")
    )
    if not note_path or not target_path or not predicate:
        return None

    source_field = candidate.get("sourceField")
    return SemanticRelationProposal(
        note_path=note_path,
        predicate=predicate,
        target_path=target_path,
        confidence=_normalize_confidence(candidate.get("confidence")),
        source_field=source_field.strip() if isinstance(source_field, str) and source_field.strip() else None,
    )


def _is_proposal_like(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    has_predicate = any(isinstance(value.get(k), str) for k in ("predicate", "relation"))
    has_target = any(isinstance(value.get(k), str) for k in ("target", "targetPath", "to"))
    has_source = any(isinstance(value.get(k), str) for k in ("notePath", "sourcePath", "path", "fromPath"))
    return has_predicate and has_target and has_source


def _json_fragments(text: str) -> Iterable[Any]:
    """Yield every JSON object/array embedded in free text."""
    stripped = text.strip()
    try:
        yield json.loads(stripped)
        return
    except ValueError:
        pass
    idx = 0
    while True:
        starts = [i for i in (text.find("{", idx), text.find("[", idx)) if i >= 0]
        if not starts:
            return
        start = min(starts)
        try:
            obj, end = _JSON_DECODER.raw_decode(text, start)
        except ValueError:
            idx = start + 1
            continue
        yield obj
        idx = end


def _confidence_of(proposal: SemanticRelationProposal) -> int:
    return proposal.confidence or 0


def extract_proposals(payload: Any) -> List[SemanticRelationProposal]:
    """Collect proposals from nested dicts, lists, JSON strings or prose with JSON blocks."""
    queue: List[Any] = [payload]
    collected: List[Any] = []
    while queue:
        current = queue.pop(0)
        if isinstance(current, (bytes, bytearray)):
            current = current.decode("utf-8", errors="replace")
        if isinstance(current, str):
            if '\\"' in current:
                current = current.replace('\\"', '"').replace("\\n", "\n").replace("\\t", "\t")
            queue.extend(_json_fragments(current))
            continue
        if isinstance(current, list):
            collected.extend(item for item in current if _is_proposal_like(item))
            continue
        if not isinstance(current, dict):
            continue
        for key in _PROPOSAL_LIST_KEYS:
            if isinstance(current.get(key), list):
                queue.append(current[key])
        for key in _NESTED_KEYS:
            if isinstance(current.get(key), dict):
                queue.append(current[key])

    deduped: "OrderedDict[str, SemanticRelationProposal]" = OrderedDict()
    for candidate in collected:
        proposal = normalize_proposal(candidate)
        if proposal is None:
            continue
        existing = deduped.get(proposal.key)
        if existing is None or _confidence_of(proposal) >= _confidence_of(existing):
            deduped[proposal.key] = proposal
    return list(deduped.values())


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SemanticRelationProposalStore:
    """In-memory, capacity-bounded buffer of relation proposals."""

    def __init__(self, capacity: int = MAX_STORED_PROPOSALS):
        self._capacity = capacity
        self._proposals: "OrderedDict[str, SemanticRelationProposal]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._proposals)

    def ingest_from_tool_output(self, tool_name: str, payload: Any) -> int:
        """Ingest proposals found in one tool payload. Returns the number accepted."""
        return self.ingest_proposals(extract_proposals(payload), f"tool:{tool_name}")

    def ingest_proposals(
        self,
        proposals: Iterable[SemanticRelationProposal | Dict[str, Any]],
        default_source_field: str,
    ) -> int:
        normalized: "OrderedDict[str, SemanticRelationProposal]" = OrderedDict()
        for raw in proposals or []:
            proposal = raw if isinstance(raw, SemanticRelationProposal) else normalize_proposal(raw)
            if proposal is None:
                continue
            if not proposal.source_field:
                proposal = replace(proposal, source_field=default_source_field)
            existing = normalized.get(proposal.key)
            if existing is None or _confidence_of(proposal) >= _confidence_of(existing):
                normalized[proposal.key] = proposal

        accepted = 0
        with self._lock:
            for key, proposal in normalized.items():
                existing = self._proposals.get(key)
                if existing is None or _confidence_of(proposal) >= _confidence_of(existing):
                    self._proposals[key] = proposal
                    accepted += 1
            while len(self._proposals) > self._capacity:
                self._proposals.popitem(last=False)

        if accepted:
            logger.debug("Accepted %d semantic relation proposals from %s", accepted, default_source_field)
        return accepted

    def all(self) -> List[SemanticRelationProposal]:
        with self._lock:
            return list(self._proposals.values())

    def clear(self) -> None:
        with self._lock:
            self._proposals.clear()
