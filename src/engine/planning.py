from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Protocol

from .constants import MAX_SALIENT_TERMS
from .tool_args import extract_salient_terms, normalize_retrieval_query
from .types import ToolCall, ToolName

_WIKI_LINK_TARGET_RE = re.compile(r"\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]")
_MD_PATH_RE = re.compile(r"(?<![\w/\[])((?:[\w.-]+/)*[\w.-]+\.md)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ToolPlan:
    tool_calls: List[ToolCall] = field(default_factory=list)
    salient_terms: List[str] = field(default_factory=list)


class Planner(Protocol):
    async def plan(self, message: str) -> ToolPlan: ...


def _as_note_path(target: str) -> str:
    target = target.strip()
    return target if target.lower().endswith(".md") else f"{target}.md"


def extract_note_references(message: str) -> List[str]:
    """Note paths named in the message, as ``[[wiki links]]`` or ``*.md`` paths."""
    text = str(message or "")
    paths: List[str] = []
    for match in _WIKI_LINK_TARGET_RE.finditer(text):
        path = _as_note_path(match.group(1))
        if path not in paths:
            paths.append(path)
    remainder = _WIKI_LINK_TARGET_RE.sub(" ", text)
    for match in _MD_PATH_RE.finditer(remainder):
        path = match.group(1)
        if path not in paths:
            paths.append(path)
    return paths


class HeuristicPlanner:
    """Deterministic planner: read the notes the user names, otherwise defer to routing.

    Proposes no ``localSearch`` call itself; the retrieval-first router adds
    one for knowledge questions.
    """

    def __init__(self, max_salient_terms: int = MAX_SALIENT_TERMS):
        self.max_salient_terms = max_salient_terms

    async def plan(self, message: str) -> ToolPlan:
        calls = [
            ToolCall(tool_name=ToolName.READ_NOTE.value, args={"notePath": path})
            for path in extract_note_references(message)
        ]
        terms = extract_salient_terms(normalize_retrieval_query(message), self.max_salient_terms)
        return ToolPlan(tool_calls=calls, salient_terms=terms)
