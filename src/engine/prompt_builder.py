"""Prompt building for answer generation.

Turns a turn's retrieval outcome into numbered CONTEXT blocks and the final
LLM prompt. Block numbers are what the model cites as ``[^n]``.

Single Responsibility: Build LLM prompts and context from retrieved content.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from . import prompt_templates as PT
from .helpers import get_basename, normalize_path_text, parse_tool_payload
from .types import RetrievalOutcome, RetrievedDocument, ToolName, ToolOutputRecord

MAX_BLOCK_CHARS = 4000


@dataclass(frozen=True)
class ContextBlock:
    idx: int
    title: str
    path: str
    content: str


@dataclass
class PromptContext:
    """Result of the prompt building stage."""
    blocks: List[ContextBlock]
    context_string: str
    debug: Dict[str, Any] = field(default_factory=dict)


def _clip(text: str) -> str:
    text = str(text or "").strip()
    if len(text) <= MAX_BLOCK_CHARS:
        return text
    return text[:MAX_BLOCK_CHARS].rstrip() + " …"


def _raw_blocks_from_tool_outputs(tool_outputs: Sequence[ToolOutputRecord]) -> List[tuple[str, str, str]]:
    rows: List[tuple[str, str, str]] = []
    for record in tool_outputs:
        if not record.success:
            continue
        payload = parse_tool_payload(record.result)
        if not payload:
            continue
        if record.tool == ToolName.LOCAL_SEARCH.value:
            for doc in list(payload.get("documents") or []):
                if not isinstance(doc, dict) or doc.get("includeInContext") is False:
                    continue
                path = str(doc.get("path") or "")
                rows.append((str(doc.get("title") or get_basename(path)), path, str(doc.get("content") or "")))
        elif record.tool == ToolName.READ_NOTE.value:
            path = str(payload.get("notePath") or "")
            rows.append((str(payload.get("noteTitle") or get_basename(path)), path, str(payload.get("content") or "")))
    return rows


def _raw_blocks_from_documents(documents: Sequence[RetrievedDocument]) -> List[tuple[str, str, str]]:
    rows: List[tuple[str, str, str]] = []
    for doc in documents:
        meta = doc.metadata or {}
        path = str(meta.get("path") or "")
        rows.append((str(meta.get("title") or get_basename(path)), path, doc.page_content))
    return rows


def _number_blocks(rows: List[tuple[str, str, str]], max_blocks: int) -> List[ContextBlock]:
    blocks: List[ContextBlock] = []
    seen: set[str] = set()
    for title, path, content in rows:
        content = _clip(content)
        if not content:
            continue
        key = normalize_path_text(path) or f"content:{hash(content)}"
        if key in seen:
            continue
        seen.add(key)
        blocks.append(ContextBlock(idx=len(blocks) + 1, title=title or "Untitled", path=path, content=content))
        if len(blocks) >= max_blocks:
            break
    return blocks


def build_context_string(blocks: Sequence[ContextBlock]) -> str:
    if not blocks:
        return PT.EMPTY_CONTEXT
    return "\n\n".join(
        PT.CONTEXT_BLOCK_TEMPLATE.format(idx=b.idx, title=b.title, path=b.path, content=b.content)
        for b in blocks
    )


def build_prompt_context(outcome: RetrievalOutcome, *, max_blocks: int = 8) -> PromptContext:
    """Number the outcome's content for the prompt.

    Retrieved documents (retrieval-QA engine) take precedence over tool
    outputs (tool-calling engine); an outcome carries one or the other.
    """
    if outcome.context_documents:
        rows = _raw_blocks_from_documents(outcome.context_documents)
        origin = "documents"
    else:
        rows = _raw_blocks_from_tool_outputs(outcome.tool_outputs)
        origin = "tool_outputs"
    blocks = _number_blocks(rows, max_blocks)
    return PromptContext(
        blocks=blocks,
        context_string=build_context_string(blocks),
        debug={"origin": origin, "candidate_blocks": len(rows), "context_blocks": len(blocks)},
    )


def build_prompt(*, question: str, context: str, inline_citations: bool = True) -> str:
    """Return the LLM prompt for one turn."""
    return PT.PROMPT_TEMPLATE.format(
        common=PT.COMMON_GROUNDING_RULES,
        citation_rules=PT.INLINE_CITATION_RULES if inline_citations else PT.NO_CITATION_RULES,
        context=context,
        question=str(question or "").strip(),
    )
