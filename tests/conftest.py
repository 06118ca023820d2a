"""Pytest configuration and shared fixtures for tests."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from src.common.config_loader import Settings, clear_config_cache
from src.engine.tool_execution import ToolRegistry

DRIFTMAR_PATH = "Canon Lore/4C-04-06. Driftmar.md"


class FakeLLM:
    """Stand-in for LLMClient that streams canned chunks and counts calls."""

    def __init__(self, chunks: List[str] | None = None, *, fail_after: int | None = None, error: Exception | None = None):
        self.chunks = list(chunks or [])
        self.fail_after = fail_after
        self.error = error or RuntimeError("stream dropped")
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def stream(self, prompt: str):
        self.prompts.append(prompt)
        for idx, chunk in enumerate(self.chunks):
            if self.fail_after is not None and idx >= self.fail_after:
                raise self.error
            await asyncio.sleep(0)
            yield chunk


def local_search_payload(
    documents: List[Dict[str, Any]] | None = None,
    *,
    entity_query_mode: bool = False,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": "local_search", "documents": list(documents or [])}
    if entity_query_mode:
        payload["entityQueryMode"] = True
    return payload


def search_doc(
    path: str,
    score: float,
    *,
    title: str | None = None,
    content: str = "Lore text.",
    explanation: Dict[str, Any] | None = None,
    **extra: Any,
) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "title": title or path.rsplit("/", 1)[-1].removesuffix(".md"),
        "path": path,
        "score": score,
        "content": content,
        "includeInContext": True,
    }
    if explanation is not None:
        doc["explanation"] = explanation
    doc.update(extra)
    return doc


def entity_graph_explanation(*entities: str) -> Dict[str, Any]:
    return {
        "entityGraph": {
            "matchedEntities": list(entities),
            "relationTypes": ["rules"],
            "hopDepth": 1,
            "evidenceCount": 1,
            "relationPaths": [f"{entities[0]} -> rules -> Driftmar"] if entities else [],
            "evidenceRefs": [{"path": DRIFTMAR_PATH, "extractor": "frontmatter", "chunkId": "c-1"}],
            "scoreContribution": 0.2,
        }
    }


def title_payload(query: str, results: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "title_search", "query": query, "results": results}


def read_payload(path: str, *, chunk_id: str | None = "chunk-0", content: str = "Driftmar is ruled by Lord Aldric Venn.") -> Dict[str, Any]:
    return {
        "notePath": path,
        "noteTitle": path.rsplit("/", 1)[-1].removesuffix(".md"),
        "chunkId": chunk_id,
        "content": content,
        "status": "ok",
    }


class RecordingTool:
    """Async tool that records its args and returns (or raises) a fixed result."""

    def __init__(self, result: Any = None, *, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, args: Dict[str, Any]) -> Any:
        self.calls.append(dict(args))
        if self.error is not None:
            raise self.error
        return self.result


CITED_DRIFTMAR_ANSWER = (
    "Driftmar is ruled by Lord Aldric Venn.[^1]\n\n"
    "#### Sources:\n"
    f"[^1]: [[{DRIFTMAR_PATH}]]"
)


@pytest.fixture(autouse=True)
def _clear_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        chat_model="gpt-4o-mini",
        temperature=0.2,
        strict_evidence_gate=True,
        inline_citations=True,
        weak_score_threshold=0.25,
        max_salient_terms=10,
        title_source_limit=10,
        max_source_chunks=8,
        qa_exclusions="",
    )


@pytest.fixture
def make_registry():
    def _make(**tools: Any) -> ToolRegistry:
        return ToolRegistry.from_callables(tools)

    return _make
