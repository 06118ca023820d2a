"""Tests for src/engine/fallback.py - deterministic weak-result fallback chain.

Covers:
- Local search strength evaluation
- Source extraction for each tool
- Fallback candidate selection and exclusions
- FallbackExecutor call ordering and at-most-once behavior
"""

import asyncio

import pytest

from conftest import (
    DRIFTMAR_PATH,
    RecordingTool,
    local_search_payload,
    read_payload,
    search_doc,
    title_payload,
)
from src.engine.fallback import (
    FallbackExecutor,
    evaluate_local_search_strength,
    extract_find_title_sources,
    extract_read_note_sources,
    pick_best_fallback_path,
)
from src.engine.tool_execution import ToolExecutor
from src.engine.types import ToolCall, ToolName, TurnCancelled


def _executor(make_registry, *, local=None, title=None, read=None, **kwargs):
    tools = {}
    if local is not None:
        tools["localSearch"] = local
    if title is not None:
        tools["findNotesByTitle"] = title
    if read is not None:
        tools["readNote"] = read
    return FallbackExecutor(ToolExecutor(make_registry(**tools)), **kwargs)


def _local_call(query="who is the lord of driftmar"):
    return ToolCall(tool_name="localSearch", args={"query": query, "salientTerms": ["lord", "driftmar"]})


# ─────────────────────────────────────────────────────────────────────────────
# Strength evaluation
# ─────────────────────────────────────────────────────────────────────────────


class TestEvaluateLocalSearchStrength:
    """Tests for evaluate_local_search_strength."""

    def test_strong_result(self):
        strength = evaluate_local_search_strength(local_search_payload([search_doc(DRIFTMAR_PATH, 0.86)]))

        assert not strength.is_weak
        assert strength.top_score == pytest.approx(0.86)
        assert strength.top_title == "4C-04-06. Driftmar"

    def test_weak_result(self):
        strength = evaluate_local_search_strength(local_search_payload([search_doc(DRIFTMAR_PATH, 0.1)]))

        assert strength.is_weak
        assert strength.has_context_docs

    def test_rerank_score_takes_precedence(self):
        doc = search_doc(DRIFTMAR_PATH, 0.9, rerank_score=0.05)

        assert evaluate_local_search_strength(local_search_payload([doc])).is_weak

    def test_excluded_documents_are_ignored(self):
        doc = search_doc(DRIFTMAR_PATH, 0.9, includeInContext=False)

        strength = evaluate_local_search_strength(local_search_payload([doc]))

        assert strength.is_weak
        assert not strength.has_context_docs

    def test_json_string_payload(self):
        payload = '{"type": "local_search", "documents": [{"path": "a.md", "score": 0.5}]}'

        assert not evaluate_local_search_strength(payload).is_weak

    def test_unparsable_payload_is_weak(self):
        assert evaluate_local_search_strength("Error: index offline").is_weak

    def test_threshold_is_configurable(self):
        payload = local_search_payload([search_doc(DRIFTMAR_PATH, 0.4)])

        assert evaluate_local_search_strength(payload, threshold=0.5).is_weak
        assert not evaluate_local_search_strength(payload, threshold=0.25).is_weak


# ─────────────────────────────────────────────────────────────────────────────
# Source extraction and candidate selection
# ─────────────────────────────────────────────────────────────────────────────


class TestSourceExtraction:
    """Tests for title and read source extraction."""

    def test_title_sources_carry_tool_evidence(self):
        payload = title_payload("Driftmar", [{"path": DRIFTMAR_PATH, "title": "Driftmar", "score": 0.8}])

        sources = extract_find_title_sources(payload)

        assert len(sources) == 1
        evidence = sources[0].explanation.tool_evidence
        assert evidence.tool == ToolName.FIND_NOTES_BY_TITLE
        assert evidence.query == "Driftmar"
        assert evidence.match_score == pytest.approx(0.8)

    def test_title_sources_are_limited(self):
        rows = [{"path": f"n{i}.md", "score": 0.5} for i in range(20)]

        assert len(extract_find_title_sources(title_payload("n", rows), limit=10)) == 10

    def test_read_source_with_chunk_scores_one(self):
        sources = extract_read_note_sources(read_payload(DRIFTMAR_PATH, chunk_id="c-7"))

        assert sources[0].score == 1.0
        assert sources[0].explanation.tool_evidence.chunk_id == "c-7"
        assert sources[0].explanation.tool_evidence.tool == ToolName.READ_NOTE

    def test_read_source_without_chunk_scores_half(self):
        sources = extract_read_note_sources(read_payload(DRIFTMAR_PATH, chunk_id=None))

        assert sources[0].score == 0.5

    def test_failed_read_yields_nothing(self):
        payload = dict(read_payload(DRIFTMAR_PATH), status="not_found")

        assert extract_read_note_sources(payload) == []


class TestPickBestFallbackPath:
    """Tests for pick_best_fallback_path."""

    def test_highest_score_then_path(self):
        payload = title_payload("d", [
            {"path": "b.md", "score": 0.7},
            {"path": "a.md", "score": 0.7},
            {"path": "c.md", "score": 0.2},
        ])

        assert pick_best_fallback_path(payload) == "a.md"

    def test_markdown_only(self):
        payload = title_payload("d", [
            {"path": "map.png", "score": 0.9, "extension": "png"},
            {"path": "Driftmar", "score": 0.4, "extension": "md"},
        ])

        assert pick_best_fallback_path(payload) == "Driftmar"

    def test_skips_conversation_logs(self):
        payload = title_payload("d", [
            {"path": "archivist/archivist-conversations/2024-01-01.md", "score": 0.99},
            {"path": DRIFTMAR_PATH, "score": 0.3},
        ])

        assert pick_best_fallback_path(payload) == DRIFTMAR_PATH

    def test_skips_configured_exclusions(self):
        payload = title_payload("d", [
            {"path": "Obsidian Files/Drafts/Driftmar.md", "score": 0.99},
            {"path": DRIFTMAR_PATH, "score": 0.3},
        ])

        assert pick_best_fallback_path(payload, ["obsidian files/drafts"]) == DRIFTMAR_PATH

    def test_no_candidates(self):
        assert pick_best_fallback_path(title_payload("d", [])) is None


# ─────────────────────────────────────────────────────────────────────────────
# Executor
# ─────────────────────────────────────────────────────────────────────────────


class TestFallbackExecutor:
    """Tests for FallbackExecutor.execute."""

    def test_strong_result_runs_one_call(self, make_registry):
        local = RecordingTool(local_search_payload([search_doc(DRIFTMAR_PATH, 0.86)]))
        title = RecordingTool(title_payload("x", []))
        read = RecordingTool(read_payload(DRIFTMAR_PATH))
        executor = _executor(make_registry, local=local, title=title, read=read)

        outcome = asyncio.run(executor.execute([_local_call()], user_message="who is the lord of driftmar"))

        assert [r.tool for r in outcome.tool_outputs] == ["localSearch"]
        assert title.calls == [] and read.calls == []

    def test_weak_result_runs_title_then_read(self, make_registry):
        local = RecordingTool(local_search_payload([search_doc(DRIFTMAR_PATH, 0.1, title="Driftmar")]))
        title = RecordingTool(title_payload("Driftmar", [{"path": DRIFTMAR_PATH, "title": "Driftmar", "score": 0.9}]))
        read = RecordingTool(read_payload(DRIFTMAR_PATH))
        executor = _executor(make_registry, local=local, title=title, read=read)

        outcome = asyncio.run(executor.execute([_local_call()], user_message="who is the lord of driftmar"))

        assert [r.tool for r in outcome.tool_outputs] == ["localSearch", "findNotesByTitle", "readNote"]
        assert title.calls == [{"query": "Driftmar"}]
        assert read.calls == [{"notePath": DRIFTMAR_PATH}]
        read_sources = [
            s for s in outcome.sources
            if s.explanation and s.explanation.tool_evidence and s.explanation.tool_evidence.tool == ToolName.READ_NOTE
        ]
        assert len(read_sources) == 1
        assert read_sources[0].path == DRIFTMAR_PATH
        assert outcome.debug["fallback"] == "read"

    def test_failing_primary_still_attempts_fallback(self, make_registry):
        local = RecordingTool(error=RuntimeError("index offline"))
        title = RecordingTool(title_payload("q", [{"path": DRIFTMAR_PATH, "score": 0.9}]))
        read = RecordingTool(read_payload(DRIFTMAR_PATH))
        executor = _executor(make_registry, local=local, title=title, read=read)

        outcome = asyncio.run(executor.execute([_local_call()], user_message="who is the lord of driftmar"))

        assert [r.tool for r in outcome.tool_outputs] == ["localSearch", "findNotesByTitle", "readNote"]
        assert outcome.tool_outputs[0].success is False
        assert outcome.debug["primary_strength"]["failed"] is True
        assert title.calls == [{"query": "who is the lord of driftmar"}]

    def test_no_candidate_skips_read(self, make_registry):
        local = RecordingTool(local_search_payload([]))
        title = RecordingTool(title_payload("q", [{"path": "map.png", "score": 0.9, "extension": "png"}]))
        read = RecordingTool(read_payload(DRIFTMAR_PATH))
        executor = _executor(make_registry, local=local, title=title, read=read)

        outcome = asyncio.run(executor.execute([_local_call()], user_message="q"))

        assert [r.tool for r in outcome.tool_outputs] == ["localSearch", "findNotesByTitle"]
        assert read.calls == []
        assert outcome.debug["fallback"] == "no_candidate"

    def test_fallback_runs_at_most_once(self, make_registry):
        local = RecordingTool(local_search_payload([search_doc(DRIFTMAR_PATH, 0.1)]))
        title = RecordingTool(title_payload("q", []))
        executor = _executor(make_registry, local=local, title=title)

        outcome = asyncio.run(
            executor.execute([_local_call(), _local_call("driftmar again")], user_message="q")
        )

        assert [r.tool for r in outcome.tool_outputs] == ["localSearch", "findNotesByTitle", "localSearch"]
        assert len(title.calls) == 1

    def test_non_search_calls_run_in_order(self, make_registry):
        read = RecordingTool(read_payload(DRIFTMAR_PATH))
        executor = _executor(make_registry, read=read)

        outcome = asyncio.run(
            executor.execute([ToolCall(tool_name="readNote", args={"notePath": DRIFTMAR_PATH})], user_message="q")
        )

        assert [r.tool for r in outcome.tool_outputs] == ["readNote"]
        assert "primary_strength" not in outcome.debug

    def test_entity_query_mode_from_primary_payload(self, make_registry):
        local = RecordingTool(local_search_payload([search_doc(DRIFTMAR_PATH, 0.9)], entity_query_mode=True))
        executor = _executor(make_registry, local=local)

        outcome = asyncio.run(executor.execute([_local_call()], user_message="q"))

        assert outcome.entity_query_mode is True

    def test_cancel_before_first_call(self, make_registry):
        local = RecordingTool(local_search_payload([]))
        executor = _executor(make_registry, local=local)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(TurnCancelled):
            asyncio.run(executor.execute([_local_call()], user_message="q", cancel_event=cancel))
        assert local.calls == []
