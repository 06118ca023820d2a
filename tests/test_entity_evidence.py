"""Tests for src/engine/entity_evidence.py - entity evidence classification."""

from conftest import DRIFTMAR_PATH, entity_graph_explanation, local_search_payload, search_doc
from src.engine.entity_evidence import (
    entity_query_mode_from_documents,
    entity_query_mode_from_tool_outputs,
    has_entity_evidence,
    outcome_from_documents,
    outcome_from_tool_outputs,
)
from src.engine.types import (
    Explanation,
    RetrievedDocument,
    SourceEntry,
    ToolEvidence,
    ToolName,
    ToolOutputRecord,
)


def _source(explanation=None, score=0.99):
    return SourceEntry(title="Driftmar", path=DRIFTMAR_PATH, score=score, explanation=explanation)


class TestHasEntityEvidence:
    """Only structured provenance counts as evidence."""

    def test_high_score_alone_is_not_evidence(self):
        assert not has_entity_evidence([_source(Explanation(semantic_score=0.99))])

    def test_entity_graph_counts(self):
        explanation = Explanation.from_payload(entity_graph_explanation("Lord Aldric Venn"))

        assert has_entity_evidence([_source(), _source(explanation)])

    def test_tool_evidence_counts(self):
        explanation = Explanation(tool_evidence=ToolEvidence(tool=ToolName.READ_NOTE, chunk_id="c-1"))

        assert has_entity_evidence([_source(explanation)])

    def test_no_sources(self):
        assert not has_entity_evidence([])


class TestEntityQueryMode:
    """Tests for entity_query_mode detection."""

    def test_from_successful_local_search(self):
        record = ToolOutputRecord(tool="localSearch", result=local_search_payload([], entity_query_mode=True))

        assert entity_query_mode_from_tool_outputs([record])

    def test_failed_or_other_tools_are_ignored(self):
        failed = ToolOutputRecord(tool="localSearch", result='{"entityQueryMode": true}', success=False)
        other = ToolOutputRecord(tool="readNote", result={"entityQueryMode": True})

        assert not entity_query_mode_from_tool_outputs([failed, other])

    def test_flag_must_be_true(self):
        record = ToolOutputRecord(tool="localSearch", result={"type": "local_search", "entityQueryMode": "yes"})

        assert not entity_query_mode_from_tool_outputs([record])

    def test_from_document_metadata(self):
        docs = [RetrievedDocument("x", {"path": "a.md"}), RetrievedDocument("y", {"path": "b.md", "entityQueryMode": True})]

        assert entity_query_mode_from_documents(docs)


class TestOutcomeAdapters:
    """Both engines normalize into the same RetrievalOutcome."""

    def test_tool_outputs_adapter(self):
        doc = search_doc(DRIFTMAR_PATH, 0.8, explanation=entity_graph_explanation("Lord Aldric Venn"))
        record = ToolOutputRecord(tool="localSearch", result=local_search_payload([doc], entity_query_mode=True))
        explanation = Explanation.from_payload(doc["explanation"])

        outcome = outcome_from_tool_outputs([record], [_source(explanation)])

        assert outcome.entity_query_mode
        assert outcome.entity_evidence_found
        assert outcome.tool_outputs == [record]

    def test_bare_entity_evidence_flag_is_not_trusted(self):
        payload = local_search_payload([search_doc(DRIFTMAR_PATH, 0.95)], entity_query_mode=True)
        payload["entityEvidence"] = True
        record = ToolOutputRecord(tool="localSearch", result=payload)

        outcome = outcome_from_tool_outputs([record], [_source()])

        assert outcome.entity_query_mode
        assert not outcome.entity_evidence_found

    def test_documents_adapter(self):
        docs = [
            RetrievedDocument(
                "Driftmar is ruled by Lord Aldric Venn.",
                {
                    "path": DRIFTMAR_PATH,
                    "title": "Driftmar",
                    "score": 0.4,
                    "rerank_score": 0.7,
                    "entityQueryMode": True,
                    "explanation": entity_graph_explanation("Lord Aldric Venn"),
                },
            ),
            RetrievedDocument("No path here.", {}),
        ]

        outcome = outcome_from_documents(docs)

        assert outcome.entity_query_mode
        assert outcome.entity_evidence_found
        assert len(outcome.sources) == 1
        assert outcome.sources[0].score == 0.7
        assert outcome.context_documents == docs

    def test_documents_without_provenance(self):
        outcome = outcome_from_documents([RetrievedDocument("x", {"path": "a.md", "score": 0.99, "entityQueryMode": True})])

        assert outcome.entity_query_mode
        assert not outcome.entity_evidence_found
