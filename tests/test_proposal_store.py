"""Tests for src/engine/proposal_store.py - semantic relation proposals."""

import json

from src.engine.proposal_store import (
    SemanticRelationProposal,
    SemanticRelationProposalStore,
    canonicalize_predicate,
    extract_proposals,
    normalize_proposal,
)


class TestCanonicalizePredicate:
    """Tests for canonicalize_predicate."""

    def test_canonical_values_pass(self):
        assert canonicalize_predicate("allied_with") == "allied_with"

    def test_camel_case_and_spaces(self):
        assert canonicalize_predicate("alliedWith") == "allied_with"
        assert canonicalize_predicate("Located In") == "located_in"

    def test_aliases(self):
        assert canonicalize_predicate("ally") == "allied_with"
        assert canonicalize_predicate("enemy_of") == "rival_of"
        assert canonicalize_predicate("resides_in") == "located_in"

    def test_unknown_and_invalid(self):
        assert canonicalize_predicate("likes") is None
        assert canonicalize_predicate("") is None
        assert canonicalize_predicate(None) is None


class TestNormalizeProposal:
    """Tests for normalize_proposal."""

    def test_accepts_alternative_keys(self):
        proposal = normalize_proposal({"from": "Characters/Sera", "relation": "spouse", "to": "Characters/Tobin", "confidence": 75})

        assert proposal == SemanticRelationProposal(
            note_path="Characters/Sera.md",
            predicate="spouse_of",
            target_path="Characters/Tobin.md",
            confidence=75,
        )

    def test_clamps_confidence(self):
        assert normalize_proposal({"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 250}).confidence == 100
        assert normalize_proposal({"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": "x"}).confidence is None

    def test_requires_all_parts(self):
        assert normalize_proposal({"notePath": "a", "predicate": "rules"}) is None
        assert normalize_proposal("a rules b") is None


class TestExtractProposals:
    """Tests for extract_proposals."""

    def test_nested_payload(self):
        payload = {"data": {"relations": [{"notePath": "a", "predicate": "rules", "targetPath": "b"}]}}

        assert [p.key for p in extract_proposals(payload)] == ["a.md|rules|b.md"]

    def test_json_embedded_in_prose(self):
        text = 'Here are the relations:\n```json\n{"proposals": [{"notePath": "a", "predicate": "borders", "targetPath": "b"}]}\n```'

        assert [p.predicate for p in extract_proposals(text)] == ["borders"]

    def test_escaped_json_string(self):
        inner = json.dumps({"proposals": [{"notePath": "a", "predicate": "rules", "targetPath": "b"}]})

        assert len(extract_proposals(json.dumps(inner))) == 1

    def test_duplicates_keep_higher_confidence(self):
        payload = {"proposals": [
            {"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 40},
            {"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 80},
            {"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 60},
        ]}

        proposals = extract_proposals(payload)

        assert len(proposals) == 1
        assert proposals[0].confidence == 80

    def test_nothing_to_extract(self):
        assert extract_proposals("plain text") == []
        assert extract_proposals(None) == []


class TestSemanticRelationProposalStore:
    """Tests for SemanticRelationProposalStore."""

    def test_default_source_field(self):
        store = SemanticRelationProposalStore()

        accepted = store.ingest_proposals([{"notePath": "a", "predicate": "rules", "targetPath": "b"}], "tool:x")

        assert accepted == 1
        assert store.all()[0].source_field == "tool:x"

    def test_explicit_source_field_is_kept(self):
        store = SemanticRelationProposalStore()

        store.ingest_proposals(
            [{"notePath": "a", "predicate": "rules", "targetPath": "b", "sourceField": "frontmatter.ruler"}],
            "tool:x",
        )

        assert store.all()[0].source_field == "frontmatter.ruler"

    def test_lower_confidence_does_not_replace(self):
        store = SemanticRelationProposalStore()
        store.ingest_proposals([{"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 90}], "t")

        accepted = store.ingest_proposals([{"notePath": "a", "predicate": "rules", "targetPath": "b", "confidence": 10}], "t")

        assert accepted == 0
        assert store.all()[0].confidence == 90

    def test_capacity_evicts_oldest(self):
        store = SemanticRelationProposalStore(capacity=2)
        for target in ("b", "c", "d"):
            store.ingest_proposals([{"notePath": "a", "predicate": "rules", "targetPath": target}], "t")

        assert [p.target_path for p in store.all()] == ["c.md", "d.md"]

    def test_clear(self):
        store = SemanticRelationProposalStore()
        store.ingest_proposals([{"notePath": "a", "predicate": "rules", "targetPath": "b"}], "t")

        store.clear()

        assert len(store) == 0

    def test_stores_are_independent(self):
        first, second = SemanticRelationProposalStore(), SemanticRelationProposalStore()
        first.ingest_from_tool_output("x", {"proposals": [{"notePath": "a", "predicate": "rules", "targetPath": "b"}]})

        assert len(first) == 1
        assert len(second) == 0
