# src/eval/lore_benchmark.py
"""
Lore regression benchmark for the evidence gate.

Each labeled case pairs an entity question with a candidate model response
and the evidence retrieval would have produced. The production
``EvidenceGate`` is applied to every case (no reimplementation of gate
logic), then three acceptance rates are computed:

- citation presence: answered entity cases whose final text is cited
- abstain precision: missing-evidence entity cases that abstained
- contradiction rate: answered entity cases that violate truth labels

Fixture shape (JSON)::

    {"cases": [{"id", "query", "entityQueryMode", "entityEvidence",
                "candidateResponse", "expectedAbstain",
                "requiredTruthPhrases", "forbiddenPhrases"}]}
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..engine.citations import has_inline_citations
from ..engine.gate import EvidenceGate, is_abstain_text
from ..engine.types import (
    Explanation,
    GateDecision,
    RetrievalOutcome,
    SourceEntry,
    ToolEvidence,
    ToolName,
)

logger = logging.getLogger(__name__)

MIN_CITATION_PRESENCE = 0.95
MIN_ABSTAIN_PRECISION = 0.95
MAX_CONTRADICTION_RATE = 0.02


# ---------------------------------------------------------------------------
# Fixture loading
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LoreRegressionCase:
    id: str
    query: str
    entity_query_mode: bool
    entity_evidence: bool
    candidate_response: str
    expected_abstain: bool
    required_truth_phrases: tuple[str, ...] = ()
    forbidden_phrases: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LoreRegressionCase":
        if not isinstance(raw, dict) or not raw.get("id"):
            raise ValueError(f"Invalid lore regression case: {raw!r}")
        return cls(
            id=str(raw["id"]),
            query=str(raw.get("query") or ""),
            entity_query_mode=bool(raw.get("entityQueryMode")),
            entity_evidence=bool(raw.get("entityEvidence")),
            candidate_response=str(raw.get("candidateResponse") or ""),
            expected_abstain=bool(raw.get("expectedAbstain")),
            required_truth_phrases=tuple(str(p) for p in raw.get("requiredTruthPhrases") or []),
            forbidden_phrases=tuple(str(p) for p in raw.get("forbiddenPhrases") or []),
        )


def load_cases(path: str | Path) -> list[LoreRegressionCase]:
    """Load cases from a fixture file.

    Raises:
        ValueError: if the file has no ``cases`` list or a case is malformed.
    """
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    raw_cases = payload.get("cases") if isinstance(payload, dict) else None
    if not isinstance(raw_cases, list):
        raise ValueError(f"{path}: expected an object with a 'cases' list")
    return [LoreRegressionCase.from_dict(raw) for raw in raw_cases]


# ---------------------------------------------------------------------------
# Per-case evaluation
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CaseResult:
    case: LoreRegressionCase
    final_response: str
    gate_decision: GateDecision
    abstained: bool
    has_citations: bool
    truth_consistent: bool

    @property
    def abstain_matches_label(self) -> bool:
        return self.abstained == self.case.expected_abstain


def _outcome_for_case(case: LoreRegressionCase) -> RetrievalOutcome:
    sources: list[SourceEntry] = []
    if case.entity_evidence:
        sources.append(
            SourceEntry(
                title=case.id,
                path=f"{case.id}.md",
                score=1.0,
                explanation=Explanation(tool_evidence=ToolEvidence(tool=ToolName.READ_NOTE, match_score=1.0)),
            )
        )
    return RetrievalOutcome(
        sources=sources,
        entity_query_mode=case.entity_query_mode,
        entity_evidence_found=case.entity_evidence,
    )


def is_truth_consistent(response: str, case: LoreRegressionCase) -> bool:
    normalized = response.lower()
    has_required = all(phrase.lower() in normalized for phrase in case.required_truth_phrases)
    has_forbidden = any(phrase.lower() in normalized for phrase in case.forbidden_phrases)
    return has_required and not has_forbidden


def evaluate_case(case: LoreRegressionCase, gate: EvidenceGate) -> CaseResult:
    outcome = _outcome_for_case(case)
    pre = gate.pre_answer(outcome)
    if pre.passed:
        post = gate.post_answer(outcome, case.candidate_response, outcome.sources)
        final_response, decision = post.final_text or "", post.decision
    else:
        final_response, decision = pre.final_text or "", pre.decision

    abstained = is_abstain_text(final_response)
    return CaseResult(
        case=case,
        final_response=final_response,
        gate_decision=decision,
        abstained=abstained,
        has_citations=has_inline_citations(final_response),
        truth_consistent=True if abstained else is_truth_consistent(final_response, case),
    )


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------
def _rate(numerator: int, denominator: int) -> float | None:
    return numerator / denominator if denominator else None


@dataclass(frozen=True)
class BenchmarkReport:
    results: list[CaseResult]
    citation_presence: float | None
    abstain_precision: float | None
    contradiction_rate: float | None
    failures: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "cases": len(self.results),
            "citation_presence": self.citation_presence,
            "abstain_precision": self.abstain_precision,
            "contradiction_rate": self.contradiction_rate,
            "passed": self.passed,
            "failures": list(self.failures),
        }


def run_benchmark(
    cases: list[LoreRegressionCase],
    *,
    gate: EvidenceGate | None = None,
) -> BenchmarkReport:
    """Gate every case and check the acceptance thresholds.

    The benchmark always runs with the strict gate and inline citations on
    unless a gate is passed explicitly.
    """
    resolved_gate = gate or EvidenceGate(strict_evidence_gate=True, inline_citations=True)
    results = [evaluate_case(case, resolved_gate) for case in cases]

    failures: list[str] = []
    if not results:
        failures.append("fixture has no cases")

    for result in results:
        if not result.abstain_matches_label:
            failures.append(
                f"{result.case.id}: abstained={result.abstained}, expected {result.case.expected_abstain}"
            )

    answered_entity = [r for r in results if r.case.entity_query_mode and not r.abstained]
    missing_evidence = [r for r in results if r.case.entity_query_mode and not r.case.entity_evidence]

    citation_presence = _rate(sum(r.has_citations for r in answered_entity), len(answered_entity))
    abstain_precision = _rate(sum(r.abstained for r in missing_evidence), len(missing_evidence))
    contradiction_rate = _rate(sum(not r.truth_consistent for r in answered_entity), len(answered_entity))

    if citation_presence is None:
        failures.append("no answered entity cases")
    elif citation_presence < MIN_CITATION_PRESENCE:
        failures.append(f"citation presence {citation_presence:.3f} < {MIN_CITATION_PRESENCE}")

    if abstain_precision is None:
        failures.append("no missing-evidence entity cases")
    elif abstain_precision < MIN_ABSTAIN_PRECISION:
        failures.append(f"abstain precision {abstain_precision:.3f} < {MIN_ABSTAIN_PRECISION}")

    if contradiction_rate is not None and contradiction_rate > MAX_CONTRADICTION_RATE:
        failures.append(f"contradiction rate {contradiction_rate:.3f} > {MAX_CONTRADICTION_RATE}")

    report = BenchmarkReport(
        results=results,
        citation_presence=citation_presence,
        abstain_precision=abstain_precision,
        contradiction_rate=contradiction_rate,
        failures=failures,
    )
    if failures:
        logger.warning("Lore benchmark failed: %s", "; ".join(failures))
    else:
        logger.info("Lore benchmark passed (%d cases)", len(results))
    return report


def run_benchmark_file(path: str | Path, *, gate: EvidenceGate | None = None) -> BenchmarkReport:
    return run_benchmark(load_cases(path), gate=gate)
