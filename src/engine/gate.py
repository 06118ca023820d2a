"""Evidence gate shared by both answering engines.

Single Responsibility: Decide, from a normalized ``RetrievalOutcome``, whether
an entity answer may be generated (pre-answer) and whether a generated answer
may be shown (post-answer).

Abstaining is an intended outcome, not an error. It is logged at INFO.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from .citations import verify_citations
from .constants import MISSING_CITATIONS_MESSAGE, MISSING_EVIDENCE_MESSAGE
from .types import GateDecision, RetrievalOutcome, SourceEntry

logger = logging.getLogger(__name__)

_ABSTAIN_MESSAGES = frozenset({MISSING_EVIDENCE_MESSAGE, MISSING_CITATIONS_MESSAGE})


@dataclass(frozen=True)
class GateResult:
    """What the caller must hand downstream after a gate ran."""
    decision: GateDecision
    final_text: str | None = None
    sources: List[SourceEntry] = field(default_factory=list)
    reason: str = ""

    @property
    def passed(self) -> bool:
        return self.decision == GateDecision.PASS


def is_abstain_text(text: str | None) -> bool:
    return str(text or "").strip() in _ABSTAIN_MESSAGES


class EvidenceGate:
    """Pre- and post-answer gating over one ``RetrievalOutcome``.

    Stateless apart from its two flags, so one instance can serve concurrent
    turns.
    """

    def __init__(self, *, strict_evidence_gate: bool = True, inline_citations: bool = True):
        self.strict_evidence_gate = strict_evidence_gate
        self.inline_citations = inline_citations

    @classmethod
    def from_settings(cls, settings) -> "EvidenceGate":
        return cls(
            strict_evidence_gate=bool(settings.strict_evidence_gate),
            inline_citations=bool(settings.inline_citations),
        )

    def pre_answer(self, outcome: RetrievalOutcome) -> GateResult:
        """Short-circuit entity questions that retrieval could not ground."""
        if not outcome.entity_query_mode:
            return GateResult(GateDecision.PASS, sources=list(outcome.sources), reason="not_entity_query")
        if not self.strict_evidence_gate:
            return GateResult(GateDecision.PASS, sources=list(outcome.sources), reason="gate_disabled")
        if outcome.entity_evidence_found:
            return GateResult(GateDecision.PASS, sources=list(outcome.sources), reason="evidence_found")

        logger.info(
            "Pre-answer abstain: entity query without entity evidence (%d sources)",
            len(outcome.sources),
        )
        return GateResult(
            GateDecision.PRE_ANSWER_ABSTAIN,
            final_text=MISSING_EVIDENCE_MESSAGE,
            sources=[],
            reason="missing_entity_evidence",
        )

    def post_answer(
        self,
        outcome: RetrievalOutcome,
        final_text: str,
        sources: Sequence[SourceEntry],
    ) -> GateResult:
        """Replace uncited entity answers with the fixed abstain message.

        Idempotent: an already-abstained text comes back unchanged with no
        sources.
        """
        text = str(final_text or "")
        if not outcome.entity_query_mode:
            return GateResult(GateDecision.PASS, final_text=text, sources=list(sources), reason="not_entity_query")
        if not (self.strict_evidence_gate and self.inline_citations):
            return GateResult(GateDecision.PASS, final_text=text, sources=list(sources), reason="gate_disabled")

        if is_abstain_text(text):
            return GateResult(
                GateDecision.POST_ANSWER_ABSTAIN,
                final_text=text,
                sources=[],
                reason="already_abstained",
            )

        report = verify_citations(text)
        if outcome.entity_evidence_found and report.is_cited:
            return GateResult(GateDecision.PASS, final_text=text, sources=list(sources), reason="cited")

        reason = "missing_entity_evidence" if not outcome.entity_evidence_found else "missing_citations"
        logger.info(
            "Post-answer abstain (%s): markers=%d sources_section=%s",
            reason,
            len(report.markers),
            report.has_sources_section,
        )
        return GateResult(
            GateDecision.POST_ANSWER_ABSTAIN,
            final_text=MISSING_CITATIONS_MESSAGE,
            sources=[],
            reason=reason,
        )
