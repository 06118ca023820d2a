"""Chain runners: one user turn from question to finalized answer.

Two engines share the same gate and generation path:

- ``ToolCallingChainRunner``: planner -> retrieval-first router -> fallback
  executor -> classifier -> gates.
- ``VaultQAChainRunner``: retriever -> classifier -> gates.

Per-turn state machine:
    Planning -> Routed -> Retrieving -> (PASS | PRE_ANSWER_ABSTAIN)
    -> Generating -> (PASS | POST_ANSWER_ABSTAIN) -> Finalized

``run()`` never raises. Every path, including cancellation and unexpected
errors, produces one ``TurnResult`` and calls ``finalize`` exactly once.
Runners hold no per-turn state, so one instance can serve concurrent turns.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Protocol, Sequence

from ..common.config_loader import Settings, load_settings
from .constants import CANCELLED_MESSAGE, FAILED_MESSAGE
from .entity_evidence import outcome_from_documents, outcome_from_tool_outputs
from .fallback import FallbackExecutor
from .gate import EvidenceGate
from .helpers import normalize_path_text, parse_exclusion_patterns
from .llm_client import LLMClient
from .planning import HeuristicPlanner, Planner
from .prompt_builder import build_prompt, build_prompt_context
from .retrieval_routing import route_tool_calls
from .sources import assemble_sources
from .streaming import StreamInterceptor
from .tool_execution import ToolExecutor, raise_if_cancelled
from .types import (
    GateDecision,
    RetrievalOutcome,
    RetrievedDocument,
    ToolCall,
    TurnCancelled,
    TurnResult,
    TurnStatus,
)

logger = logging.getLogger(__name__)

Finalize = Callable[[TurnResult], Awaitable[None]]
ChunkCallback = Callable[[str], None]


class Retriever(Protocol):
    async def get_relevant_documents(self, query: str) -> List[RetrievedDocument]: ...


class BaseChainRunner:
    """Shared turn boundary, gating and generation."""

    def __init__(
        self,
        *,
        llm: LLMClient,
        settings: Settings | None = None,
        gate: EvidenceGate | None = None,
        finalize: Finalize | None = None,
    ):
        self.settings = settings or load_settings()
        self.llm = llm
        self.gate = gate or EvidenceGate.from_settings(self.settings)
        self._finalize = finalize

    async def run(
        self,
        user_message: str,
        *,
        on_chunk: ChunkCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        finalize: Finalize | None = None,
    ) -> TurnResult:
        """Answer one user turn. Never raises."""
        try:
            result = await self._run_turn(user_message, on_chunk=on_chunk, cancel_event=cancel_event)
        except TurnCancelled:
            logger.info("Turn cancelled: %r", user_message[:80])
            result = TurnResult(final_text=CANCELLED_MESSAGE, sources=[], status=TurnStatus.CANCELLED)
        except Exception:
            logger.exception("Turn failed: %r", user_message[:80])
            result = TurnResult(final_text=FAILED_MESSAGE, sources=[], status=TurnStatus.FAILED)

        await self._call_finalize(result, finalize or self._finalize)
        return result

    async def _call_finalize(self, result: TurnResult, finalize: Finalize | None) -> None:
        if finalize is None:
            return
        try:
            await finalize(result)
        except Exception:
            logger.exception("finalize() failed for a %s turn", result.status.value)

    async def _run_turn(
        self,
        user_message: str,
        *,
        on_chunk: ChunkCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> TurnResult:
        raise NotImplementedError

    async def _answer(
        self,
        user_message: str,
        outcome: RetrievalOutcome,
        *,
        on_chunk: ChunkCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> TurnResult:
        """Gate, generate and gate again for a classified outcome."""
        pre = self.gate.pre_answer(outcome)
        if not pre.passed:
            return TurnResult(
                final_text=pre.final_text or "",
                sources=[],
                status=TurnStatus.ABSTAINED,
                gate_decision=GateDecision.PRE_ANSWER_ABSTAIN,
                tool_outputs=list(outcome.tool_outputs),
            )

        raise_if_cancelled(cancel_event)
        prompt_ctx = build_prompt_context(outcome, max_blocks=self.settings.max_source_chunks)
        prompt = build_prompt(
            question=user_message,
            context=prompt_ctx.context_string,
            inline_citations=self.settings.inline_citations,
        )
        logger.debug("Generating with %d context blocks", len(prompt_ctx.blocks))

        interceptor = StreamInterceptor(on_chunk)
        streamed = await interceptor.consume(self.llm.stream(prompt), cancel_event)

        sources = assemble_sources(outcome.sources, limit=self.settings.max_source_chunks)
        post = self.gate.post_answer(outcome, streamed.content, sources)
        return TurnResult(
            final_text=post.final_text or "",
            sources=post.sources,
            status=TurnStatus.ANSWERED if post.passed else TurnStatus.ABSTAINED,
            gate_decision=post.decision,
            was_truncated=streamed.was_truncated,
            tool_outputs=list(outcome.tool_outputs),
        )


class ToolCallingChainRunner(BaseChainRunner):
    """Agentic engine: planned tool calls with retrieval-first routing and fallback."""

    def __init__(
        self,
        *,
        tool_executor: ToolExecutor,
        llm: LLMClient,
        planner: Planner | None = None,
        settings: Settings | None = None,
        gate: EvidenceGate | None = None,
        finalize: Finalize | None = None,
    ):
        super().__init__(llm=llm, settings=settings, gate=gate, finalize=finalize)
        self.planner = planner or HeuristicPlanner(self.settings.max_salient_terms)
        self.fallback = FallbackExecutor(
            tool_executor,
            weak_score_threshold=self.settings.weak_score_threshold,
            title_source_limit=self.settings.title_source_limit,
            qa_exclusions=self.settings.qa_exclusions,
        )

    async def plan_tool_calls(self, user_message: str) -> List[ToolCall]:
        """Planner output with the retrieval-first call injected when warranted."""
        plan = await self.planner.plan(user_message)
        return route_tool_calls(
            user_message,
            list(plan.tool_calls),
            plan.salient_terms,
            self.settings.max_salient_terms,
        )

    async def execute_tool_calls(
        self,
        tool_calls: Sequence[ToolCall],
        user_message: str,
        cancel_event: asyncio.Event | None = None,
    ) -> RetrievalOutcome:
        executed = await self.fallback.execute(tool_calls, user_message=user_message, cancel_event=cancel_event)
        outcome = outcome_from_tool_outputs(executed.tool_outputs, executed.sources)
        outcome.debug.update(executed.debug)
        return outcome

    async def _run_turn(self, user_message, *, on_chunk, cancel_event) -> TurnResult:
        calls = await self.plan_tool_calls(user_message)
        logger.debug("Routed tool calls: %s", [c.tool_name for c in calls])
        outcome = await self.execute_tool_calls(calls, user_message, cancel_event)
        logger.debug(
            "Retrieval outcome: entity_query_mode=%s entity_evidence_found=%s sources=%d",
            outcome.entity_query_mode,
            outcome.entity_evidence_found,
            len(outcome.sources),
        )
        return await self._answer(user_message, outcome, on_chunk=on_chunk, cancel_event=cancel_event)


def _coerce_document(item: Any) -> RetrievedDocument | None:
    if isinstance(item, RetrievedDocument):
        return item
    if isinstance(item, dict):
        return RetrievedDocument(
            page_content=str(item.get("page_content") or item.get("pageContent") or ""),
            metadata=dict(item.get("metadata") or {}),
        )
    return None


class VaultQAChainRunner(BaseChainRunner):
    """Retrieval-QA engine: one retriever call, then the shared gate."""

    def __init__(
        self,
        *,
        retriever: Retriever,
        llm: LLMClient,
        settings: Settings | None = None,
        gate: EvidenceGate | None = None,
        finalize: Finalize | None = None,
    ):
        super().__init__(llm=llm, settings=settings, gate=gate, finalize=finalize)
        self.retriever = retriever
        self.exclusion_patterns = parse_exclusion_patterns(self.settings.qa_exclusions)

    def _is_excluded(self, doc: RetrievedDocument) -> bool:
        path = normalize_path_text(str((doc.metadata or {}).get("path") or ""))
        return bool(path) and any(fragment in path for fragment in self.exclusion_patterns)

    async def retrieve(self, user_message: str, cancel_event: asyncio.Event | None = None) -> RetrievalOutcome:
        raise_if_cancelled(cancel_event)
        try:
            raw_docs = await self.retriever.get_relevant_documents(user_message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Retriever failed; continuing with no documents: %s", exc)
            raw_docs = []

        docs = [d for d in (_coerce_document(item) for item in raw_docs or []) if d is not None]
        docs = [d for d in docs if not self._is_excluded(d)][: self.settings.max_source_chunks]
        outcome = outcome_from_documents(docs)
        outcome.debug["retrieved"] = len(raw_docs or [])
        return outcome

    async def _run_turn(self, user_message, *, on_chunk, cancel_event) -> TurnResult:
        outcome = await self.retrieve(user_message, cancel_event)
        return await self._answer(user_message, outcome, on_chunk=on_chunk, cancel_event=cancel_event)
