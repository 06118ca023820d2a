from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Union

from ..common.config_loader import Settings, load_settings
from ..engine.chain_runners import (
    BaseChainRunner,
    Finalize,
    Retriever,
    ToolCallingChainRunner,
    VaultQAChainRunner,
)
from ..engine.llm_client import LLMClient
from ..engine.planning import Planner
from ..engine.proposal_store import SemanticRelationProposalStore
from ..engine.sources import build_explanation_details
from ..engine.tool_execution import ToolExecutor, ToolRegistry
from ..engine.types import TurnResult

RunnerMode = Literal["tools", "vault_qa"]


@dataclass(frozen=True)
class AskResult:
    answer: str
    sources: list[dict[str, Any]]
    status: str
    gate_decision: str | None = None
    was_truncated: bool = False
    tool_outputs: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_turn(cls, turn: TurnResult) -> "AskResult":
        sources = []
        for source in turn.sources:
            row = source.to_dict()
            row["details"] = build_explanation_details(source.explanation)
            sources.append(row)
        return cls(
            answer=turn.final_text.strip(),
            sources=sources,
            status=turn.status.value,
            gate_decision=turn.gate_decision.value if turn.gate_decision else None,
            was_truncated=turn.was_truncated,
            tool_outputs=[record.to_dict() for record in turn.tool_outputs],
        )


def build_runner(
    mode: RunnerMode = "tools",
    *,
    tool_registry: ToolRegistry | None = None,
    retriever: Retriever | None = None,
    llm: LLMClient | None = None,
    planner: Planner | None = None,
    proposal_store: SemanticRelationProposalStore | None = None,
    settings: Settings | None = None,
    finalize: Finalize | None = None,
) -> BaseChainRunner:
    """Wire a chain runner from explicit collaborators.

    ``tools`` needs a tool registry, ``vault_qa`` a retriever. The LLM client
    defaults to the one configured in settings.yaml.
    """
    resolved_settings = settings or load_settings()

    if mode == "tools":
        if tool_registry is None:
            raise ValueError("mode 'tools' requires a tool_registry.")
        executor = ToolExecutor(
            tool_registry,
            proposal_store=proposal_store,
            max_salient_terms=resolved_settings.max_salient_terms,
        )
        return ToolCallingChainRunner(
            tool_executor=executor,
            llm=llm or LLMClient.from_settings(),
            planner=planner,
            settings=resolved_settings,
            finalize=finalize,
        )

    if mode == "vault_qa":
        if retriever is None:
            raise ValueError("mode 'vault_qa' requires a retriever.")
        return VaultQAChainRunner(
            retriever=retriever,
            llm=llm or LLMClient.from_settings(),
            settings=resolved_settings,
            finalize=finalize,
        )

    raise ValueError(f"Unknown runner mode '{mode}'. Available: tools, vault_qa")


async def ask(
    *,
    question: str,
    runner: BaseChainRunner,
    cancel_event: asyncio.Event | None = None,
    finalize: Finalize | None = None,
) -> AskResult:
    turn = await runner.run(question, cancel_event=cancel_event, finalize=finalize)
    return AskResult.from_turn(turn)


_STREAM_END = object()


async def ask_stream(
    *,
    question: str,
    runner: BaseChainRunner,
    cancel_event: asyncio.Event | None = None,
    finalize: Finalize | None = None,
) -> AsyncIterator[Union[str, AskResult]]:
    """Yield answer chunks as they stream, then the final AskResult.

    The final answer may differ from the concatenated chunks: the post-answer
    gate can replace an uncited entity answer after it was streamed. Closing
    the generator early cancels the turn and waits for it to finish.
    """
    resolved_cancel = cancel_event or asyncio.Event()
    queue: asyncio.Queue = asyncio.Queue()

    async def _run() -> TurnResult:
        try:
            return await runner.run(
                question,
                on_chunk=queue.put_nowait,
                cancel_event=resolved_cancel,
                finalize=finalize,
            )
        finally:
            queue.put_nowait(_STREAM_END)

    task = asyncio.create_task(_run())
    try:
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item
        turn = await task
    finally:
        if not task.done():
            resolved_cancel.set()
            await task

    yield AskResult.from_turn(turn)
