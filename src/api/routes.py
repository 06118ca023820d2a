"""API routes for asking questions.

Single Responsibility: Handle HTTP requests for Q&A functionality.
"""

from __future__ import annotations

import logging
import time
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from ..engine.chain_runners import BaseChainRunner
from ..services.ask import AskResult, ask, ask_stream
from .schemas import AskRequest, AskResponse, SourceOut, StreamChunk

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ask"])


def get_runner(request: Request) -> BaseChainRunner:
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="No answering engine is configured.")
    return runner


def _build_response(result: AskResult, elapsed: float) -> AskResponse:
    return AskResponse(
        answer=result.answer,
        sources=[SourceOut(**source) for source in result.sources],
        status=result.status,
        gate_decision=result.gate_decision,
        was_truncated=result.was_truncated,
        tool_outputs=result.tool_outputs,
        response_time_seconds=elapsed,
    )


@router.get("/health")
async def health_endpoint(request: Request) -> dict:
    runner = getattr(request.app.state, "runner", None)
    return {"status": "ok", "engine": type(runner).__name__ if runner is not None else None}


@router.post("/ask", response_model=AskResponse)
async def ask_endpoint(request: AskRequest, runner: BaseChainRunner = Depends(get_runner)) -> AskResponse:
    """Get a complete answer to a question (non-streaming)."""
    start = time.time()
    result = await ask(question=request.question, runner=runner)
    return _build_response(result, time.time() - start)


async def _generate_stream_events(request: AskRequest, runner: BaseChainRunner) -> AsyncGenerator[str, None]:
    """Generate SSE events for streaming answer."""
    start = time.time()
    try:
        async for item in ask_stream(question=request.question, runner=runner):
            if isinstance(item, str):
                event = StreamChunk(type="chunk", content=item)
                yield f"data: {event.model_dump_json(exclude={'data'})}\n\n"
                continue
            event = StreamChunk(type="result", data=_build_response(item, time.time() - start))
            yield f"data: {event.model_dump_json(exclude={'content'})}\n\n"
    except Exception as e:  # noqa: BLE001
        logger.exception("Streaming answer failed")
        event = StreamChunk(type="error", content=f"Error: {str(e)}")
        yield f"data: {event.model_dump_json(exclude={'data'})}\n\n"

    yield "data: [DONE]\n\n"


@router.post("/ask/stream")
async def ask_stream_endpoint(
    request: AskRequest,
    runner: BaseChainRunner = Depends(get_runner),
) -> StreamingResponse:
    """Stream the answer as Server-Sent Events (SSE).

    Chunk events carry raw model output. The closing ``result`` event holds
    the gated answer, which replaces the streamed text when the post-answer
    gate abstained.
    """
    return StreamingResponse(
        _generate_stream_events(request, runner),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
