"""Streaming interceptor for generation output.

Single Responsibility: Buffer streamed chunks in arrival order, forward each
to the caller, survive mid-stream errors and produce the final text once.

State machine: ``IDLE -> STREAMING -> CLOSED``. ``close()`` is idempotent
and returns the same ``StreamResult`` every time. Chunks after close are
rejected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, List

from .types import ArchivistError, TurnCancelled

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamClosedError(ArchivistError):
    """A chunk arrived after the interceptor was closed."""


@dataclass(frozen=True)
class StreamResult:
    content: str
    was_truncated: bool = False
    chunk_count: int = 0
    error: str | None = None


class StreamInterceptor:
    """Single-owner buffer around one generation stream."""

    def __init__(self, on_chunk: Callable[[str], None] | None = None):
        self._on_chunk = on_chunk
        self._chunks: List[str] = []
        self._state = StreamState.IDLE
        self._was_truncated = False
        self._error: str | None = None
        self._result: StreamResult | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def content(self) -> str:
        return "".join(self._chunks)

    def process_chunk(self, chunk: str) -> None:
        if self._state == StreamState.CLOSED:
            raise StreamClosedError("stream already closed")
        self._state = StreamState.STREAMING
        if not chunk:
            return
        self._chunks.append(chunk)
        if self._on_chunk is not None:
            self._on_chunk(chunk)

    def process_error(self, error: BaseException | str) -> None:
        """Record a mid-stream failure. Buffered content is kept."""
        if self._state == StreamState.CLOSED:
            raise StreamClosedError("stream already closed")
        self._state = StreamState.STREAMING
        self._was_truncated = True
        self._error = str(error) or error.__class__.__name__
        logger.warning("Generation stream failed after %d chunks: %s", len(self._chunks), self._error)

    def close(self) -> StreamResult:
        if self._result is None:
            self._state = StreamState.CLOSED
            self._result = StreamResult(
                content=self.content,
                was_truncated=self._was_truncated,
                chunk_count=len(self._chunks),
                error=self._error,
            )
        return self._result

    async def consume(
        self,
        chunks: AsyncIterator[str],
        cancel_event: asyncio.Event | None = None,
    ) -> StreamResult:
        """Drain ``chunks`` into the buffer and close.

        ``chunks`` is closed on every exit path when it supports ``aclose``.

        Raises:
            TurnCancelled: when ``cancel_event`` is set between chunks. The
                interceptor is closed before raising.
        """
        try:
            async for chunk in chunks:
                if cancel_event is not None and cancel_event.is_set():
                    self.close()
                    raise TurnCancelled("cancelled during generation")
                self.process_chunk(chunk)
        except (TurnCancelled, StreamClosedError):
            raise
        except Exception as exc:  # noqa: BLE001
            self.process_error(exc)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        return self.close()
