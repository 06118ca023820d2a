"""Pydantic schemas for API request/response models.

Single Responsibility: Define data structures for API communication.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    """Request payload for asking a question."""

    question: str = Field(..., min_length=1, description="The question to ask")


class SourceOut(BaseModel):
    """A source backing the answer."""

    title: str = Field(..., description="Note title")
    path: str = Field(..., description="Vault path of the note")
    score: float = Field(..., description="Merged ranking score")
    explanation: dict[str, Any] | None = Field(default=None, description="Structured provenance")
    details: list[str] = Field(default_factory=list, description="Human-readable provenance lines")


class AskResponse(BaseModel):
    """Response payload for a completed answer."""

    answer: str = Field(..., description="The final, gated answer")
    sources: list[SourceOut] = Field(default_factory=list, description="Sources; empty after an abstain")
    status: str = Field(..., description="answered, abstained, cancelled or failed")
    gate_decision: str | None = Field(
        default=None,
        description="PASS, PRE_ANSWER_ABSTAIN or POST_ANSWER_ABSTAIN",
    )
    was_truncated: bool = Field(default=False, description="True if generation stopped mid-stream")
    tool_outputs: list[dict[str, Any]] = Field(default_factory=list, description="Executed tool calls")
    response_time_seconds: float = Field(..., description="Time taken to answer")


class StreamChunk(BaseModel):
    """A chunk of streamed response."""

    type: str = Field(..., description="Event type: 'chunk', 'result' or 'error'")
    content: str | None = Field(default=None, description="Text content for chunk events")
    data: AskResponse | None = Field(default=None, description="Full response for result events")
