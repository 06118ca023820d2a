"""Tool registry and single-call execution.

Single Responsibility: Resolve a ToolCall to a registered async tool, repair
its args, run it once and record the outcome. Failures never propagate:
they become failed ``ToolOutputRecord`` entries.

Tools are async callables taking the validated args dict:

    async def local_search(args: dict) -> dict | str: ...
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from .constants import MAX_SALIENT_TERMS
from .helpers import parse_tool_payload
from .proposal_store import SemanticRelationProposalStore
from .tool_args import validate_tool_args
from .types import ToolCall, ToolExecutionError, ToolName, ToolOutputRecord, TurnCancelled

logger = logging.getLogger(__name__)

ToolFunc = Callable[[Dict[str, Any]], Awaitable[Any]]

# Tools with a JSON result contract; anything else is accepted verbatim.
_STRUCTURED_TOOLS = frozenset(t.value for t in ToolName)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    func: ToolFunc
    description: str = ""


class ToolRegistry:
    """Name -> tool lookup. One registry per application, injected into runners."""

    def __init__(self, tools: Iterable[ToolSpec] | None = None):
        self._tools: Dict[str, ToolSpec] = {}
        for spec in tools or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            logger.debug("Replacing registered tool %s", spec.name)
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @classmethod
    def from_callables(cls, tools: Dict[str, ToolFunc]) -> "ToolRegistry":
        return cls(ToolSpec(name=name, func=func) for name, func in tools.items())


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TurnCancelled("turn cancelled")


class ToolExecutor:
    """Runs one tool call at a time. Holds no per-turn state."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        proposal_store: SemanticRelationProposalStore | None = None,
        max_salient_terms: int = MAX_SALIENT_TERMS,
    ):
        self.registry = registry
        self.proposal_store = proposal_store
        self.max_salient_terms = max_salient_terms

    async def execute(
        self,
        call: ToolCall,
        *,
        user_message: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ToolOutputRecord:
        """Execute ``call`` and return its record.

        Raises:
            TurnCancelled: if ``cancel_event`` is set before the call starts.
        """
        raise_if_cancelled(cancel_event)

        name = str(call.tool_name or "").strip()
        if not name:
            return ToolOutputRecord(
                tool="unknown",
                result="Error: Invalid tool call - missing tool name",
                success=False,
            )

        spec = self.registry.get(name)
        if spec is None:
            available = ", ".join(self.registry.names())
            logger.warning("Tool %s not registered (available: %s)", name, available)
            return ToolOutputRecord(
                tool=name,
                result=f"Error: Tool '{name}' not found. Available tools: {available}.",
                success=False,
                args=call.args if isinstance(call.args, dict) else {},
            )

        validation = validate_tool_args(
            name,
            call.args,
            fallback_query=user_message,
            max_salient_terms=self.max_salient_terms,
        )
        if not validation.ok:
            logger.warning("Unrepairable args for %s: %s", name, validation.errors)
            return ToolOutputRecord(
                tool=name,
                result=f"Error: invalid arguments for {name}: {validation.errors}",
                success=False,
                args=call.args if isinstance(call.args, dict) else {},
            )
        args = validation.args or {}
        if validation.repaired:
            logger.debug("Repaired args for %s: %r -> %r", name, call.args, args)

        try:
            result = await spec.func(args)
            if name in _STRUCTURED_TOOLS and parse_tool_payload(result) is None:
                raise ToolExecutionError(name, "unparsable payload")
        except ToolExecutionError as exc:
            logger.warning("Tool call failed: %s", exc)
            return ToolOutputRecord(tool=name, result=f"Error: {exc}", success=False, args=args)
        except Exception as exc:  # noqa: BLE001
            err = ToolExecutionError(name, str(exc) or exc.__class__.__name__)
            logger.warning("Tool call failed: %s", err)
            return ToolOutputRecord(tool=name, result=f"Error: {err}", success=False, args=args)

        if self.proposal_store is not None:
            self.proposal_store.ingest_from_tool_output(name, result)

        return ToolOutputRecord(tool=name, result=result, success=True, args=args)
