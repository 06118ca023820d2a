"""LLM client for OpenAI API communication.

Single Responsibility: Handle streaming LLM API calls.
No prompt construction, no gating, no business logic.

``LLMClient`` is constructed explicitly and injected into the chain runners.
Use ``LLMClient.from_settings()`` for the configured default; pass a fake
``client`` in tests.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List

import httpx
from openai import AsyncOpenAI, RateLimitError

from .types import ArchivistError

logger = logging.getLogger(__name__)

__all__ = ["LLMClient", "ModelCapabilities"]

_RETRY_AFTER_RE = re.compile(r"try again in (\d+\.?\d*)s")
DEFAULT_RATE_LIMIT_RETRIES = 5


@dataclass(frozen=True)
class ModelCapabilities:
    """Model-specific call behavior from ``model_capabilities`` in settings.yaml."""
    reasoning_models: List[str] = field(default_factory=list)
    no_temperature_models: List[str] = field(default_factory=list)
    reasoning_effort: str = "low"

    @classmethod
    def from_config(cls, caps: Dict[str, Any] | None) -> "ModelCapabilities":
        caps = caps or {}
        return cls(
            reasoning_models=list(caps.get("reasoning_models") or []),
            no_temperature_models=list(caps.get("no_temperature_models") or []),
            reasoning_effort=str(caps.get("reasoning_effort") or "low"),
        )

    def uses_reasoning(self, model: str) -> bool:
        return bool(model) and any(model.startswith(prefix) for prefix in self.reasoning_models)

    def skips_temperature(self, model: str) -> bool:
        return bool(model) and any(model.startswith(prefix) for prefix in self.no_temperature_models)


def _retry_wait(exc: Exception, attempt: int) -> float:
    match = _RETRY_AFTER_RE.search(str(exc))
    return float(match.group(1)) + 0.5 if match else float(2 ** attempt)


async def _close_response(response: Any) -> None:
    close_fn = getattr(response, "close", None)
    if callable(close_fn):
        result = close_fn()
        if asyncio.iscoroutine(result):
            await result


class LLMClient:
    """Thin async adapter over ``AsyncOpenAI`` chat completions."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float | None = None,
        capabilities: ModelCapabilities | None = None,
        rate_limit_retries: int = DEFAULT_RATE_LIMIT_RETRIES,
    ):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.capabilities = capabilities or ModelCapabilities()
        self.rate_limit_retries = max(1, rate_limit_retries)

    @classmethod
    def from_settings(
        cls,
        *,
        connection_pool_size: int = 100,
        keepalive_connections: int = 50,
    ) -> "LLMClient":
        """Build a client from config/settings.yaml (env overrides applied)."""
        from ..common.config_loader import get_model_capabilities, get_openai_settings

        openai_settings = get_openai_settings()
        client = AsyncOpenAI(
            timeout=openai_settings["timeout_secs"],
            max_retries=openai_settings["max_retries"],
            http_client=httpx.AsyncClient(
                limits=httpx.Limits(
                    max_connections=connection_pool_size,
                    max_keepalive_connections=keepalive_connections,
                ),
            ),
        )
        return cls(
            client,
            model=str(openai_settings["chat_model"] or ""),
            temperature=openai_settings["temperature"],
            capabilities=ModelCapabilities.from_config(get_model_capabilities()),
        )

    def _request_kwargs(self, prompt: str) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.capabilities.uses_reasoning(self.model):
            kwargs["reasoning_effort"] = self.capabilities.reasoning_effort
        elif not self.capabilities.skips_temperature(self.model) and self.temperature is not None:
            kwargs["temperature"] = self.temperature
        return kwargs

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield text chunks as they arrive.

        Rate limits are retried only before the first chunk; a failure after
        output started is raised so the interceptor can mark truncation.
        Closing the generator closes the underlying HTTP response.

        Raises:
            ArchivistError: on rate-limit exhaustion or any API failure.
        """
        kwargs = self._request_kwargs(prompt)
        for attempt in range(self.rate_limit_retries):
            started = False
            stream = None
            try:
                stream = await self._client.chat.completions.create(stream=True, **kwargs)
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        started = True
                        yield chunk.choices[0].delta.content
                return
            except RateLimitError as exc:
                if not started and attempt < self.rate_limit_retries - 1:
                    wait_time = _retry_wait(exc, attempt)
                    logger.warning("Rate limited (attempt %d); retrying in %.1fs", attempt + 1, wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                raise ArchivistError(
                    f"OpenAI rate limit exceeded after {attempt + 1} attempts."
                ) from exc
            except Exception as exc:  # noqa: BLE001
                raise ArchivistError("OpenAI streaming request failed.") from exc
            finally:
                await _close_response(stream)
