"""Anthropic Messages API provider."""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import anthropic

from yuruppu.ai.conversation import build_messages
from yuruppu.ai.provider import CacheRef, ModelOutput, Provider, TextOutput, ToolCallsOutput
from yuruppu.config import AgentConfig, AnthropicConfig
from yuruppu.errors import (
    CacheNotFoundError,
    ProviderAuthError,
    ProviderClosedError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from yuruppu.history.models import ToolCall, Turn
from yuruppu.log import get_logger

logger = get_logger(__name__)


def _map_error(e: anthropic.APIError) -> ProviderError:
    """Map Anthropic SDK errors onto the provider error family."""
    if isinstance(e, anthropic.APITimeoutError):
        return ProviderTimeoutError(f"LLM API timeout: {e}")
    if isinstance(e, anthropic.APIConnectionError):
        return ProviderNetworkError(f"LLM API network error: {e}")
    if isinstance(e, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ProviderAuthError(f"LLM API auth error: {e}", status_code=e.status_code)
    if isinstance(e, anthropic.RateLimitError):
        retry_after = None
        raw = e.response.headers.get("retry-after") if e.response is not None else None
        if raw is not None:
            with contextlib.suppress(ValueError):
                retry_after = float(raw)
        return ProviderRateLimitError(f"LLM API rate limit: {e}", retry_after=retry_after)
    if isinstance(e, anthropic.InternalServerError):
        return ProviderResponseError(f"LLM API server error: {e}")
    return ProviderResponseError(f"LLM API error: {e}")


class AnthropicProvider(Provider):
    """Provider backed by the official async SDK.

    The Messages API has no server-side cache objects; prompt caching is
    requested per call with ``cache_control`` on the system block. A
    ``CacheRef`` here names a registered system prompt that is always sent
    with that marker, and expires after ``cache_ttl`` so that callers
    refresh it the same way they would a server-side cache.
    """

    def __init__(
        self,
        config: AnthropicConfig,
        agent_config: AgentConfig,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )
        self._model = agent_config.model
        self._max_tokens = agent_config.max_tokens
        self._temperature = agent_config.temperature
        self._cache_ttl = timedelta(seconds=agent_config.cache_ttl)
        self._caches: dict[str, tuple[str, datetime]] = {}
        self._closed = False
        self._close_lock = asyncio.Lock()

    @property
    def model_name(self) -> str:
        return self._model

    async def generate_text(
        self,
        system_prompt: str,
        turns: Sequence[Turn],
        tools: list[dict[str, Any]],
    ) -> ModelOutput:
        return await self._create(system_prompt, turns, tools)

    async def generate_text_cached(
        self,
        cache: CacheRef,
        turns: Sequence[Turn],
        tools: list[dict[str, Any]],
    ) -> ModelOutput:
        self._check_open()
        entry = self._caches.get(cache.name)
        if entry is None:
            raise CacheNotFoundError(f"cache not found: {cache.name}")
        prompt, expires_at = entry
        if expires_at <= datetime.now(timezone.utc):
            self._caches.pop(cache.name, None)
            raise CacheNotFoundError(f"cache expired: {cache.name}")

        system = [{"type": "text", "text": prompt, "cache_control": {"type": "ephemeral"}}]
        return await self._create(system, turns, tools)

    async def create_cache(self, system_prompt: str) -> CacheRef:
        self._check_open()
        name = f"cachedContents/{uuid.uuid4().hex[:16]}"
        expires_at = datetime.now(timezone.utc) + self._cache_ttl
        self._caches[name] = (system_prompt, expires_at)
        logger.debug("cache_created", cache_name=name, expires_at=expires_at.isoformat())
        return CacheRef(name=name, expires_at=expires_at)

    async def delete_cache(self, cache: CacheRef) -> None:
        if self._caches.pop(cache.name, None) is None:
            raise CacheNotFoundError(f"cache not found: {cache.name}")
        logger.debug("cache_deleted", cache_name=cache.name)

    async def close(self) -> None:
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._caches.clear()
            await self._client.close()
            logger.debug("provider_closed", model=self._model)

    def _check_open(self) -> None:
        if self._closed:
            raise ProviderClosedError("provider is closed")

    async def _create(
        self,
        system: str | list[dict[str, Any]],
        turns: Sequence[Turn],
        tools: list[dict[str, Any]],
    ) -> ModelOutput:
        self._check_open()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system,
            "messages": build_messages(turns),
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("api_request", model=self._model, message_count=len(kwargs["messages"]))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise _map_error(e) from e
        logger.debug(
            "api_response",
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return _to_output(response)


def _to_output(response: Any) -> ModelOutput:
    """Tool calls take precedence; text sent alongside them is dropped."""
    calls = tuple(
        ToolCall(call_id=b.id, name=b.name, arguments=dict(b.input or {}))
        for b in response.content
        if b.type == "tool_use"
    )
    if calls:
        return ToolCallsOutput(calls=calls, model_name=response.model)
    text = "\n".join(b.text for b in response.content if b.type == "text")
    if not text and response.stop_reason == "max_tokens":
        raise ProviderResponseError("LLM response truncated before any output")
    return TextOutput(text=text, model_name=response.model)
