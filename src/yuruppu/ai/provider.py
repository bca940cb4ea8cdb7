"""LLM provider interface the agent depends on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence, Union

from yuruppu.history.models import ToolCall, Turn


@dataclass(frozen=True, slots=True)
class TextOutput:
    """The model answered in plain text and requested no tools."""

    text: str
    model_name: str = ""


@dataclass(frozen=True, slots=True)
class ToolCallsOutput:
    """The model requested one or more tool calls."""

    calls: tuple[ToolCall, ...]
    model_name: str = ""

    def __post_init__(self) -> None:
        if not self.calls:
            raise ValueError("ToolCallsOutput needs at least one call")


ModelOutput = Union[TextOutput, ToolCallsOutput]


@dataclass(frozen=True, slots=True)
class CacheRef:
    """Handle for a system prompt uploaded ahead of time.

    Owned by whoever called ``create_cache``; it must be released with
    ``delete_cache``.
    """

    name: str
    expires_at: datetime | None = None


class Provider(ABC):
    """Hosted model API. Implementations must be safe for concurrent use."""

    @abstractmethod
    async def generate_text(
        self,
        system_prompt: str,
        turns: Sequence[Turn],
        tools: list[dict[str, Any]],
    ) -> ModelOutput:
        ...

    @abstractmethod
    async def generate_text_cached(
        self,
        cache: CacheRef,
        turns: Sequence[Turn],
        tools: list[dict[str, Any]],
    ) -> ModelOutput:
        """Like ``generate_text`` with the system prompt taken from ``cache``.

        Raises ``CacheNotFoundError`` when the cache expired or is unknown.
        """
        ...

    @abstractmethod
    async def create_cache(self, system_prompt: str) -> CacheRef:
        ...

    @abstractmethod
    async def delete_cache(self, cache: CacheRef) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release provider resources. Idempotent."""
        ...
