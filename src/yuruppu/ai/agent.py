"""Agent: prompt -> tool calls -> tool results loop for one inbound message."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Literal, Sequence

from yuruppu.ai.provider import CacheRef, ModelOutput, Provider, TextOutput
from yuruppu.ai.tools.registry import DispatchOutcome, ToolRegistry
from yuruppu.config import AgentConfig
from yuruppu.core.context import RequestContext
from yuruppu.errors import (
    AgentClosedError,
    AgentTimeoutError,
    CacheNotFoundError,
    ConflictError,
    HistoryConflictError,
    ProviderError,
    StorageError,
    StorageTimeoutError,
    ToolBudgetExhaustedError,
    ToolResponseSchemaError,
)
from yuruppu.history.models import (
    ConversationHistory,
    ModelTurn,
    Revision,
    ToolFailure,
    ToolTurn,
    Turn,
    UserTurn,
)
from yuruppu.history.store import HistoryStore
from yuruppu.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of a successful invocation.

    ``status`` is ``"final"`` when a tool ended the loop and ``"text"`` when
    the model answered in plain text. ``persisted`` is False when the new
    turns could not be written to history after the cycle completed.
    """

    status: Literal["final", "text"]
    new_turns: tuple[Turn, ...] = ()
    rounds: int = 0
    final_text: str | None = None
    persisted: bool = True


@dataclass(slots=True)
class _Cycle:
    new_turns: list[Turn] = field(default_factory=list)
    rounds: int = 0


class Agent:
    """Runs the tool-calling loop against one provider and one registry.

    One instance serves every conversation; per-invocation state lives in
    ``respond``. The system prompt is cached on the provider at ``start``
    and used for every call while the cache is alive.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        history: HistoryStore,
        config: AgentConfig,
    ):
        self._provider = provider
        self._registry = registry
        self._history = history
        self._config = config
        self._cache: CacheRef | None = None
        self._cache_lock = asyncio.Lock()
        self._closed = False

    @property
    def cached(self) -> bool:
        return self._cache is not None

    async def start(self) -> None:
        """Create the system prompt cache. Failure leaves the agent uncached."""
        try:
            self._cache = await self._provider.create_cache(self._config.system_prompt)
        except ProviderError as e:
            logger.warning("cache_create_failed", error=str(e), kind=e.kind)
            self._cache = None
            return
        logger.info("agent_started", cache_name=self._cache.name, tools=self._registry.names())

    async def close(self) -> None:
        """Delete the cache. Idempotent; the provider stays open."""
        if self._closed:
            return
        self._closed = True
        async with self._cache_lock:
            cache, self._cache = self._cache, None
        if cache is None:
            return
        try:
            await self._provider.delete_cache(cache)
        except ProviderError as e:
            logger.warning("cache_delete_failed", cache_name=cache.name, error=str(e))

    async def respond(self, ctx: RequestContext, text: str) -> Outcome:
        """Handle one inbound message for ``ctx.conversation_key``.

        ``invocation_timeout`` is one deadline for the history read, the
        model/tool cycle and the append. Missing it while appending is
        reported as a durability gap, since replies may already be out.

        Raises:
            AgentClosedError: ``close`` was called.
            AgentTimeoutError: the deadline passed before the cycle finished.
            ToolBudgetExhaustedError: ``max_tool_rounds`` rounds passed without a final tool.
            ProviderError: the model call failed.
            StorageError: the history could not be loaded.
        """
        if self._closed:
            raise AgentClosedError("agent is closed")

        deadline = asyncio.get_running_loop().time() + self._config.invocation_timeout
        user_turn = UserTurn(text=text, sender_id=ctx.sender_id)
        cycle = _Cycle(new_turns=[user_turn])

        try:
            history, revision = await asyncio.wait_for(
                self._history.get(ctx.conversation_key), timeout=_remaining(deadline)
            )
            status, final_text = await asyncio.wait_for(
                self._run(ctx, self._window(history), cycle),
                timeout=_remaining(deadline),
            )
        except asyncio.TimeoutError as e:
            raise AgentTimeoutError(
                f"invocation exceeded {self._config.invocation_timeout}s after {cycle.rounds} rounds"
            ) from e

        new_turns = tuple(cycle.new_turns)
        try:
            await self._persist(ctx.conversation_key, revision, new_turns, deadline)
            persisted = True
        except (StorageError, HistoryConflictError) as e:
            # Tool side effects already happened; they are not retried.
            logger.error(
                "history_durability_gap",
                conversation_key=ctx.conversation_key,
                turns=len(new_turns),
                error=str(e),
                kind=e.kind,
            )
            persisted = False

        logger.info(
            "agent_done",
            conversation_key=ctx.conversation_key,
            status=status,
            rounds=cycle.rounds,
            persisted=persisted,
        )
        return Outcome(
            status=status,
            new_turns=new_turns,
            rounds=cycle.rounds,
            final_text=final_text,
            persisted=persisted,
        )

    def _window(self, history: ConversationHistory) -> ConversationHistory:
        """Keep the last ``history_limit`` turns, starting at a user turn."""
        limit = self._config.history_limit
        if limit <= 0 or len(history) <= limit:
            return history
        tail = history[-limit:]
        for i, turn in enumerate(tail):
            if isinstance(turn, UserTurn):
                return tail[i:]
        return ()

    async def _run(
        self,
        ctx: RequestContext,
        history: ConversationHistory,
        cycle: _Cycle,
    ) -> tuple[Literal["final", "text"], str | None]:
        tools = self._registry.definitions()

        while True:
            output = await self._generate([*history, *cycle.new_turns], tools)

            if isinstance(output, TextOutput):
                cycle.new_turns.append(ModelTurn(text=output.text, model_name=output.model_name))
                return "text", output.text

            if cycle.rounds >= self._config.max_tool_rounds:
                raise ToolBudgetExhaustedError(cycle.rounds)

            cycle.rounds += 1
            results = []
            final = False
            for call in output.calls:
                try:
                    dispatched = await self._registry.dispatch(ctx, call)
                except ToolResponseSchemaError as e:
                    logger.error(
                        "tool_response_invalid",
                        tool=call.name,
                        call_id=call.call_id,
                        detail=e.detail,
                        exc_info=True,
                    )
                    # Local to this call; the model sees a failed result.
                    failure = ToolFailure(
                        call_id=call.call_id,
                        name=call.name,
                        error=f"{call.name} failed: internal error",
                    )
                    dispatched = DispatchOutcome(failure)
                results.append(dispatched.result)
                final = final or dispatched.final

            cycle.new_turns.append(ModelTurn(tool_calls=output.calls, model_name=output.model_name))
            cycle.new_turns.append(ToolTurn(results=tuple(results)))
            logger.debug(
                "tool_round_done",
                round=cycle.rounds,
                tools=[c.name for c in output.calls],
                final=final,
            )
            if final:
                return "final", None

    async def _generate(self, turns: Sequence[Turn], tools: list[dict]) -> ModelOutput:
        cache = self._cache
        if cache is None:
            return await self._provider.generate_text(self._config.system_prompt, turns, tools)

        try:
            return await self._provider.generate_text_cached(cache, turns, tools)
        except CacheNotFoundError:
            logger.warning("cache_not_found", cache_name=cache.name)

        cache = await self._recreate_cache(cache)
        if cache is not None:
            try:
                return await self._provider.generate_text_cached(cache, turns, tools)
            except CacheNotFoundError:
                logger.warning("cache_not_found_after_recreate", cache_name=cache.name)
        return await self._provider.generate_text(self._config.system_prompt, turns, tools)

    async def _recreate_cache(self, stale: CacheRef) -> CacheRef | None:
        async with self._cache_lock:
            if self._closed:
                return None
            # Another invocation may have replaced it already.
            if self._cache is not None and self._cache != stale:
                return self._cache
            try:
                self._cache = await self._provider.create_cache(self._config.system_prompt)
            except ProviderError as e:
                logger.warning("cache_recreate_failed", error=str(e), kind=e.kind)
                self._cache = None
                return None
            logger.info("cache_recreated", cache_name=self._cache.name)
            return self._cache

    async def _persist(
        self,
        key: str,
        revision: Revision,
        turns: Sequence[Turn],
        deadline: float,
    ) -> None:
        try:
            await asyncio.wait_for(self._append(key, revision, turns), timeout=_remaining(deadline))
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(f"history append for {key} missed the invocation deadline") from e

    async def _append(self, key: str, revision: Revision, turns: Sequence[Turn]) -> None:
        attempts = self._config.history_append_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self._history.append(key, revision, turns)
                return
            except ConflictError as e:
                logger.info("history_conflict", conversation_key=key, attempt=attempt, error=str(e))
                _, revision = await self._history.get(key)
        raise HistoryConflictError(key, attempts)


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - asyncio.get_running_loop().time())
