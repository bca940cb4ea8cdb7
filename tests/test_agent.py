"""Tests for the agent loop: tool rounds, finality, caching and persistence."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from pydantic import BaseModel

from tests.fakes import WTTR_PAYLOAD, FakeProvider, calls, make_ctx, text
from yuruppu.ai.agent import Agent
from yuruppu.ai.tools.base import Tool
from yuruppu.ai.tools.registry import ToolRegistry
from yuruppu.ai.tools.reply import ReplyTool, SkipTool
from yuruppu.ai.tools.weather import WeatherTool
from yuruppu.config import AgentConfig
from yuruppu.errors import (
    AgentClosedError,
    AgentTimeoutError,
    ConflictError,
    ProviderRateLimitError,
    ProviderResponseError,
    StorageWriteError,
    ToolBudgetExhaustedError,
)
from yuruppu.history.models import NO_REVISION, ModelTurn, ToolFailure, ToolSuccess, ToolTurn, UserTurn
from yuruppu.history.store import HistoryStore


def _weather_tool() -> WeatherTool:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=WTTR_PAYLOAD))
    return WeatherTool(client=httpx.AsyncClient(transport=transport))


@pytest.fixture
def registry(messenger) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(ReplyTool(messenger))
    registry.register(SkipTool())
    registry.register(_weather_tool())
    return registry


def _make_agent(provider, registry, history, **overrides) -> Agent:
    config = AgentConfig(system_prompt="You are Yuruppu.", **overrides)
    return Agent(provider, registry, history, config)


class _CountArgs(BaseModel):
    pass


class _CountResult(BaseModel):
    n: int


class _MiscountTool(Tool[_CountArgs, _CountResult]):
    """Returns a result that breaks its own response model."""

    parameters_model = _CountArgs
    response_model = _CountResult

    @property
    def name(self) -> str:
        return "count"

    @property
    def description(self) -> str:
        return "Count things."

    async def execute(self, ctx, args):
        return {"n": "not-an-int"}


class _SlowHistory(HistoryStore):
    def __init__(self, storage, slow_get=False, slow_append=False):
        super().__init__(storage)
        self.slow_get = slow_get
        self.slow_append = slow_append

    async def get(self, key):
        if self.slow_get:
            await asyncio.sleep(1)
        return await super().get(key)

    async def append(self, key, expected_revision, new_turns):
        if self.slow_append:
            await asyncio.sleep(1)
        return await super().append(key, expected_revision, new_turns)


# ─── Scenarios ────────────────────────────────────────────────


class TestScenarios:
    async def test_weather_then_reply(self, provider, registry, history, messenger, ctx):
        provider.script(
            calls(("get_weather", {"location": "Tokyo"})),
            calls(("reply", {"message": "Tomorrow in Tokyo: sunny, 26°C."})),
        )
        agent = _make_agent(provider, registry, history)
        await agent.start()

        outcome = await agent.respond(ctx, "weather in Tokyo tomorrow")

        assert outcome.status == "final"
        assert outcome.rounds == 2
        assert outcome.persisted is True
        assert [m.text for m in messenger.sent] == ["Tomorrow in Tokyo: sunny, 26°C."]
        assert messenger.sent[0].reply_to_message_id == "100"

        stored, revision = await history.get(ctx.conversation_key)
        assert revision != NO_REVISION
        assert stored == outcome.new_turns
        assert [type(t) for t in stored] == [UserTurn, ModelTurn, ToolTurn, ModelTurn, ToolTurn]
        weather_result = stored[2].results[0]
        assert isinstance(weather_result, ToolSuccess)
        assert weather_result.payload["current"]["temperature_c"] == 21.0

        # The second model call saw the weather result.
        assert len(provider.calls) == 2
        assert provider.calls[1]["turns"][-1] == stored[2]
        assert all(c["cached"] for c in provider.calls)

    async def test_unknown_tool_reported_to_model(self, provider, registry, history, messenger, ctx):
        provider.script(
            calls(("nonexistent", {})),
            calls(("reply", {"message": "Sorry, I can't do that."})),
        )
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "do something odd")

        assert outcome.status == "final"
        failure = outcome.new_turns[2].results[0]
        assert isinstance(failure, ToolFailure)
        assert "unknown tool" in failure.error
        assert registry.names() == ["reply", "skip", "get_weather"]

    async def test_budget_exhausted_persists_nothing(self, provider, registry, history, messenger, ctx):
        provider.script(*[calls(("get_weather", {"location": "Tokyo"}))] * 4)
        agent = _make_agent(provider, registry, history, max_tool_rounds=3)

        with pytest.raises(ToolBudgetExhaustedError) as exc_info:
            await agent.respond(ctx, "loop forever")

        assert exc_info.value.kind == "tool-call budget exhausted"
        assert exc_info.value.rounds == 3
        assert len(provider.calls) == 4
        assert await history.get(ctx.conversation_key) == ((), NO_REVISION)
        assert messenger.sent == []


# ─── Loop behaviour ───────────────────────────────────────────


class TestLoop:
    async def test_plain_text_ends_loop(self, provider, registry, history, messenger, ctx):
        provider.script(text("just text"))
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "hi")

        assert outcome.status == "text"
        assert outcome.final_text == "just text"
        assert outcome.rounds == 0
        assert messenger.sent == []
        stored, _ = await history.get(ctx.conversation_key)
        assert stored[-1] == ModelTurn(text="just text", model_name="test-model", timestamp=stored[-1].timestamp)

    async def test_skip_is_final(self, provider, registry, history, messenger, ctx):
        provider.script(calls(("skip", {"reason": "not addressed to me"})))
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "talking among ourselves")

        assert outcome.status == "final"
        assert outcome.rounds == 1
        assert messenger.sent == []
        assert len(provider.calls) == 1

    async def test_final_in_same_round_stops_after_round(self, provider, registry, history, messenger, ctx):
        provider.script(
            calls(("reply", {"message": "hello"}), ("get_weather", {"location": "Osaka"})),
        )
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "hi")

        assert outcome.status == "final"
        results = outcome.new_turns[2].results
        assert [r.name for r in results] == ["reply", "get_weather"]
        assert all(isinstance(r, ToolSuccess) for r in results)
        assert len(provider.calls) == 1

    async def test_second_reply_fails(self, provider, registry, history, messenger, ctx):
        provider.script(
            calls(("reply", {"message": "one"}), ("reply", {"message": "two"})),
        )
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "hi")

        first, second = outcome.new_turns[2].results
        assert isinstance(first, ToolSuccess)
        assert isinstance(second, ToolFailure)
        assert [m.text for m in messenger.sent] == ["one"]

    async def test_provider_error_persists_nothing(self, provider, registry, history, ctx):
        provider.script(ProviderRateLimitError("slow down", retry_after=3))
        agent = _make_agent(provider, registry, history)

        with pytest.raises(ProviderRateLimitError):
            await agent.respond(ctx, "hi")
        assert await history.get(ctx.conversation_key) == ((), NO_REVISION)

    async def test_history_is_sent_to_model(self, provider, registry, history, ctx):
        provider.script(text("first"), text("second"))
        agent = _make_agent(provider, registry, history)

        await agent.respond(ctx, "one")
        await agent.respond(ctx, "two")

        turns = provider.calls[1]["turns"]
        assert [t.text for t in turns] == ["one", "first", "two"]

    async def test_history_limit_starts_at_user_turn(self, provider, registry, history, ctx):
        provider.script(
            calls(("get_weather", {"location": "Tokyo"})),
            text("done"),
            text("next"),
        )
        agent = _make_agent(provider, registry, history, history_limit=3)

        await agent.respond(ctx, "one")  # user, model(call), tool, model(text)
        await agent.respond(ctx, "two")

        turns = provider.calls[-1]["turns"]
        assert isinstance(turns[0], UserTurn)
        assert [t.text for t in turns if isinstance(t, UserTurn)] == ["two"]

    async def test_timeout(self, registry, history, ctx):
        class SlowProvider(FakeProvider):
            async def generate_text(self, system_prompt, turns, tools):
                await asyncio.sleep(1)
                return text("late")

        agent = _make_agent(SlowProvider(), registry, history, invocation_timeout=0.01)

        with pytest.raises(AgentTimeoutError):
            await agent.respond(ctx, "hi")
        assert await history.get(ctx.conversation_key) == ((), NO_REVISION)

    async def test_invalid_tool_response_reported_to_model(self, provider, registry, history, messenger, ctx):
        registry.register(_MiscountTool())
        provider.script(
            calls(("count", {})),
            calls(("reply", {"message": "Something went wrong counting."})),
        )
        agent = _make_agent(provider, registry, history)

        outcome = await agent.respond(ctx, "count for me")

        assert outcome.status == "final"
        assert outcome.rounds == 2
        failure = outcome.new_turns[2].results[0]
        assert failure == ToolFailure(call_id="call-1", name="count", error="count failed: internal error")
        assert provider.calls[1]["turns"][-1] == outcome.new_turns[2]
        assert [m.text for m in messenger.sent] == ["Something went wrong counting."]

    async def test_slow_history_read_hits_deadline(self, provider, registry, storage, ctx):
        agent = _make_agent(provider, registry, _SlowHistory(storage, slow_get=True), invocation_timeout=0.05)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(AgentTimeoutError):
            await agent.respond(ctx, "hi")

        assert loop.time() - started < 0.5
        assert provider.calls == []


# ─── Caching ──────────────────────────────────────────────────


class TestCache:
    async def test_uncached_when_create_fails(self, provider, registry, history, ctx):
        provider.fail_create = ProviderResponseError("no caches today")
        provider.script(text("ok"))
        agent = _make_agent(provider, registry, history)

        await agent.start()
        assert agent.cached is False

        await agent.respond(ctx, "hi")
        assert provider.calls[0]["cached"] is False
        assert provider.calls[0]["system"] == "You are Yuruppu."

    async def test_expired_cache_recreated(self, provider, registry, history, ctx):
        provider.script(text("ok"))
        agent = _make_agent(provider, registry, history)
        await agent.start()
        provider.caches.clear()  # expired on the provider side

        await agent.respond(ctx, "hi")

        assert provider.created == 2
        assert provider.calls == [
            {"cached": True, "cache": "cache-2", "turns": provider.calls[0]["turns"], "tools": registry.definitions()}
        ]

    async def test_falls_back_when_recreate_fails(self, provider, registry, history, ctx):
        provider.script(text("ok"))
        agent = _make_agent(provider, registry, history)
        await agent.start()
        provider.caches.clear()
        provider.fail_create = ProviderResponseError("quota")

        outcome = await agent.respond(ctx, "hi")

        assert outcome.status == "text"
        assert provider.calls[0]["cached"] is False
        assert agent.cached is False

    async def test_close_deletes_cache_once(self, provider, registry, history, ctx):
        agent = _make_agent(provider, registry, history)
        await agent.start()

        await agent.close()
        await agent.close()

        assert provider.deleted == ["cache-1"]
        assert provider.closed is False
        with pytest.raises(AgentClosedError):
            await agent.respond(ctx, "hi")

    async def test_close_tolerates_missing_cache(self, provider, registry, history):
        agent = _make_agent(provider, registry, history)
        await agent.start()
        provider.caches.clear()

        await agent.close()
        assert provider.deleted == []


# ─── Persistence ──────────────────────────────────────────────


class TestPersistence:
    async def test_retries_on_conflict(self, provider, registry, history, storage, ctx):
        provider.script(text("ok"))

        class InterleavingStore(HistoryStore):
            injected = False

            async def append(self, key, expected_revision, new_turns):
                if not self.injected:
                    self.injected = True
                    await history.append(key, expected_revision, [UserTurn(text="meanwhile")])
                return await super().append(key, expected_revision, new_turns)

        agent = _make_agent(provider, registry, InterleavingStore(storage))

        outcome = await agent.respond(ctx, "hi")

        assert outcome.persisted is True
        stored, _ = await history.get(ctx.conversation_key)
        assert [t.text for t in stored] == ["meanwhile", "hi", "ok"]

    async def test_durability_gap_keeps_side_effects(self, provider, registry, storage, messenger, ctx):
        provider.script(calls(("reply", {"message": "sent anyway"})))

        class FailingStore(HistoryStore):
            async def append(self, key, expected_revision, new_turns):
                raise StorageWriteError("disk full")

        agent = _make_agent(provider, registry, FailingStore(storage))

        outcome = await agent.respond(ctx, "hi")

        assert outcome.status == "final"
        assert outcome.persisted is False
        assert [m.text for m in messenger.sent] == ["sent anyway"]

    async def test_conflict_retries_exhausted(self, provider, registry, storage, ctx):
        provider.script(text("ok"))

        class AlwaysConflicting(HistoryStore):
            attempts = 0

            async def append(self, key, expected_revision, new_turns):
                self.attempts += 1
                raise ConflictError(key, expected_revision, expected_revision + 1)

        store = AlwaysConflicting(storage)
        agent = _make_agent(provider, registry, store, history_append_attempts=2)

        outcome = await agent.respond(ctx, "hi")

        assert outcome.persisted is False
        assert store.attempts == 2

    async def test_separate_conversations(self, provider, registry, history):
        provider.script(text("a"), text("b"))
        agent = _make_agent(provider, registry, history)

        await agent.respond(make_ctx("room-a"), "to a")
        await agent.respond(make_ctx("room-b"), "to b")

        stored_a, _ = await history.get("room-a")
        stored_b, _ = await history.get("room-b")
        assert [t.text for t in stored_a] == ["to a", "a"]
        assert [t.text for t in stored_b] == ["to b", "b"]

    async def test_slow_append_is_durability_gap(self, provider, registry, storage, messenger, ctx):
        provider.script(calls(("reply", {"message": "on time"})))
        store = _SlowHistory(storage, slow_append=True)
        agent = _make_agent(provider, registry, store, invocation_timeout=0.2)
        loop = asyncio.get_running_loop()
        started = loop.time()

        outcome = await agent.respond(ctx, "hi")

        assert loop.time() - started < 0.8
        assert outcome.status == "final"
        assert outcome.persisted is False
        assert [m.text for m in messenger.sent] == ["on time"]
        assert await store.get(ctx.conversation_key) == ((), NO_REVISION)
