"""Integration tests for the guarantees a turn keeps under failure and load."""

import asyncio
import json

import pytest
from pydantic import BaseModel

from procure_agent.config import AgentConfig
from procure_agent.errors import (
    ConversationNotFound,
    PersistenceFailure,
    ProviderTransportError,
    ProviderUnavailable,
    TurnFailure,
    ValidationError,
)
from procure_agent.models import (
    ASSISTANT_ROLE,
    TIMEOUT,
    TOOL_CALL_BUDGET_EXCEEDED,
    TOOL_ROLE,
    TURN_TIME_BUDGET_EXCEEDED,
)
from procure_agent.persistence import InMemoryConversationStore, StoreError
from procure_agent.providers import LLMProviderError, ProviderReply, TransientProviderError
from procure_agent.tools import ToolRegistry, ToolSpec
from tests.fixtures import (
    FakeClock,
    ScriptedProvider,
    create_test_orchestrator,
    fast_reliability_config,
    make_tool_call,
    text_reply,
    tool_reply,
)


def assert_tool_messages_paired(messages):
    """Every tool message answers a call made by the assistant message before it."""
    pending = []
    for message in messages:
        if message.role == ASSISTANT_ROLE and message.tool_calls:
            assert not pending, f"Unanswered tool calls: {pending}"
            pending = [tc.id for tc in message.tool_calls]
        elif message.role == TOOL_ROLE:
            assert pending, f"Tool message {message.tool_call_id} has no preceding call"
            assert message.tool_call_id == pending.pop(0)
    assert not pending, f"Unanswered tool calls: {pending}"


class EmptyArgs(BaseModel):
    pass


def hanging_registry(release: asyncio.Event):
    async def hang(args, context):
        await release.wait()
        return {"never": True}

    async def quick(args, context):
        return {"ok": True}

    return ToolRegistry(
        [
            ToolSpec(name="slow_lookup", description="Never finishes", args_model=EmptyArgs, handler=hang),
            ToolSpec(name="fast_lookup", description="Finishes at once", args_model=EmptyArgs, handler=quick),
        ]
    )


class TestPairing:
    """Tool messages stay paired with the calls that produced them."""

    @pytest.mark.asyncio
    async def test_every_provider_call_sees_paired_messages(self):
        provider = ScriptedProvider(
            [
                tool_reply(
                    make_tool_call("a1", "search_catalog", query="stapler"),
                    make_tool_call("a2", "get_cart"),
                ),
                tool_reply(make_tool_call("b1", "add_to_cart", itemId="item_stapler")),
                tool_reply(make_tool_call("c1", "nonexistent_tool")),
                text_reply("Done."),
            ]
        )
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)

        reply = await orchestrator.run_turn(None, "user_1", "get me a stapler")

        assert reply.provider_calls == 4
        for call in provider.calls:
            assert_tool_messages_paired(call["messages"])
        conversation = await store.load_conversation(reply.conversation_id)
        assert_tool_messages_paired(conversation.messages)
        assert [a.call_id for a in conversation.actions] == ["a1", "a2", "b1", "c1"]
        assert json.loads(conversation.messages[-2].content)["error"] == "UnknownTool"

    @pytest.mark.asyncio
    async def test_call_without_id_still_answered(self):
        provider = ScriptedProvider([tool_reply(make_tool_call("", "get_cart")), text_reply("Empty.")])
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)

        reply = await orchestrator.run_turn(None, "user_1", "what's in my cart?")

        assert reply.text == "Empty."
        assert reply.actions[0].call_id == "call_0"
        conversation = await store.load_conversation(reply.conversation_id)
        assert conversation.messages[2].tool_call_id == "call_0"
        assert_tool_messages_paired(conversation.messages)

    @pytest.mark.asyncio
    async def test_repeated_call_ids_answered_separately(self):
        provider = ScriptedProvider(
            [
                tool_reply(
                    make_tool_call("same", "search_catalog", query="pens"),
                    make_tool_call("same", "search_catalog", query="paper"),
                ),
                text_reply("Found pens and paper."),
            ]
        )
        orchestrator = create_test_orchestrator(provider)

        reply = await orchestrator.run_turn(None, "user_1", "pens and paper")

        assert [a.call_id for a in reply.actions] == ["same", "same_1"]
        assert [a.arguments["query"] for a in reply.actions] == ["pens", "paper"]
        assert_tool_messages_paired(provider.calls[1]["messages"])

    @pytest.mark.asyncio
    async def test_history_truncated_across_turns(self):
        provider = ScriptedProvider(
            [
                tool_reply(make_tool_call("a1", "search_catalog", query="pens")),
                text_reply("Found some pens."),
                text_reply("Anything else?"),
            ]
        )
        orchestrator = create_test_orchestrator(
            provider, config=AgentConfig(turn_timeout=0, history_token_budget=200)
        )

        first = await orchestrator.run_turn(None, "user_1", "pens please")
        second = await orchestrator.run_turn(first.conversation_id, "user_1", "thanks")

        assert second.history_truncated is True
        messages = provider.calls[2]["messages"]
        non_system = [m for m in messages if m.role != "system"]
        assert [m.content for m in non_system] == ["Found some pens.", "thanks"]
        assert_tool_messages_paired(messages)
        assert orchestrator.get_stats()["turns"]["history_truncations"] == 1


class TestToolIsolation:
    """Slow or failing operations never take their siblings down."""

    @pytest.mark.asyncio
    async def test_timeout_isolated_from_sibling(self):
        release = asyncio.Event()
        provider = ScriptedProvider(
            [
                tool_reply(
                    make_tool_call("slow", "slow_lookup"),
                    make_tool_call("fast", "fast_lookup"),
                ),
                text_reply("One lookup timed out."),
            ]
        )
        orchestrator = create_test_orchestrator(
            provider,
            config=AgentConfig(turn_timeout=0, tool_timeout=0.05),
            registry=hanging_registry(release),
        )

        try:
            reply = await orchestrator.run_turn(None, "user_1", "look things up")
        finally:
            release.set()

        slow, fast = reply.actions
        assert slow.success is False
        assert slow.error == TIMEOUT
        assert fast.success is True
        assert fast.result == {"ok": True}
        tool_messages = provider.calls[1]["messages"][-2:]
        assert json.loads(tool_messages[0].content)["error"] == TIMEOUT
        assert json.loads(tool_messages[1].content) == {"ok": True}

    @pytest.mark.asyncio
    async def test_tool_concurrency_bound(self):
        running = 0
        peak = 0

        async def tracked(args, context):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return {}

        registry = ToolRegistry(
            [ToolSpec(name="tracked_lookup", description="Tracked lookup", args_model=EmptyArgs, handler=tracked)]
        )
        provider = ScriptedProvider(
            [
                tool_reply(*(make_tool_call(f"p{i}", "tracked_lookup") for i in range(6))),
                text_reply("All looked up."),
            ]
        )
        orchestrator = create_test_orchestrator(
            provider,
            config=AgentConfig(turn_timeout=0, tool_concurrency=2),
            registry=registry,
        )

        reply = await orchestrator.run_turn(None, "user_1", "look everything up")

        assert reply.tool_calls == 6
        assert peak == 2


class TestBudgets:
    """Per-turn caps end the turn with a marker instead of an error."""

    @pytest.mark.asyncio
    async def test_tool_call_cap(self):
        provider = ScriptedProvider(
            [
                tool_reply(
                    make_tool_call("a1", "search_catalog", query="pens"),
                    make_tool_call("a2", "search_catalog", query="paper"),
                    make_tool_call("a3", "search_catalog", query="ink"),
                    content="Let me search for all of those.",
                ),
            ]
        )
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(
            provider, store=store, config=AgentConfig(turn_timeout=0, max_tool_calls=2)
        )

        reply = await orchestrator.run_turn(None, "user_1", "pens, paper and ink")

        assert reply.cut_off == TOOL_CALL_BUDGET_EXCEEDED
        assert reply.tool_calls == 0
        assert reply.text.startswith("Sorry")
        assert [a.name for a in reply.actions] == [TOOL_CALL_BUDGET_EXCEEDED]
        conversation = await store.load_conversation(reply.conversation_id)
        assert [m.role for m in conversation.messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_turn_time_budget(self):
        clock = FakeClock()
        counter = iter(range(100))

        def slow_provider(messages):
            clock.advance(6)
            n = next(counter)
            return tool_reply(make_tool_call(f"t{n}", "get_cart"), content="Checking...")

        provider = ScriptedProvider(default=slow_provider)
        orchestrator = create_test_orchestrator(
            provider, clock=clock, config=AgentConfig(turn_timeout=10)
        )

        reply = await orchestrator.run_turn(None, "user_1", "check my cart forever")

        assert len(provider.calls) == 2
        assert reply.cut_off == TURN_TIME_BUDGET_EXCEEDED
        assert reply.text == "Checking..."
        marker = reply.actions[-1]
        assert marker.is_marker
        assert marker.arguments == {"provider_calls": 2, "tool_calls": 2}


class TestFailures:
    """Provider and store failures leave the stored conversation untouched."""

    @pytest.mark.asyncio
    async def test_persistence_failure_is_atomic(self):
        provider = ScriptedProvider(
            [
                text_reply("Hello!"),
                tool_reply(make_tool_call("a1", "add_to_cart", itemId="item_stapler")),
                text_reply("Added."),
            ]
        )
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)
        first = await orchestrator.run_turn(None, "user_1", "hi")
        store.fail_appends_with = StoreError("disk full")

        with pytest.raises(PersistenceFailure) as exc_info:
            await orchestrator.run_turn(first.conversation_id, "user_1", "add a stapler")

        assert exc_info.value.kind == "PersistenceFailed"
        assert isinstance(exc_info.value.cause, StoreError)
        conversation = await store.load_conversation(first.conversation_id)
        assert [m.content for m in conversation.messages] == ["hi", "Hello!"]
        assert conversation.actions == []

    @pytest.mark.asyncio
    async def test_transport_error_after_retries(self):
        clock = FakeClock()
        provider = ScriptedProvider(default=TransientProviderError("503 Service Unavailable"))
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store, clock=clock)
        conversation = await store.create_conversation("user_1", "existing")

        with pytest.raises(ProviderTransportError):
            await orchestrator.run_turn(conversation.id, "user_1", "hello?")

        assert len(provider.calls) == 3
        assert len(clock.sleeps) == 2
        assert (await store.load_conversation(conversation.id)).messages == []
        assert orchestrator.get_stats()["turns"]["failures"] == {"TransportError": 1}

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self):
        provider = ScriptedProvider(default=LLMProviderError("401 invalid api key"))
        orchestrator = create_test_orchestrator(provider)

        with pytest.raises(ProviderTransportError):
            await orchestrator.run_turn(None, "user_1", "hello?")

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        provider = ScriptedProvider(default=TransientProviderError("503"))
        orchestrator = create_test_orchestrator(
            provider,
            reliability_config=fast_reliability_config(max_retries=0, min_calls=2, window_size=4),
        )

        for _ in range(2):
            with pytest.raises(ProviderTransportError):
                await orchestrator.run_turn(None, "user_1", "hello?")

        with pytest.raises(ProviderUnavailable):
            await orchestrator.run_turn(None, "user_1", "hello?")

        assert len(provider.calls) == 2
        assert orchestrator.get_stats()["provider"]["rejected_calls"] == 1

    @pytest.mark.asyncio
    async def test_failed_first_turn_stores_nothing(self):
        provider = ScriptedProvider(default=text_reply("Hello!"))
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(
            provider, store=store, reliability_config=fast_reliability_config(reservoir_size=1)
        )
        await orchestrator.run_turn(None, "user_1", "hi")

        with pytest.raises(ProviderUnavailable):
            await orchestrator.run_turn(None, "user_1", "start something new")

        assert len(store.conversations) == 1
        assert len(await store.list_conversations("user_1")) == 1

    @pytest.mark.asyncio
    async def test_failed_first_save_stores_nothing(self):
        provider = ScriptedProvider([text_reply("Hello!")])
        store = InMemoryConversationStore()
        store.fail_appends_with = StoreError("disk full")
        orchestrator = create_test_orchestrator(provider, store=store)

        with pytest.raises(PersistenceFailure):
            await orchestrator.run_turn(None, "user_1", "hi")

        assert store.conversations == {}

    @pytest.mark.asyncio
    async def test_pinned_context_error_fails_turn(self):
        async def broken_context(user_id):
            raise RuntimeError("cart service down")

        provider = ScriptedProvider([text_reply("Hello!")])
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)
        orchestrator.pinned_context = broken_context

        with pytest.raises(TurnFailure) as exc_info:
            await orchestrator.run_turn(None, "user_1", "hi")

        assert exc_info.value.kind == "TurnFailed"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert provider.calls == []
        assert store.conversations == {}
        assert orchestrator.get_stats()["turns"]["failures"] == {"TurnFailed": 1}

    @pytest.mark.asyncio
    async def test_token_counter_error_fails_turn(self):
        def broken_counter(text):
            raise ValueError("bad encoding")

        provider = ScriptedProvider([text_reply("Hello!")])
        orchestrator = create_test_orchestrator(provider)
        orchestrator.history.token_counter = broken_counter

        with pytest.raises(TurnFailure, match="Failed to build history"):
            await orchestrator.run_turn(None, "user_1", "hi")

        assert provider.calls == []
        assert orchestrator.get_stats()["turns"]["failures"] == {"TurnFailed": 1}


class TestValidation:
    """Invalid requests fail before the provider is contacted."""

    @pytest.mark.asyncio
    async def test_empty_message(self):
        provider = ScriptedProvider()
        orchestrator = create_test_orchestrator(provider)

        with pytest.raises(ValidationError):
            await orchestrator.run_turn(None, "user_1", "   ")

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unknown_conversation(self):
        provider = ScriptedProvider()
        orchestrator = create_test_orchestrator(provider)

        with pytest.raises(ConversationNotFound) as exc_info:
            await orchestrator.run_turn("conv_missing", "user_1", "hello")

        assert exc_info.value.kind == "NotFound"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_foreign_conversation(self):
        provider = ScriptedProvider()
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)
        conversation = await store.create_conversation("owner", "mine")

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.run_turn(conversation.id, "intruder", "hello")

        assert exc_info.value.kind == "InvalidRequest"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_inactive_conversation(self):
        provider = ScriptedProvider()
        store = InMemoryConversationStore()
        orchestrator = create_test_orchestrator(provider, store=store)
        conversation = await store.create_conversation("user_1", "old")
        await store.deactivate(conversation.id)

        with pytest.raises(ValidationError):
            await orchestrator.run_turn(conversation.id, "user_1", "hello")

        assert provider.calls == []


class TestUsage:
    """Provider-reported token usage and cost are tracked per turn."""

    @pytest.mark.asyncio
    async def test_usage_summed_over_provider_calls(self):
        provider = ScriptedProvider(
            [
                ProviderReply(
                    content="",
                    tool_calls=[make_tool_call("a1", "get_cart")],
                    model="gpt-4o-mini",
                    usage={"prompt_tokens": 1000, "completion_tokens": 100, "total_tokens": 1100},
                ),
                ProviderReply(
                    content="Your cart is empty.",
                    model="gpt-4o-mini",
                    usage={"prompt_tokens": 1200, "completion_tokens": 400, "total_tokens": 1600},
                ),
            ]
        )
        orchestrator = create_test_orchestrator(provider)

        reply = await orchestrator.run_turn(None, "user_1", "what's in my cart?")

        assert reply.usage.prompt_tokens == 2200
        assert reply.usage.completion_tokens == 500
        assert reply.usage.total_tokens == 2700
        # 2200 * 0.15 / 1M + 500 * 0.6 / 1M
        assert reply.usage.cost_usd == pytest.approx(0.00063)
        metadata = reply.to_dict()["metadata"]
        assert metadata["tokenUsage"]["totalTokens"] == 2700
        assert metadata["tokenUsage"]["estimatedCostUsd"] == pytest.approx(0.00063)
        stats = orchestrator.get_stats()["turns"]["token_usage"]
        assert stats["totalTokens"] == 2700

    @pytest.mark.asyncio
    async def test_usage_of_failed_turn_recorded(self):
        provider = ScriptedProvider(
            [
                ProviderReply(
                    content="",
                    tool_calls=[make_tool_call("a1", "get_cart")],
                    model="gpt-4o",
                    usage={"prompt_tokens": 100, "completion_tokens": 10, "total_tokens": 110},
                ),
                LLMProviderError("401 invalid api key"),
            ]
        )
        orchestrator = create_test_orchestrator(provider)

        with pytest.raises(ProviderTransportError):
            await orchestrator.run_turn(None, "user_1", "what's in my cart?")

        assert orchestrator.get_stats()["turns"]["token_usage"]["totalTokens"] == 110

    @pytest.mark.asyncio
    async def test_unreported_usage_counts_as_zero(self):
        provider = ScriptedProvider([text_reply("Hi!")])
        orchestrator = create_test_orchestrator(provider)

        reply = await orchestrator.run_turn(None, "user_1", "hi")

        assert reply.usage.total_tokens == 0
        assert reply.usage.cost_usd == 0.0
