"""Test fixtures for the procure-agent tests."""

import asyncio
import random
from typing import Any, Callable, List, Optional, Union

from procure_agent.backends import InMemoryProcurementBackend
from procure_agent.config import AgentConfig, ReliabilityConfig
from procure_agent.core import TurnOrchestrator
from procure_agent.models import ToolCall
from procure_agent.persistence import ConversationStore, InMemoryConversationStore
from procure_agent.providers.base import LLMProvider, ProviderReply
from procure_agent.reliability import ReliabilityLayer, ReliabilityState
from procure_agent.services import HistoryManager, ToolResultCache, estimate_tokens
from procure_agent.tools import ProcurementBackend, ProcurementTools, ToolExecutor, ToolRegistry

ScriptStep = Union[ProviderReply, BaseException, Callable[[list], Any]]


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedProvider(LLMProvider):
    """Provider that replays a script of replies, exceptions or callables.

    When the script runs out, ``default`` is used for every further call.
    """

    def __init__(self, script: Optional[List[ScriptStep]] = None, default: Optional[ScriptStep] = None):
        self.script = list(script or [])
        self.default = default
        self.calls: List[dict] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def call(self, messages, tools=None, **kwargs) -> ProviderReply:
        self.calls.append({"messages": list(messages), "tools": tools})
        if self.script:
            step = self.script.pop(0)
        elif self.default is not None:
            step = self.default
        else:
            raise AssertionError("ScriptedProvider ran out of replies")

        if callable(step):
            step = step(messages)
            if asyncio.iscoroutine(step):
                step = await step
        if isinstance(step, BaseException):
            raise step
        return step

    def is_available(self) -> bool:
        return True


def make_tool_call(call_id: str, name: str, **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def tool_reply(*tool_calls: ToolCall, content: str = "") -> ProviderReply:
    return ProviderReply(content=content, tool_calls=list(tool_calls), model="test-model")


def text_reply(text: str) -> ProviderReply:
    return ProviderReply(content=text, model="test-model")


def fast_reliability_config(**overrides: Any) -> ReliabilityConfig:
    """Reliability settings with generous limits so only the test's intent applies."""
    values = dict(
        reservoir_size=100,
        refresh_interval=60.0,
        max_queue_wait=0.0,
        max_retries=2,
        base_delay=0.01,
        max_delay=0.05,
        failure_threshold=0.5,
        window_size=10,
        min_calls=5,
        cooldown=30.0,
    )
    values.update(overrides)
    return ReliabilityConfig(**values)


def create_test_orchestrator(
    provider: LLMProvider,
    backend: Optional[ProcurementBackend] = None,
    store: Optional[ConversationStore] = None,
    config: Optional[AgentConfig] = None,
    reliability_config: Optional[ReliabilityConfig] = None,
    clock: Optional[FakeClock] = None,
    registry: Optional[ToolRegistry] = None,
    with_cache: bool = False,
) -> TurnOrchestrator:
    """Wire a TurnOrchestrator around in-memory collaborators and a fake clock.

    History uses the four-characters-per-token estimate so budgets do not
    depend on a tiktoken download.
    """
    clock = clock or FakeClock()
    backend = backend or InMemoryProcurementBackend()
    config = config or AgentConfig(turn_timeout=0)
    tools = ProcurementTools(backend)
    registry = registry or ToolRegistry(tools.specs())

    executor = ToolExecutor(
        registry,
        default_timeout=config.tool_timeout,
        cache=ToolResultCache(clock=clock) if with_cache else None,
    )
    state = ReliabilityState.from_config(
        reliability_config or fast_reliability_config(),
        provider=provider.name,
        clock=clock,
        sleep=clock.sleep,
        rng=random.Random(7),
    )
    return TurnOrchestrator(
        store=store or InMemoryConversationStore(),
        reliability=ReliabilityLayer(provider, state, sleep=clock.sleep),
        executor=executor,
        history=HistoryManager(
            token_counter=estimate_tokens, max_history_messages=config.max_history_messages
        ),
        config=config,
        pinned_context=tools.pinned_context,
        clock=clock,
    )
