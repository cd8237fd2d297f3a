"""Unit tests for the tool executor."""

import asyncio
import json
from typing import Optional

import pytest
from pydantic import BaseModel, Field

from procure_agent.errors import ToolExecutionError, ToolValidationError
from procure_agent.models import ToolCall
from procure_agent.services import ToolResultCache
from procure_agent.tools import ToolContext, ToolExecutor, ToolRegistry, ToolSpec


class EchoArgs(BaseModel):
    text: str = Field(min_length=1)
    repeat: int = Field(default=1, ge=1, le=3)


class NoArgs(BaseModel):
    pass


class RecordingHandlers:
    """Handlers that count invocations."""

    def __init__(self):
        self.calls = 0
        self.contexts = []

    async def echo(self, args, context: ToolContext):
        self.calls += 1
        self.contexts.append(context)
        return {"echo": args["text"] * args["repeat"]}

    def sync_echo(self, args, context):
        self.calls += 1
        return {"echo": args["text"]}

    async def never_returns(self, args, context):
        self.calls += 1
        await asyncio.Event().wait()

    async def explode(self, args, context):
        raise ToolExecutionError("Item item_999 not found")

    async def reject(self, args, context):
        raise ToolValidationError("quantity exceeds stock")


def build_executor(cache: Optional[ToolResultCache] = None):
    handlers = RecordingHandlers()
    registry = ToolRegistry(
        [
            ToolSpec("echo", "Echo text", EchoArgs, handlers.echo, cacheable=True),
            ToolSpec("sync_echo", "Echo text synchronously", EchoArgs, handlers.sync_echo),
            ToolSpec("hang", "Never returns", NoArgs, handlers.never_returns),
            ToolSpec("explode", "Always fails", NoArgs, handlers.explode),
            ToolSpec("reject", "Rejects its arguments", NoArgs, handlers.reject),
        ]
    )
    return ToolExecutor(registry, default_timeout=1.0, cache=cache), handlers


class TestToolExecutor:
    """Test suite for ToolExecutor."""

    @pytest.mark.asyncio
    async def test_success(self):
        executor, handlers = build_executor()
        context = ToolContext(user_id="user_1", conversation_id="conv_1")

        result = await executor.execute(
            ToolCall("call_1", "echo", {"text": "hi", "repeat": 2}), context=context
        )

        assert result.success is True
        assert result.call_id == "call_1"
        assert result.payload == {"echo": "hihi"}
        assert result.duration_ms >= 0
        assert handlers.contexts == [context]

    @pytest.mark.asyncio
    async def test_sync_handler_runs_in_thread(self):
        executor, handlers = build_executor()

        result = await executor.execute(ToolCall("call_1", "sync_echo", {"text": "hi"}))

        assert result.success is True
        assert result.payload == {"echo": "hi"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        executor, handlers = build_executor()

        result = await executor.execute(ToolCall("call_1", "delete_everything", {}))

        assert result.success is False
        assert result.error == "UnknownTool"
        assert result.error_kind == "UnknownTool"
        assert handlers.calls == 0

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        executor, handlers = build_executor()

        result = await executor.execute(ToolCall("call_1", "echo", {"text": "", "repeat": 9}))

        assert result.success is False
        assert result.error == "InvalidArguments"
        assert "text" in result.details
        assert "repeat" in result.details
        assert handlers.calls == 0

    @pytest.mark.asyncio
    async def test_missing_and_mistyped_arguments(self):
        executor, _ = build_executor()

        missing = await executor.execute(ToolCall("call_1", "echo", {}))
        mistyped = await executor.execute(ToolCall("call_2", "echo", {"text": "a", "repeat": "lots"}))

        assert missing.error_kind == "InvalidArguments"
        assert mistyped.error_kind == "InvalidArguments"

    @pytest.mark.asyncio
    async def test_undecodable_arguments(self):
        """Arguments that were not valid JSON are reported, not raised."""
        executor, handlers = build_executor()
        call = ToolCall.from_raw("call_1", "echo", '{"text": "unterminated')

        result = await executor.execute(call)

        assert result.error == "InvalidArguments"
        assert "not valid JSON" in result.details
        assert handlers.calls == 0

    @pytest.mark.asyncio
    async def test_timeout_does_not_block(self):
        """A hanging tool yields a Timeout result after its own timeout."""
        executor, _ = build_executor()

        result = await asyncio.wait_for(
            executor.execute(ToolCall("call_1", "hang", {}), timeout=0.05), timeout=2
        )

        assert result.success is False
        assert result.error == "Timeout"
        assert "0.05" in result.details

    @pytest.mark.asyncio
    async def test_domain_exception_becomes_result(self):
        executor, _ = build_executor()

        result = await executor.execute(ToolCall("call_1", "explode", {}))

        assert result.success is False
        assert result.error == "Item item_999 not found"
        assert result.error_kind == "ExecutionError"
        content = json.loads(result.to_content())
        assert content["error"] == "Item item_999 not found"
        assert content["toolName"] == "explode"

    @pytest.mark.asyncio
    async def test_tool_validation_error_kind(self):
        executor, _ = build_executor()

        result = await executor.execute(ToolCall("call_1", "reject", {}))

        assert result.error == "quantity exceeds stock"
        assert result.error_kind == "InvalidArguments"

    @pytest.mark.asyncio
    async def test_cacheable_results_cached(self, fake_clock):
        executor, handlers = build_executor(cache=ToolResultCache(clock=fake_clock))
        call = ToolCall("call_1", "echo", {"text": "hi"})

        first = await executor.execute(call)
        second = await executor.execute(ToolCall("call_2", "echo", {"text": "hi"}))

        assert handlers.calls == 1
        assert first.cached is False
        assert second.cached is True
        assert second.call_id == "call_2"
        assert second.payload == first.payload

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, fake_clock):
        cache = ToolResultCache(clock=fake_clock)
        executor, _ = build_executor(cache=cache)

        await executor.execute(ToolCall("call_1", "echo", {}))

        assert len(cache.cache) == 0

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        executor, _ = build_executor()

        await executor.execute(ToolCall("call_1", "echo", {"text": "a"}))
        await executor.execute(ToolCall("call_2", "explode", {}))
        await executor.execute(ToolCall("call_3", "hang", {}), timeout=0.01)

        stats = executor.metrics.get_stats()
        assert stats["total_executions"] == 3
        assert stats["successful"] == 1
        assert stats["tools"]["explode"]["errors"] == {"ExecutionError": 1}
        assert stats["tools"]["hang"]["errors"] == {"Timeout": 1}
