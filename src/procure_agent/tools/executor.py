"""Executes a single tool call against the registry."""

import asyncio
import inspect
import logging
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import ToolValidationError
from ..models import EXECUTION_ERROR, INVALID_ARGUMENTS, TIMEOUT, UNKNOWN_TOOL, ToolCall, ToolResult
from ..services.cache import ToolResultCache
from ..services.metrics import ToolMetrics
from .base import ToolContext, ToolSpec
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def _format_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{location}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _discard_result(task: "asyncio.Future[Any]") -> None:
    # Abandoned operations may still finish or fail later; nobody is waiting.
    if not task.cancelled():
        task.exception()


class ToolExecutor:
    """Validates and runs one tool call under a timeout.

    Every failure is returned as a ToolResult; nothing raised by a domain
    operation escapes ``execute``. The executor never retries.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = DEFAULT_TIMEOUT,
        cache: Optional[ToolResultCache] = None,
        metrics: Optional[ToolMetrics] = None,
    ):
        self.registry = registry
        self.default_timeout = default_timeout
        self.cache = cache
        self.metrics = metrics or ToolMetrics()

    async def execute(
        self,
        tool_call: ToolCall,
        timeout: Optional[float] = None,
        context: Optional[ToolContext] = None,
    ) -> ToolResult:
        start_time = time.perf_counter()
        context = context or ToolContext()

        tool = self.registry.get_tool(tool_call.name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {tool_call.name}")
            return self._failure(tool_call, UNKNOWN_TOOL, UNKNOWN_TOOL, start_time)

        if tool_call.parse_error:
            return self._failure(
                tool_call, INVALID_ARGUMENTS, INVALID_ARGUMENTS, start_time, tool_call.parse_error
            )

        try:
            arguments = tool.args_model.model_validate(tool_call.arguments).model_dump()
        except PydanticValidationError as e:
            details = _format_validation_error(e)
            logger.info(f"Invalid arguments for {tool.name}: {details}")
            return self._failure(tool_call, INVALID_ARGUMENTS, INVALID_ARGUMENTS, start_time, details)

        cache_key = None
        if tool.cacheable and self.cache is not None:
            cache_key = self.cache.create_key(tool.name, arguments)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Cache hit for {tool.name}")
                return self._success(tool_call, cached, start_time, cached=True)

        timeout = self.default_timeout if timeout is None else timeout
        task = asyncio.ensure_future(self._invoke(tool, arguments, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            # Best effort only: a sync handler keeps running in its worker thread.
            task.cancel()
            task.add_done_callback(_discard_result)
            logger.warning(f"Tool {tool.name} timed out after {timeout}s")
            return self._failure(
                tool_call, TIMEOUT, TIMEOUT, start_time, f"Tool execution timeout ({timeout}s)"
            )

        try:
            payload = task.result()
        except ToolValidationError as e:
            return self._failure(tool_call, str(e) or INVALID_ARGUMENTS, INVALID_ARGUMENTS, start_time)
        except Exception as e:
            logger.error(f"Tool {tool.name} failed: {type(e).__name__}: {e}")
            return self._failure(tool_call, str(e) or type(e).__name__, EXECUTION_ERROR, start_time)

        if cache_key is not None:
            self.cache.set(cache_key, payload)
        return self._success(tool_call, payload, start_time)

    async def _invoke(self, tool: ToolSpec, arguments: Dict[str, Any], context: ToolContext) -> Any:
        logger.info(f"Executing tool: {tool.name}")
        if inspect.iscoroutinefunction(tool.handler):
            return await tool.handler(arguments, context)
        result = await asyncio.to_thread(tool.handler, arguments, context)
        if inspect.isawaitable(result):
            return await result
        return result

    def _success(
        self, tool_call: ToolCall, payload: Any, start_time: float, cached: bool = False
    ) -> ToolResult:
        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record(tool_call.name, True, duration_ms)
        return ToolResult(
            call_id=tool_call.id,
            tool_name=tool_call.name,
            success=True,
            payload=payload,
            duration_ms=duration_ms,
            cached=cached,
        )

    def _failure(
        self,
        tool_call: ToolCall,
        error: str,
        error_kind: str,
        start_time: float,
        details: Optional[str] = None,
    ) -> ToolResult:
        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record(tool_call.name, False, duration_ms, error_kind)
        return ToolResult(
            call_id=tool_call.id,
            tool_name=tool_call.name,
            success=False,
            error=error,
            error_kind=error_kind,
            details=details,
            duration_ms=duration_ms,
        )
