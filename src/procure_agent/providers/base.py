"""Base classes for LLM providers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..models import Message, ToolCall

logger = logging.getLogger(__name__)


def normalize_tool_calls(tool_calls: list[ToolCall]) -> list[ToolCall]:
    """Give every tool call an id that is non-empty and unique within the reply.

    Missing ids become ``call_<index>``; a repeated id gets a numeric suffix.
    Tool results are paired with their call by id, so neither case can be
    passed through.
    """
    seen: set[str] = set()
    normalized = []
    for index, tool_call in enumerate(tool_calls):
        base = tool_call.id or f"call_{index}"
        call_id, suffix = base, 1
        while call_id in seen:
            call_id = f"{base}_{suffix}"
            suffix += 1
        seen.add(call_id)
        if call_id != tool_call.id:
            logger.warning(f"Tool call {tool_call.name!r} had id {tool_call.id!r}, using {call_id!r}")
            tool_call = replace(tool_call, id=call_id)
        normalized.append(tool_call)
    return normalized


@dataclass
class ProviderReply:
    """Provider response normalized to content plus tool calls."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.tool_calls = normalize_tool_calls(self.tool_calls)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Implementations translate the common message shape into the provider's
    native request and normalize the native response into a ProviderReply,
    so nothing above the transport sees provider-specific types.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name."""
        ...

    @abstractmethod
    async def call(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> ProviderReply:
        """Send one chat request.

        Args:
            messages: Ordered message sequence for this request.
            tools: Tool definitions (name, description, JSON schema parameters).
            **kwargs: Additional provider-specific parameters.

        Returns:
            ProviderReply with the assistant content and any requested tool calls.

        Raises:
            LLMProviderError: If the call fails. ``is_retryable`` marks transient faults.
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured.

        Returns:
            True if the provider can be used, False otherwise.
        """
        ...


class LLMProviderError(Exception):
    """Base exception for LLM provider errors."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        model: str = "",
        is_retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.is_retryable = is_retryable
        self.status_code = status_code


class TransientProviderError(LLMProviderError):
    """Raised for connection resets, timeouts and 5xx responses."""

    def __init__(
        self, message: str, provider: str = "", model: str = "", status_code: Optional[int] = None
    ):
        super().__init__(message, provider, model, is_retryable=True, status_code=status_code)


class RateLimitError(LLMProviderError):
    """Raised when the provider explicitly rate limits the request.

    Not retried locally; the reliability layer surfaces it as RateLimited.
    """

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message, provider, model, is_retryable=False, status_code=429)


class AuthenticationError(LLMProviderError):
    """Raised when authentication fails."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message, provider, model, is_retryable=False, status_code=401)


class ModelNotFoundError(LLMProviderError):
    """Raised when the requested model is not found."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message, provider, model, is_retryable=False, status_code=404)
