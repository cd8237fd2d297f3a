"""OpenAI-compatible chat completions provider (OpenAI, OpenRouter)."""

import json
import logging
import os
from typing import Any, Optional

import httpx
import openai

from ..models import ASSISTANT_ROLE, TOOL_ROLE, Message, ToolCall
from .base import (
    AuthenticationError,
    LLMProvider,
    LLMProviderError,
    ModelNotFoundError,
    ProviderReply,
    RateLimitError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert messages to the chat completions wire format."""
    wire = []
    for msg in messages:
        if msg.role == TOOL_ROLE:
            wire.append({"role": TOOL_ROLE, "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.role == ASSISTANT_ROLE and msg.tool_calls:
            wire.append(
                {
                    "role": ASSISTANT_ROLE,
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                        }
                        for tc in msg.tool_calls
                    ],
                }
            )
        else:
            wire.append({"role": msg.role, "content": msg.content})
    return wire


def to_openai_tools(tools: Optional[list[dict[str, Any]]]) -> Optional[list[dict[str, Any]]]:
    if not tools:
        return None
    return [{"type": "function", "function": tool} for tool in tools]


class OpenAICompatibleProvider(LLMProvider):
    """LLM provider for any endpoint speaking the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        base_url: str = OPENAI_BASE_URL,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_tokens: Optional[int] = 1000,
    ):
        """Initialize the provider.

        Args:
            api_key: API key. If None, reads from OPENAI_API_KEY env var.
            default_model: Model used for every call unless overridden.
            base_url: Chat completions endpoint root.
            timeout: Request timeout in seconds.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate per call.
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.default_model = default_model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def name(self) -> str:
        return "openai"

    def _default_headers(self) -> dict[str, str]:
        return {}

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Get or create the async client. SDK retries are disabled; the
        reliability layer owns retry policy."""
        if self._client is None:
            if not self.api_key:
                raise AuthenticationError(
                    f"{self.name} API key not configured.", provider=self.name
                )
            self._client = openai.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
                default_headers=self._default_headers(),
            )
        return self._client

    async def call(
        self,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> ProviderReply:
        model_id = kwargs.pop("model", None) or self.default_model
        logger.debug(f"Calling {self.name} model {model_id} with {len(messages)} messages")

        request: dict[str, Any] = {
            "model": model_id,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature,
            **kwargs,
        }
        if self.max_tokens:
            request["max_tokens"] = self.max_tokens
        wire_tools = to_openai_tools(tools)
        if wire_tools:
            request["tools"] = wire_tools

        try:
            response = await self.client.chat.completions.create(**request)
        except Exception as e:
            raise self._classify_error(e, model_id) from e

        return self._normalize(response, model_id)

    def _normalize(self, response: Any, model_id: str) -> ProviderReply:
        message = response.choices[0].message
        tool_calls = [
            ToolCall.from_raw(tc.id, tc.function.name, tc.function.arguments)
            for tc in (message.tool_calls or [])
        ]
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return ProviderReply(
            content=message.content or "",
            tool_calls=tool_calls,
            model=model_id,
            usage=usage,
            metadata={"id": response.id, "created": response.created},
        )

    def _classify_error(self, error: Exception, model_id: str) -> LLMProviderError:
        """Map SDK and transport exceptions onto the provider error taxonomy."""
        if isinstance(error, LLMProviderError):
            return error

        error_msg = str(error)
        logger.warning(f"{self.name} error ({type(error).__name__}): {error_msg}")

        if isinstance(error, openai.RateLimitError):
            return RateLimitError(error_msg, provider=self.name, model=model_id)
        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthenticationError(error_msg, provider=self.name, model=model_id)
        if isinstance(error, openai.NotFoundError):
            return ModelNotFoundError(error_msg, provider=self.name, model=model_id)
        if isinstance(error, (openai.APIConnectionError, httpx.TransportError)):
            return TransientProviderError(error_msg, provider=self.name, model=model_id)
        if isinstance(error, openai.APIStatusError):
            status = error.status_code
            if status >= 500:
                return TransientProviderError(
                    error_msg, provider=self.name, model=model_id, status_code=status
                )
            return LLMProviderError(
                error_msg, provider=self.name, model=model_id, status_code=status
            )
        return LLMProviderError(
            error_msg,
            provider=self.name,
            model=model_id,
            is_retryable="timeout" in error_msg.lower(),
        )

    def is_available(self) -> bool:
        return bool(self.api_key)


class OpenRouterProvider(OpenAICompatibleProvider):
    """Provider routed through OpenRouter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "openai/gpt-4o-mini",
        timeout: float = 30.0,
        app_name: str = "procure-agent",
        **kwargs: Any,
    ):
        super().__init__(
            api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
            default_model=default_model,
            base_url=OPENROUTER_BASE_URL,
            timeout=timeout,
            **kwargs,
        )
        self.app_name = app_name

    @property
    def name(self) -> str:
        return "openrouter"

    def _default_headers(self) -> dict[str, str]:
        return {"X-Title": self.app_name}
