"""LLM providers for the procurement agent."""

from .base import (
    AuthenticationError,
    LLMProvider,
    LLMProviderError,
    ModelNotFoundError,
    ProviderReply,
    RateLimitError,
    TransientProviderError,
)
from .openai_compat import OpenAICompatibleProvider, OpenRouterProvider

__all__ = [
    "LLMProvider",
    "LLMProviderError",
    "ProviderReply",
    "AuthenticationError",
    "RateLimitError",
    "ModelNotFoundError",
    "TransientProviderError",
    "OpenAICompatibleProvider",
    "OpenRouterProvider",
]
