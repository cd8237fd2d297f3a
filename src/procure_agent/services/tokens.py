"""Token counting and cost estimation for provider usage."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
FALLBACK_ENCODING = "o200k_base"

# USD per 1M tokens: (input, output)
MODEL_PRICING: Dict[str, tuple] = {
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4o-2024-11-20": (2.5, 10.0),
    "gpt-4-turbo": (10.0, 30.0),
    "gpt-4-turbo-preview": (10.0, 30.0),
    "gpt-3.5-turbo": (0.5, 1.5),
    "gpt-3.5-turbo-16k": (3.0, 4.0),
    "gemini-2.0-flash": (0.0, 0.0),
    "gemini-1.5-flash": (0.075, 0.3),
    "gemini-1.5-pro": (1.25, 5.0),
}

_unpriced_models: set = set()


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4) if text else 0


def _bare_model(model: str) -> str:
    # OpenRouter ids carry a vendor prefix, e.g. "openai/gpt-4o-mini".
    return model.rsplit("/", 1)[-1]


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Cost in USD for one call, or 0.0 when the model has no known price."""
    pricing = MODEL_PRICING.get(_bare_model(model or ""))
    if pricing is None:
        if model not in _unpriced_models:
            _unpriced_models.add(model)
            logger.warning(f"No pricing known for model {model!r}; cost reported as 0")
        return 0.0
    input_per_1m, output_per_1m = pricing
    return (prompt_tokens / 1_000_000) * input_per_1m + (completion_tokens / 1_000_000) * output_per_1m


class TokenCounter:
    """Counts tokens with the model's tiktoken encoding.

    The encoding is loaded on first use. If it cannot be loaded (unknown
    tiktoken version, no network to fetch the BPE file) the counter logs once
    and falls back to ``estimate_tokens`` for the rest of its life.
    """

    def __init__(self, model: str = DEFAULT_MODEL):
        self.model = model
        self._encoding: Any = None
        self._unavailable = False

    @staticmethod
    def _load_encoding(model: str) -> Any:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            return tiktoken.get_encoding(FALLBACK_ENCODING)

    def _get_encoding(self) -> Any:
        if self._encoding is None and not self._unavailable:
            try:
                self._encoding = self._load_encoding(_bare_model(self.model))
            except Exception as e:
                self._unavailable = True
                logger.warning(f"Token encoding for {self.model} unavailable, estimating instead: {e}")
        return self._encoding

    def __call__(self, text: str) -> int:
        if not text:
            return 0
        encoding = self._get_encoding()
        if encoding is None:
            return estimate_tokens(text)
        return len(encoding.encode(text, disallowed_special=()))


@dataclass
class TokenUsage:
    """Provider-reported token usage accumulated over one or more calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, usage: Optional[Dict[str, int]], model: str) -> None:
        if not usage:
            return
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += int(usage.get("total_tokens") or prompt + completion)
        self.cost_usd += estimate_cost(model, prompt, completion)

    def merge(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.cost_usd += other.cost_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCostUsd": round(self.cost_usd, 6),
        }
