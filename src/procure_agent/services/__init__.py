"""Service components for the procurement agent."""

from .cache import ToolResultCache
from .history import HistoryBuild, HistoryManager
from .metrics import ToolMetrics, TurnMetrics
from .tokens import TokenCounter, TokenUsage, estimate_cost, estimate_tokens

__all__ = [
    "HistoryBuild",
    "HistoryManager",
    "TokenCounter",
    "TokenUsage",
    "ToolMetrics",
    "ToolResultCache",
    "TurnMetrics",
    "estimate_cost",
    "estimate_tokens",
]
