"""In-process execution metrics."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .tokens import TokenUsage

logger = logging.getLogger(__name__)


@dataclass
class _ToolCounters:
    calls: int = 0
    successes: int = 0
    total_ms: float = 0.0
    errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class ToolMetrics:
    """Duration and outcome per tool call."""

    def __init__(self):
        self._tools: Dict[str, _ToolCounters] = defaultdict(_ToolCounters)

    def record(
        self, tool_name: str, success: bool, duration_ms: float, error_kind: Optional[str] = None
    ) -> None:
        counters = self._tools[tool_name]
        counters.calls += 1
        counters.total_ms += duration_ms
        if success:
            counters.successes += 1
        else:
            counters.errors[error_kind or "Error"] += 1
        logger.debug(
            f"tool={tool_name} status={'success' if success else 'error'} "
            f"duration_ms={duration_ms:.1f}"
        )

    def get_stats(self) -> Dict[str, Any]:
        total = sum(c.calls for c in self._tools.values())
        successful = sum(c.successes for c in self._tools.values())
        return {
            "total_executions": total,
            "successful": successful,
            "failed": total - successful,
            "success_rate": successful / total if total > 0 else 0,
            "tools": {
                name: {
                    "calls": c.calls,
                    "successes": c.successes,
                    "average_duration_ms": c.total_ms / c.calls if c.calls else 0,
                    "errors": dict(c.errors),
                }
                for name, c in self._tools.items()
            },
        }


class TurnMetrics:
    """Outcome counters for whole turns."""

    def __init__(self):
        self.turns = 0
        self.completed = 0
        self.cut_off = 0
        self.failures: Dict[str, int] = defaultdict(int)
        self.provider_calls = 0
        self.tool_calls = 0
        self.truncations = 0
        self.usage = TokenUsage()

    def record_turn(
        self,
        outcome: str,
        provider_calls: int,
        tool_calls: int,
        truncated: bool = False,
        usage: Optional[TokenUsage] = None,
    ) -> None:
        self.turns += 1
        self.provider_calls += provider_calls
        self.tool_calls += tool_calls
        if truncated:
            self.truncations += 1
        if usage is not None:
            self.usage.merge(usage)
        if outcome == "completed":
            self.completed += 1
        elif outcome == "cut_off":
            self.completed += 1
            self.cut_off += 1
        else:
            self.failures[outcome] += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "turns": self.turns,
            "completed": self.completed,
            "cut_off": self.cut_off,
            "failures": dict(self.failures),
            "provider_calls": self.provider_calls,
            "tool_calls": self.tool_calls,
            "history_truncations": self.truncations,
            "average_provider_calls": self.provider_calls / self.turns if self.turns else 0,
            "token_usage": self.usage.to_dict(),
        }
