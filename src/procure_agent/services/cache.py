"""Result cache for read-only tools."""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ToolResultCache:
    """LRU cache with TTL for payloads of cacheable tools (catalog search)."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.cache: OrderedDict[str, Dict[str, Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def create_key(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """Create a cache key from tool name and arguments."""
        # Sorted keys so argument order does not matter
        args_str = json.dumps(arguments, sort_keys=True, default=str)
        return hashlib.sha256(f"{tool_name}:{args_str}".encode()).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        """Get a payload if present and not expired."""
        entry = self.cache.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._clock() - entry["timestamp"] > self.ttl_seconds:
            del self.cache[key]
            self.misses += 1
            return None

        self.cache.move_to_end(key)
        self.hits += 1
        return entry["value"]

    def set(self, key: str, value: Any) -> None:
        if key in self.cache:
            self.cache.move_to_end(key)
        elif len(self.cache) >= self.max_size:
            self.cache.popitem(last=False)

        self.cache[key] = {"value": value, "timestamp": self._clock()}

    def clear(self) -> None:
        self.cache.clear()
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self.hits + self.misses
        return {
            "size": len(self.cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total_requests if total_requests > 0 else 0,
            "ttl_seconds": self.ttl_seconds,
        }
