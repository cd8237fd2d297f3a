"""Configuration for the procurement agent, read from the environment."""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_seconds(name: str, default_ms: int) -> float:
    """Read a millisecond duration from the environment and return seconds."""
    return float(os.getenv(name, str(default_ms))) / 1000


def load_env_file() -> Optional[str]:
    """Load the first .env file found next to the entry point, its parent or the cwd.

    Returns:
        The path that was loaded, or None if only the default lookup was tried.
    """
    main_dir = os.path.dirname(os.path.abspath(sys.argv[0]))
    env_locations = [
        os.path.join(main_dir, ".env"),
        os.path.join(os.path.dirname(main_dir), ".env"),
        os.path.join(os.getcwd(), ".env"),
    ]

    for env_path in env_locations:
        if os.path.exists(env_path):
            logger.info(f"Loading .env from {env_path}")
            load_dotenv(env_path)
            return env_path

    logger.info("No .env file found in expected locations, trying current directory")
    load_dotenv()
    return None


@dataclass
class ReliabilityConfig:
    """Per-provider rate limit, retry and circuit breaker settings."""

    reservoir_size: int = 60
    refresh_interval: float = 60.0
    max_queue_wait: float = 10.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    failure_threshold: float = 0.5
    window_size: int = 10
    min_calls: int = 5
    cooldown: float = 30.0

    @classmethod
    def from_env(cls) -> "ReliabilityConfig":
        return cls(
            reservoir_size=_env_int("PROCURE_RATE_LIMIT_RPM", 60),
            refresh_interval=_env_seconds("PROCURE_RATE_LIMIT_INTERVAL", 60000),
            max_queue_wait=_env_seconds("PROCURE_RATE_LIMIT_MAX_WAIT", 10000),
            max_retries=_env_int("PROCURE_MAX_RETRIES", 3),
            base_delay=_env_seconds("PROCURE_RETRY_BASE_DELAY", 1000),
            max_delay=_env_seconds("PROCURE_RETRY_MAX_DELAY", 10000),
            failure_threshold=_env_int("PROCURE_BREAKER_THRESHOLD", 50) / 100,
            window_size=_env_int("PROCURE_BREAKER_WINDOW", 10),
            min_calls=_env_int("PROCURE_BREAKER_MIN_CALLS", 5),
            cooldown=_env_seconds("PROCURE_BREAKER_COOLDOWN", 30000),
        )


@dataclass
class AgentConfig:
    """Turn orchestration settings.

    Durations are in seconds. ``turn_timeout`` of 0 disables the overall
    wall-clock budget for a turn.
    """

    max_iterations: int = 10
    max_tool_calls: int = 15
    tool_concurrency: int = 8
    tool_timeout: float = 5.0
    turn_timeout: float = 60.0
    history_token_budget: int = 3000
    max_history_messages: int = 50
    model: str = "gpt-4o-mini"
    provider_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            max_iterations=_env_int("PROCURE_MAX_ITERATIONS", 10),
            max_tool_calls=_env_int("PROCURE_MAX_TOOL_CALLS", 15),
            tool_concurrency=_env_int("PROCURE_TOOL_CONCURRENCY", 8),
            tool_timeout=_env_seconds("PROCURE_TOOL_TIMEOUT", 5000),
            turn_timeout=_env_seconds("PROCURE_TURN_TIMEOUT", 60000),
            history_token_budget=_env_int("PROCURE_HISTORY_TOKENS", 3000),
            max_history_messages=_env_int("PROCURE_HISTORY_MESSAGES", 50),
            model=os.getenv("PROCURE_MODEL", "gpt-4o-mini"),
            provider_timeout=_env_seconds("PROCURE_PROVIDER_TIMEOUT", 30000),
        )
