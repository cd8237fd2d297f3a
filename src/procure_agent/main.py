"""
Stdio JSON-RPC entry point wiring the turn orchestrator to its collaborators.
"""

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import IO, Any, Dict, Optional

from . import __version__
from .backends import InMemoryProcurementBackend
from .config import AgentConfig, ReliabilityConfig, load_env_file
from .core import TurnOrchestrator
from .errors import TurnFailure, ValidationError
from .json_rpc import ERROR_INVALID_PARAMS, ERROR_INVALID_TURN, ERROR_TURN_FAILED, JsonRpcError, JsonRpcServer
from .persistence import ConversationStore, InMemoryConversationStore
from .providers import LLMProvider, OpenAICompatibleProvider, OpenRouterProvider
from .reliability import ReliabilityLayer, ReliabilityState
from .services import HistoryManager, TokenCounter, ToolResultCache
from .tools import ProcurementBackend, ProcurementTools, ToolExecutor, ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "procure-agent"


def create_provider(config: AgentConfig) -> LLMProvider:
    """Pick the provider from the configured API keys. OpenAI wins when both are set."""
    if not os.getenv("OPENAI_API_KEY") and os.getenv("OPENROUTER_API_KEY"):
        model = config.model if "/" in config.model else f"openai/{config.model}"
        logger.info(f"Using OpenRouter with model {model}")
        return OpenRouterProvider(default_model=model, timeout=config.provider_timeout)
    logger.info(f"Using OpenAI with model {config.model}")
    return OpenAICompatibleProvider(default_model=config.model, timeout=config.provider_timeout)


def create_orchestrator(
    config: Optional[AgentConfig] = None,
    reliability_config: Optional[ReliabilityConfig] = None,
    provider: Optional[LLMProvider] = None,
    store: Optional[ConversationStore] = None,
    backend: Optional[ProcurementBackend] = None,
) -> TurnOrchestrator:
    """Build a TurnOrchestrator with in-memory collaborators unless others are given."""
    config = config or AgentConfig.from_env()
    reliability_config = reliability_config or ReliabilityConfig.from_env()
    provider = provider or create_provider(config)
    backend = backend or InMemoryProcurementBackend()

    tools = ProcurementTools(backend)
    registry = ToolRegistry(tools.specs())
    executor = ToolExecutor(
        registry,
        default_timeout=config.tool_timeout,
        cache=ToolResultCache(max_size=100, ttl_seconds=300),
    )
    reliability = ReliabilityLayer(
        provider, ReliabilityState.from_config(reliability_config, provider=provider.name)
    )

    logger.info(
        f"Orchestrator ready: {len(registry)} tools, max_iterations={config.max_iterations}, "
        f"history_tokens={config.history_token_budget}"
    )
    return TurnOrchestrator(
        store=store or InMemoryConversationStore(),
        reliability=reliability,
        executor=executor,
        history=HistoryManager(
            token_counter=TokenCounter(config.model),
            max_history_messages=config.max_history_messages,
        ),
        config=config,
        pinned_context=tools.pinned_context,
    )


class ProcureAgentServer:
    """JSON-RPC server exposing ``run_turn`` and friends."""

    def __init__(
        self,
        orchestrator: Optional[TurnOrchestrator] = None,
        stdin: Optional[IO[str]] = None,
        stdout: Optional[IO[str]] = None,
    ):
        load_env_file()
        self.orchestrator = orchestrator or create_orchestrator()
        # One loop for the server's lifetime; the reliability layer's locks bind to it.
        self.loop = asyncio.new_event_loop()

        self.server = JsonRpcServer(SERVER_NAME, stdin=stdin, stdout=stdout)
        self._setup_handlers()

    def _setup_handlers(self):
        self.server.register_handler("initialize", self.handle_initialize)
        self.server.register_handler("agent/chat", self.handle_chat)
        self.server.register_handler("agent/conversation", self.handle_conversation)
        self.server.register_handler("agent/stats", self.handle_stats)

    def handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        provider = self.orchestrator.reliability.provider
        if not provider.is_available():
            logger.warning(f"No API key configured for {provider.name}")
        return {
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "provider": {"name": provider.name, "available": provider.is_available()},
            "tools": self.orchestrator.executor.registry.list_tools(),
        }

    def handle_chat(self, params: Dict[str, Any]) -> Dict[str, Any]:
        message = params.get("message")
        if not isinstance(message, str):
            raise JsonRpcError(ERROR_INVALID_PARAMS, "'message' must be a string")

        try:
            reply = self.loop.run_until_complete(
                self.orchestrator.run_turn(
                    params.get("conversationId"), params.get("userId"), message
                )
            )
        except TurnFailure as e:
            code = ERROR_INVALID_TURN if isinstance(e, ValidationError) else ERROR_TURN_FAILED
            raise JsonRpcError(code, e.user_message, data=e.to_dict()) from e
        return reply.to_dict()

    def handle_conversation(self, params: Dict[str, Any]) -> Dict[str, Any]:
        conversation_id = params.get("conversationId")
        if not conversation_id:
            raise JsonRpcError(ERROR_INVALID_PARAMS, "'conversationId' is required")
        try:
            conversation = self.loop.run_until_complete(
                self.orchestrator.get_conversation(conversation_id, params.get("userId"))
            )
        except TurnFailure as e:
            raise JsonRpcError(ERROR_INVALID_TURN, e.user_message, data=e.to_dict()) from e
        return conversation.to_dict()

    def handle_stats(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self.orchestrator.get_stats()

    def run(self):
        logger.info(f"Starting procure-agent v{__version__}")
        try:
            self.server.run()
        finally:
            self.loop.close()


def setup_logging() -> str:
    """Log to stderr and a rotating file. Returns the log file path."""
    log_dir = os.path.expanduser(os.getenv("PROCURE_LOG_DIR", "~/.procure-agent/logs"))
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "procure-agent.log")

    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stderr),
        RotatingFileHandler(
            log_file,
            mode="a",
            encoding="utf-8",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        ),
    ]

    log_level = logging.DEBUG if os.getenv("PROCURE_DEBUG") else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    return log_file


def main():
    """Main entry point."""
    log_file = setup_logging()
    logger.info(f"Logging to file: {log_file}")

    try:
        server = ProcureAgentServer()
        server.run()
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
