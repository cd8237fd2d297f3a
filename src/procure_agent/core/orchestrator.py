"""Turn orchestrator: drives one user turn from message to persisted reply."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import AgentConfig
from ..errors import (
    ConversationNotFound,
    PersistenceFailure,
    ProviderTransportError,
    ProviderUnavailable,
    ReliabilityError,
    TurnFailure,
    ValidationError,
)
from ..models import (
    ASSISTANT_ROLE,
    ITERATION_BUDGET_EXCEEDED,
    TOOL_CALL_BUDGET_EXCEEDED,
    TOOL_ROLE,
    TURN_TIME_BUDGET_EXCEEDED,
    USER_ROLE,
    Action,
    Conversation,
    Message,
    ToolCall,
    ToolResult,
)
from ..persistence import ConversationStore
from ..providers.base import ProviderReply
from ..reliability import ReliabilityLayer
from ..services.history import HistoryBuild, HistoryManager
from ..services.metrics import TurnMetrics
from ..services.tokens import TokenCounter, TokenUsage
from ..tools.base import ToolContext
from ..tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

TITLE_LENGTH = 60

ITERATION_CUTOFF_REPLY = (
    "I wasn't able to finish everything for this request in one go. "
    "Here is what I have so far; let me know how you'd like to continue."
)
TOOL_CALL_CUTOFF_REPLY = (
    "Sorry, that request needs more actions than I can take in a single turn. "
    "Could you break it into smaller steps?"
)
TIME_CUTOFF_REPLY = (
    "Sorry, this is taking longer than expected. "
    "Here is what I have so far; please ask again to continue."
)
EMPTY_REPLY = "Sorry, I couldn't generate a response."

PinnedContextProvider = Callable[[Optional[str]], Awaitable[List[Message]]]


class TurnState(str, Enum):
    BUILDING_HISTORY = "BUILDING_HISTORY"
    AWAITING_PROVIDER = "AWAITING_PROVIDER"
    EXECUTING_TOOLS = "EXECUTING_TOOLS"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class TurnContext:
    """Mutable state for one turn. Never shared between turns."""

    conversation: Conversation
    user_id: Optional[str]
    user_message: Message
    started_at: float
    state: TurnState = TurnState.BUILDING_HISTORY
    transitions: List[TurnState] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    intermediate: List[Message] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    attachments: Dict[str, Any] = field(default_factory=dict)
    provider_calls: int = 0
    tool_calls: int = 0
    last_assistant_text: str = ""
    cut_off: Optional[str] = None
    history: Optional[HistoryBuild] = None
    is_new: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)

    def __post_init__(self):
        self.transitions.append(self.state)

    def transition(self, state: TurnState) -> None:
        logger.debug(f"Turn {self.conversation.id}: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)


@dataclass
class AgentReply:
    """What the caller of ``run_turn`` gets back for a completed turn."""

    conversation_id: str
    text: str
    attachments: Optional[Dict[str, Any]] = None
    actions: List[Action] = field(default_factory=list)
    provider_calls: int = 0
    tool_calls: int = 0
    cut_off: Optional[str] = None
    history_truncated: bool = False
    duration_ms: float = 0.0
    states: List[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "message": self.text,
            "attachments": self.attachments,
            "actions": [a.to_dict() for a in self.actions],
            "metadata": {
                "providerCalls": self.provider_calls,
                "toolCalls": self.tool_calls,
                "cutOff": self.cut_off,
                "historyTruncated": self.history_truncated,
                "durationMs": round(self.duration_ms, 1),
                "states": self.states,
                "tokenUsage": self.usage.to_dict(),
            },
        }


class TurnOrchestrator:
    """State machine for one conversational turn.

    BUILDING_HISTORY -> AWAITING_PROVIDER -> (EXECUTING_TOOLS -> AWAITING_PROVIDER)*
    -> FINALIZING -> DONE, with FAILED reachable from every state but DONE.

    Tool failures are data for the next provider call. Provider and persistence
    failures end the turn with a TurnFailure and leave the stored conversation
    untouched.
    """

    def __init__(
        self,
        store: ConversationStore,
        reliability: ReliabilityLayer,
        executor: ToolExecutor,
        history: Optional[HistoryManager] = None,
        config: Optional[AgentConfig] = None,
        pinned_context: Optional[PinnedContextProvider] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.reliability = reliability
        self.executor = executor
        self.config = config or AgentConfig()
        self.history = history or HistoryManager(
            token_counter=TokenCounter(self.config.model),
            max_history_messages=self.config.max_history_messages,
        )
        self.pinned_context = pinned_context
        self.metrics = TurnMetrics()
        self._clock = clock
        self._tool_definitions = executor.registry.get_tool_definitions()

    async def run_turn(
        self, conversation_id: Optional[str], user_id: Optional[str], text: str
    ) -> AgentReply:
        """Run one turn and persist it.

        Args:
            conversation_id: Existing conversation, or None to start a new one.
            user_id: The caller; must own the conversation.
            text: The user's message.

        Returns:
            AgentReply with the final text, attachments and turn metadata.

        Raises:
            ValidationError: Empty message or a conversation the user does not own.
            ConversationNotFound: Unknown conversation id.
            ProviderUnavailable: Rate limited or circuit open.
            ProviderTransportError: The provider failed after retries.
            PersistenceFailure: The turn could not be stored.
        """
        if not text or not text.strip():
            raise ValidationError("Message cannot be empty")

        ctx: Optional[TurnContext] = None
        try:
            conversation = await self._load_or_create(conversation_id, user_id, text)
            ctx = TurnContext(
                conversation=conversation,
                user_id=user_id,
                user_message=Message(role=USER_ROLE, content=text),
                started_at=self._clock(),
                is_new=not conversation_id,
            )
            reply = await self._run(ctx)
        except TurnFailure as e:
            if ctx is not None:
                ctx.transition(TurnState.FAILED)
            self.metrics.record_turn(
                e.kind,
                provider_calls=ctx.provider_calls if ctx else 0,
                tool_calls=ctx.tool_calls if ctx else 0,
                usage=ctx.usage if ctx else None,
            )
            logger.warning(f"Turn failed ({e.kind}): {e}")
            raise

        self.metrics.record_turn(
            "cut_off" if reply.cut_off else "completed",
            provider_calls=reply.provider_calls,
            tool_calls=reply.tool_calls,
            truncated=reply.history_truncated,
            usage=reply.usage,
        )
        return reply

    async def get_conversation(self, conversation_id: str, user_id: Optional[str]) -> Conversation:
        """Load a conversation the user owns."""
        return self._check_owner(await self._load(conversation_id), user_id)

    async def _run(self, ctx: TurnContext) -> AgentReply:
        await self._build_history(ctx)

        final_text: Optional[str] = None
        while True:
            if ctx.provider_calls >= self.config.max_iterations:
                final_text = self._cut_off(ctx, ITERATION_BUDGET_EXCEEDED, ITERATION_CUTOFF_REPLY)
                break
            if self._turn_deadline_passed(ctx):
                final_text = self._cut_off(ctx, TURN_TIME_BUDGET_EXCEEDED, TIME_CUTOFF_REPLY)
                break

            ctx.transition(TurnState.AWAITING_PROVIDER)
            reply = await self._call_provider(ctx)

            if not reply.has_tool_calls:
                final_text = reply.content or ctx.last_assistant_text or EMPTY_REPLY
                break

            if ctx.tool_calls + len(reply.tool_calls) > self.config.max_tool_calls:
                # Nothing is executed, so the assistant message is not kept either.
                final_text = self._cut_off(
                    ctx, TOOL_CALL_BUDGET_EXCEEDED, TOOL_CALL_CUTOFF_REPLY, prefer_partial=False
                )
                break

            ctx.transition(TurnState.EXECUTING_TOOLS)
            results = await self._execute_tools(ctx, reply.tool_calls)
            self._append_tool_round(ctx, reply, results)

        ctx.transition(TurnState.FINALIZING)
        return await self._finalize(ctx, final_text)

    async def _load(self, conversation_id: str) -> Conversation:
        try:
            conversation = await self.store.load_conversation(conversation_id)
        except Exception as e:
            raise PersistenceFailure(f"Failed to load conversation {conversation_id}: {e}", cause=e) from e
        if conversation is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conversation

    def _check_owner(self, conversation: Conversation, user_id: Optional[str]) -> Conversation:
        if conversation.user_id != user_id:
            raise ValidationError(f"Conversation {conversation.id} does not belong to this user")
        return conversation

    async def _load_or_create(
        self, conversation_id: Optional[str], user_id: Optional[str], text: str
    ) -> Conversation:
        if conversation_id:
            conversation = self._check_owner(await self._load(conversation_id), user_id)
            if not conversation.active:
                raise ValidationError(f"Conversation {conversation_id} is no longer active")
            return conversation

        # Not stored until the turn completes, so a failed first turn leaves nothing behind.
        return Conversation.new(user_id, text.strip()[:TITLE_LENGTH])

    async def _build_history(self, ctx: TurnContext) -> None:
        pinned: List[Message] = []
        try:
            if self.pinned_context is not None:
                pinned = await self.pinned_context(ctx.user_id)
            ctx.history = self.history.build(
                ctx.conversation,
                ctx.user_message,
                pinned_context=pinned,
                token_budget=self.config.history_token_budget,
            )
        except Exception as e:
            raise TurnFailure(f"Failed to build history: {type(e).__name__}: {e}", cause=e) from e
        ctx.messages = list(ctx.history.messages)

    async def _call_provider(self, ctx: TurnContext) -> ProviderReply:
        ctx.provider_calls += 1
        try:
            reply = await self.reliability.invoke(ctx.messages, self._tool_definitions)
        except ReliabilityError as e:
            raise ProviderUnavailable(str(e), cause=e) from e
        except Exception as e:
            raise ProviderTransportError(f"{type(e).__name__}: {e}", cause=e) from e

        ctx.usage.add(reply.usage, reply.model or self.config.model)
        logger.debug(
            f"Provider call {ctx.provider_calls} for {ctx.conversation.id}: "
            f"{len(reply.tool_calls)} tool calls"
        )
        return reply

    async def _execute_tools(self, ctx: TurnContext, tool_calls: List[ToolCall]) -> List[ToolResult]:
        semaphore = asyncio.Semaphore(max(1, self.config.tool_concurrency))
        context = ToolContext(user_id=ctx.user_id, conversation_id=ctx.conversation.id)

        async def run_one(tool_call: ToolCall) -> ToolResult:
            async with semaphore:
                return await self.executor.execute(
                    tool_call, timeout=self.config.tool_timeout, context=context
                )

        # Wait for every call; one failure or timeout does not cancel its siblings.
        results = await asyncio.gather(*(run_one(tc) for tc in tool_calls))
        ctx.tool_calls += len(tool_calls)
        return list(results)

    def _append_tool_round(
        self, ctx: TurnContext, reply: ProviderReply, results: List[ToolResult]
    ) -> None:
        assistant = Message(role=ASSISTANT_ROLE, content=reply.content, tool_calls=reply.tool_calls)
        round_messages = [assistant]
        if reply.content:
            ctx.last_assistant_text = reply.content

        for tool_call, result in zip(reply.tool_calls, results):
            round_messages.append(
                Message(role=TOOL_ROLE, content=result.to_content(), tool_call_id=tool_call.id)
            )
            ctx.actions.append(
                Action(
                    name=tool_call.name,
                    arguments=dict(tool_call.arguments),
                    success=result.success,
                    result=result.payload if result.success else None,
                    error=result.error,
                    call_id=tool_call.id,
                )
            )
            if result.success:
                self._collect_attachments(ctx, result)

        ctx.messages.extend(round_messages)
        ctx.intermediate.extend(round_messages)

    def _collect_attachments(self, ctx: TurnContext, result: ToolResult) -> None:
        tool = self.executor.registry.get_tool(result.tool_name)
        if tool is None or tool.attachments is None:
            return
        try:
            ctx.attachments.update(tool.attachments(result.payload))
        except (KeyError, TypeError) as e:
            logger.warning(f"Could not extract attachments from {result.tool_name}: {e}")

    def _turn_deadline_passed(self, ctx: TurnContext) -> bool:
        if self.config.turn_timeout <= 0:
            return False
        return self._clock() - ctx.started_at >= self.config.turn_timeout

    def _cut_off(
        self, ctx: TurnContext, marker: str, fallback: str, prefer_partial: bool = True
    ) -> str:
        logger.warning(
            f"Turn {ctx.conversation.id} cut off ({marker}) after "
            f"{ctx.provider_calls} provider calls and {ctx.tool_calls} tool calls"
        )
        ctx.cut_off = marker
        ctx.actions.append(
            Action(
                name=marker,
                arguments={
                    "provider_calls": ctx.provider_calls,
                    "tool_calls": ctx.tool_calls,
                },
                success=False,
                error=marker,
            )
        )
        if prefer_partial and ctx.last_assistant_text:
            return ctx.last_assistant_text
        return fallback

    async def _finalize(self, ctx: TurnContext, final_text: str) -> AgentReply:
        attachments = dict(ctx.attachments) or None
        assistant = Message(role=ASSISTANT_ROLE, content=final_text, attachments=attachments)

        turn = (ctx.user_message, assistant, ctx.intermediate, ctx.actions)
        try:
            if ctx.is_new:
                await self.store.save_new_conversation(ctx.conversation, *turn)
            else:
                await self.store.append_turn(ctx.conversation.id, *turn)
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to persist turn for {ctx.conversation.id}: {e}", cause=e
            ) from e

        ctx.transition(TurnState.DONE)
        duration_ms = (self._clock() - ctx.started_at) * 1000
        logger.info(
            f"Turn completed for {ctx.conversation.id}: provider_calls={ctx.provider_calls} "
            f"tool_calls={ctx.tool_calls} duration_ms={duration_ms:.0f}"
        )
        return AgentReply(
            conversation_id=ctx.conversation.id,
            text=final_text,
            attachments=attachments,
            actions=list(ctx.actions),
            provider_calls=ctx.provider_calls,
            tool_calls=ctx.tool_calls,
            cut_off=ctx.cut_off,
            history_truncated=bool(ctx.history and ctx.history.was_truncated),
            duration_ms=duration_ms,
            states=[s.value for s in ctx.transitions],
            usage=ctx.usage,
        )

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "turns": self.metrics.get_stats(),
            "provider": self.reliability.get_stats(),
            "tools": self.executor.metrics.get_stats(),
        }
        if self.executor.cache is not None:
            stats["cache"] = self.executor.cache.get_stats()
        return stats
