"""Token-bounded message history for a turn."""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from ..models import TOOL_ROLE, USER_ROLE, Conversation, Message
from .tokens import TokenCounter

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 3000
DEFAULT_MAX_HISTORY_MESSAGES = 50
MESSAGE_OVERHEAD_TOKENS = 4

TRUNCATED_BY_TOKENS = "token_budget"
TRUNCATED_BY_COUNT = "message_count"


@dataclass
class HistoryBuild:
    """Messages for one provider call plus the accounting behind them."""

    messages: List[Message]
    total_tokens: int
    reserved_tokens: int
    history_tokens: int
    history_budget: int
    included_messages: int
    excluded_messages: int
    truncation_reason: Optional[str] = None
    pinned: List[Message] = field(default_factory=list)

    @property
    def was_truncated(self) -> bool:
        return self.excluded_messages > 0


class HistoryManager:
    """Builds pinned context -> recent history -> new user message under a token budget.

    Pinned context and the new user message are always included whole. The
    remaining budget is filled with persisted messages from newest to oldest;
    the first message that does not fit ends the walk, so history is always a
    contiguous suffix of the conversation.
    """

    def __init__(
        self,
        token_counter: Optional[Callable[[str], int]] = None,
        max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES,
    ):
        self.token_counter = token_counter or TokenCounter()
        self.max_history_messages = max_history_messages

    def count_message(self, message: Message) -> int:
        tokens = self.token_counter(message.content) + MESSAGE_OVERHEAD_TOKENS
        for tool_call in message.tool_calls:
            tokens += self.token_counter(tool_call.name)
            tokens += self.token_counter(json.dumps(tool_call.arguments))
        return tokens

    def build(
        self,
        conversation: Conversation,
        new_user_message: Union[str, Message],
        pinned_context: Optional[List[Message]] = None,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
    ) -> HistoryBuild:
        pinned = list(pinned_context or [])
        if isinstance(new_user_message, str):
            new_user_message = Message(role=USER_ROLE, content=new_user_message)

        reserved = sum(self.count_message(m) for m in pinned)
        reserved += self.count_message(new_user_message)
        history_budget = max(0, token_budget - reserved)

        if reserved > token_budget:
            logger.warning(
                f"Pinned context and new message use {reserved} tokens, "
                f"over the {token_budget} token budget; history omitted"
            )

        history = conversation.messages
        included: List[Message] = []
        history_tokens = 0
        reason = None

        for message in reversed(history):
            if len(included) >= self.max_history_messages:
                reason = TRUNCATED_BY_COUNT
                break
            cost = self.count_message(message)
            if history_tokens + cost > history_budget:
                reason = TRUNCATED_BY_TOKENS
                break
            history_tokens += cost
            included.append(message)

        included.reverse()

        # Tool results whose requesting assistant message fell outside the window
        # would reach the provider without a matching tool call.
        while included and included[0].role == TOOL_ROLE:
            history_tokens -= self.count_message(included.pop(0))

        excluded = len(history) - len(included)
        if excluded:
            logger.info(
                f"Message history truncated for {conversation.id}: "
                f"included={len(included)} excluded={excluded} reason={reason or TRUNCATED_BY_TOKENS} "
                f"history_tokens={history_tokens} history_budget={history_budget}"
            )

        messages = pinned + included + [new_user_message]
        build = HistoryBuild(
            messages=messages,
            total_tokens=reserved + history_tokens,
            reserved_tokens=reserved,
            history_tokens=history_tokens,
            history_budget=history_budget,
            included_messages=len(included),
            excluded_messages=excluded,
            truncation_reason=(reason or TRUNCATED_BY_TOKENS) if excluded else None,
            pinned=pinned,
        )
        logger.debug(
            f"History built for {conversation.id}: {len(messages)} messages, "
            f"{build.total_tokens} tokens"
        )
        return build
