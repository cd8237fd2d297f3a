"""In-memory conversation store."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..models import Action, Conversation, Message
from .base import ConversationStore, StoreError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class InMemoryConversationStore(ConversationStore):
    """Dict-backed store.

    Conversations are copied on the way in and out, so callers never hold a
    reference to stored state and a failed append leaves nothing behind.
    """

    def __init__(self, max_conversations: Optional[int] = None):
        self.conversations: Dict[str, Conversation] = {}
        self.max_conversations = max_conversations
        # When set, turn writes raise it after assembling the update, before the swap.
        self.fail_appends_with: Optional[Exception] = None
        self._lock = asyncio.Lock()

    async def load_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        return conversation.copy() if conversation else None

    async def create_conversation(self, user_id: Optional[str], title: str = "") -> Conversation:
        async with self._lock:
            if self.max_conversations and len(self.conversations) >= self.max_conversations:
                self._cleanup_oldest()
            conversation = Conversation.new(user_id, title)
            self.conversations[conversation.id] = conversation
        logger.info(f"Created conversation {conversation.id} for user {user_id}")
        return conversation.copy()

    async def append_turn(
        self,
        conversation_id: str,
        user_message: Message,
        assistant_message: Message,
        tool_messages: List[Message],
        actions: List[Action],
    ) -> Conversation:
        async with self._lock:
            stored = self.conversations.get(conversation_id)
            if stored is None:
                raise StoreError(f"Conversation {conversation_id} not found")

            updated = self._with_turn(stored, user_message, assistant_message, tool_messages, actions)
            if self.fail_appends_with is not None:
                raise self.fail_appends_with
            self.conversations[conversation_id] = updated

        logger.debug(
            f"Appended turn to {conversation_id}: {2 + len(tool_messages)} messages, "
            f"{len(actions)} actions"
        )
        return updated.copy()

    async def save_new_conversation(
        self,
        conversation: Conversation,
        user_message: Message,
        assistant_message: Message,
        tool_messages: List[Message],
        actions: List[Action],
    ) -> Conversation:
        async with self._lock:
            if conversation.id in self.conversations:
                raise StoreError(f"Conversation {conversation.id} already exists")

            created = self._with_turn(
                conversation, user_message, assistant_message, tool_messages, actions
            )
            if self.fail_appends_with is not None:
                raise self.fail_appends_with
            if self.max_conversations and len(self.conversations) >= self.max_conversations:
                self._cleanup_oldest()
            self.conversations[created.id] = created

        logger.info(f"Created conversation {created.id} for user {created.user_id}")
        return created.copy()

    def _with_turn(
        self,
        conversation: Conversation,
        user_message: Message,
        assistant_message: Message,
        tool_messages: List[Message],
        actions: List[Action],
    ) -> Conversation:
        updated = conversation.copy()
        updated.messages.append(user_message)
        updated.messages.extend(tool_messages)
        updated.messages.append(assistant_message)
        updated.actions.extend(actions)
        updated.last_message_preview = assistant_message.content[:PREVIEW_LENGTH]
        updated.updated_at = datetime.now()
        return updated

    async def list_conversations(self, user_id: Optional[str]) -> List[Conversation]:
        return [
            c.copy()
            for c in sorted(
                self.conversations.values(), key=lambda c: c.updated_at, reverse=True
            )
            if c.user_id == user_id
        ]

    async def deactivate(self, conversation_id: str) -> bool:
        async with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return False
            updated = conversation.copy()
            updated.active = False
            self.conversations[conversation_id] = updated
        logger.info(f"Deactivated conversation {conversation_id}")
        return True

    def _cleanup_oldest(self) -> None:
        """Drop the least recently updated conversation to make room."""
        oldest_id = min(self.conversations, key=lambda k: self.conversations[k].updated_at)
        logger.warning(f"Evicting oldest conversation {oldest_id} to make room")
        del self.conversations[oldest_id]
