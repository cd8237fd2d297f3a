"""Conversation store interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import Action, Conversation, Message


class StoreError(Exception):
    """Raised by stores when a read or write cannot be completed."""


class ConversationStore(ABC):
    """Persistence for conversations. ``append_turn`` must be atomic."""

    @abstractmethod
    async def load_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Return the conversation, or None if it does not exist."""

    @abstractmethod
    async def create_conversation(self, user_id: Optional[str], title: str = "") -> Conversation:
        """Create and persist an empty conversation."""

    @abstractmethod
    async def append_turn(
        self,
        conversation_id: str,
        user_message: Message,
        assistant_message: Message,
        tool_messages: List[Message],
        actions: List[Action],
    ) -> Conversation:
        """Append one turn: the user message, the intermediate tool-call and tool
        result messages (``tool_messages``, in order), the final assistant message
        and the turn's actions. Either all of it lands or none of it does.

        Raises:
            StoreError: If the turn could not be written.
        """

    @abstractmethod
    async def save_new_conversation(
        self,
        conversation: Conversation,
        user_message: Message,
        assistant_message: Message,
        tool_messages: List[Message],
        actions: List[Action],
    ) -> Conversation:
        """Persist a conversation that exists only in memory together with its
        first turn. Same all-or-nothing contract as ``append_turn``: a failed
        save leaves no trace of the conversation.

        Raises:
            StoreError: If the conversation already exists or could not be written.
        """

    @abstractmethod
    async def list_conversations(self, user_id: Optional[str]) -> List[Conversation]:
        """Return the user's conversations, most recently updated first."""

    @abstractmethod
    async def deactivate(self, conversation_id: str) -> bool:
        """Flip the active flag off. Returns False if the conversation is unknown."""
