"""Conversation persistence."""

from .base import ConversationStore, StoreError
from .memory import InMemoryConversationStore

__all__ = ["ConversationStore", "InMemoryConversationStore", "StoreError"]
