"""Conversation, message and action models."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .tools import ToolCall

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
TOOL_ROLE = "tool"
ROLES = (USER_ROLE, ASSISTANT_ROLE, SYSTEM_ROLE, TOOL_ROLE)

ITERATION_BUDGET_EXCEEDED = "IterationBudgetExceeded"
TURN_TIME_BUDGET_EXCEEDED = "TurnTimeBudgetExceeded"
TOOL_CALL_BUDGET_EXCEEDED = "ToolCallBudgetExceeded"


@dataclass
class Message:
    """One utterance in a conversation."""

    role: str
    content: str
    attachments: Optional[Dict[str, Any]] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid message role: {self.role}")
        if self.role == TOOL_ROLE and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.attachments:
            data["attachments"] = self.attachments
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data


@dataclass
class Action:
    """Audit log entry for one tool invocation (or a turn marker)."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    result: Any = None
    error: Optional[str] = None
    call_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_marker(self) -> bool:
        return self.call_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "arguments": self.arguments,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "call_id": self.call_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Conversation:
    """Persisted chat state for one session."""

    id: str
    user_id: Optional[str]
    messages: List[Message] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    active: bool = True
    summary: Optional[str] = None
    title: str = "New conversation"
    last_message_preview: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def new(cls, user_id: Optional[str], title: str = "") -> "Conversation":
        return cls(
            id=f"conv_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            title=title or "New conversation",
        )

    def copy(self) -> "Conversation":
        """Return a copy whose message and action lists can be mutated independently."""
        return replace(self, messages=list(self.messages), actions=list(self.actions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "active": self.active,
            "summary": self.summary,
            "last_message_preview": self.last_message_preview,
            "messages": [m.to_dict() for m in self.messages],
            "actions": [a.to_dict() for a in self.actions],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
