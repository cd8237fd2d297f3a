"""Data models for the procurement agent."""

from .conversation import (
    ASSISTANT_ROLE,
    ITERATION_BUDGET_EXCEEDED,
    SYSTEM_ROLE,
    TOOL_CALL_BUDGET_EXCEEDED,
    TOOL_ROLE,
    TURN_TIME_BUDGET_EXCEEDED,
    USER_ROLE,
    Action,
    Conversation,
    Message,
)
from .tools import (
    EXECUTION_ERROR,
    INVALID_ARGUMENTS,
    TIMEOUT,
    UNKNOWN_TOOL,
    ToolCall,
    ToolResult,
)

__all__ = [
    "Action",
    "Conversation",
    "Message",
    "ToolCall",
    "ToolResult",
    "USER_ROLE",
    "ASSISTANT_ROLE",
    "SYSTEM_ROLE",
    "TOOL_ROLE",
    "ITERATION_BUDGET_EXCEEDED",
    "TURN_TIME_BUDGET_EXCEEDED",
    "TOOL_CALL_BUDGET_EXCEEDED",
    "UNKNOWN_TOOL",
    "INVALID_ARGUMENTS",
    "TIMEOUT",
    "EXECUTION_ERROR",
]
