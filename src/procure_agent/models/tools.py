"""Tool call and tool result models."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

UNKNOWN_TOOL = "UnknownTool"
INVALID_ARGUMENTS = "InvalidArguments"
TIMEOUT = "Timeout"
EXECUTION_ERROR = "ExecutionError"


@dataclass
class ToolCall:
    """A request from the provider to invoke a named operation.

    ``parse_error`` is set by the transport when the provider sent arguments
    that could not be decoded; the executor reports such calls as invalid.
    """

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    parse_error: Optional[str] = None

    @classmethod
    def from_raw(cls, call_id: str, name: str, raw_arguments: Any) -> "ToolCall":
        """Build a ToolCall from arguments that may arrive as a JSON string."""
        if raw_arguments is None or raw_arguments == "":
            return cls(id=call_id, name=name)
        if isinstance(raw_arguments, dict):
            return cls(id=call_id, name=name, arguments=raw_arguments)
        try:
            decoded = json.loads(raw_arguments)
        except (TypeError, ValueError) as e:
            return cls(id=call_id, name=name, parse_error=f"Arguments are not valid JSON: {e}")
        if not isinstance(decoded, dict):
            return cls(id=call_id, name=name, parse_error="Arguments must be a JSON object")
        return cls(id=call_id, name=name, arguments=decoded)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass
class ToolResult:
    """The outcome of executing one ToolCall.

    ``error`` holds ``UnknownTool``, ``InvalidArguments`` or ``Timeout`` for
    failures detected by the executor, and the exception message for failures
    raised by the domain operation (``error_kind`` is then ``ExecutionError``).
    """

    call_id: str
    tool_name: str
    success: bool
    payload: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    details: Optional[str] = None
    duration_ms: float = 0.0
    cached: bool = False

    def to_content(self) -> str:
        """Serialize the result as the text content of a ``tool`` message."""
        if self.success:
            return json.dumps(self.payload, default=str)
        body: Dict[str, Any] = {"error": self.error, "toolName": self.tool_name}
        if self.error_kind:
            body["errorType"] = self.error_kind
        if self.details:
            body["details"] = self.details
        return json.dumps(body, default=str)
