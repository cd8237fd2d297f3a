"""Declarations for tools the language model may call."""

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel


@dataclass
class ToolContext:
    """Caller identity handed to domain operations."""

    user_id: Optional[str] = None
    conversation_id: Optional[str] = None


# handler(arguments, context) -> payload; may be sync or async.
ToolHandler = Callable[[Dict[str, Any], ToolContext], Any]


@dataclass
class ToolSpec:
    """A registered domain operation: argument schema plus the callable behind it."""

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler
    cacheable: bool = False
    # Maps a successful payload to attachments for the final reply (e.g. items, cart).
    attachments: Optional[Callable[[Any], Dict[str, Any]]] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Tool must have a name")
        if not self.description:
            raise ValueError("Tool must have a description")

    def parameters_schema(self) -> Dict[str, Any]:
        """JSON schema for the arguments, without pydantic's title noise."""
        schema = copy.deepcopy(self.args_model.model_json_schema())
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        return schema

    def get_definition(self) -> Dict[str, Any]:
        """Tool definition handed to the provider."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema(),
        }
