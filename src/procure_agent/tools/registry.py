"""Tool registry mapping operation names to their specs."""

import logging
from typing import Dict, Iterable, List, Optional

from .base import ToolSpec

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry of domain operations, resolved once at startup."""

    def __init__(self, tools: Optional[Iterable[ToolSpec]] = None):
        self._tools: Dict[str, ToolSpec] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolSpec) -> bool:
        """Register a tool. Returns False if the name was already taken."""
        if tool.name in self._tools:
            logger.warning(f"Tool {tool.name} already registered, skipping")
            return False

        self._tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")
        return True

    def get_tool(self, name: str) -> Optional[ToolSpec]:
        """Get a tool spec by name."""
        return self._tools.get(name)

    def list_tools(self) -> List[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_all_tools(self) -> Dict[str, ToolSpec]:
        """Get all registered tools."""
        return self._tools.copy()

    def get_tool_definitions(self) -> List[Dict]:
        """Get provider tool definitions for all registered tools."""
        definitions = []
        for tool in self._tools.values():
            try:
                definitions.append(tool.get_definition())
            except Exception as e:
                logger.error(f"Failed to build definition for {tool.name}: {e}")
        return definitions

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
