"""Tool declarations, registry and executor."""

from .base import ToolContext, ToolSpec
from .executor import ToolExecutor
from .procurement import ProcurementBackend, ProcurementTools, build_procurement_registry
from .registry import ToolRegistry

__all__ = [
    "ToolContext",
    "ToolSpec",
    "ToolExecutor",
    "ToolRegistry",
    "ProcurementBackend",
    "ProcurementTools",
    "build_procurement_registry",
]
