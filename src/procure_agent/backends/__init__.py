"""Reference implementations of the procurement backend."""

from .memory import DEFAULT_CATALOG, InMemoryProcurementBackend

__all__ = ["DEFAULT_CATALOG", "InMemoryProcurementBackend"]
