"""Procurement assistant turn orchestration."""

__version__ = "1.0.0"
