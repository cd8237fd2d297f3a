"""Core turn orchestration."""

from .orchestrator import AgentReply, TurnContext, TurnOrchestrator, TurnState

__all__ = ["AgentReply", "TurnContext", "TurnOrchestrator", "TurnState"]
