"""ViewModels for agentgate."""

from .agent_viewmodel import AgentSetupViewModel, AgentSetupState, SessionPhase, SessionEvent

__all__ = [
    "AgentSetupViewModel",
    "AgentSetupState",
    "SessionPhase",
    "SessionEvent",
]
