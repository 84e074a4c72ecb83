"""Services layer for agentgate."""

from .agent_config import AgentConfigurationService, ConfigurationError
from .agent_detection import AgentDetectionService, AgentStatus
from .model_slots import find_best_model, resolve_slots
from .proxy_config import load_proxy_config
from .shell_profile import ShellProfileManager, ShellProfileError, ShellType

__all__ = [
    "AgentConfigurationService",
    "ConfigurationError",
    "AgentDetectionService",
    "AgentStatus",
    "find_best_model",
    "resolve_slots",
    "load_proxy_config",
    "ShellProfileManager",
    "ShellProfileError",
    "ShellType",
]
