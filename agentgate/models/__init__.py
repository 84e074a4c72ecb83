"""Data models for agentgate."""

from .agents import (
    AgentConfigType,
    CLIAgent,
    ModelSlot,
    ConfigurationMode,
    ConfigStorageOption,
    AvailableModel,
    AgentConfiguration,
    RawConfig,
    WrittenFile,
    AgentConfigResult,
    ConnectionTestResult,
)
from .auth import ClaudeAuthFile, load_auth_file, parse_expiry
from .proxy import ProxyConfig
from .usage import UsageWindow, ExtraUsage, ClaudeUsageResponse

__all__ = [
    "AgentConfigType",
    "CLIAgent",
    "ModelSlot",
    "ConfigurationMode",
    "ConfigStorageOption",
    "AvailableModel",
    "AgentConfiguration",
    "RawConfig",
    "WrittenFile",
    "AgentConfigResult",
    "ConnectionTestResult",
    "ClaudeAuthFile",
    "load_auth_file",
    "parse_expiry",
    "ProxyConfig",
    "UsageWindow",
    "ExtraUsage",
    "ClaudeUsageResponse",
]
