"""CLI agent models and agent configuration types."""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple


class AgentConfigType(str, Enum):
    """How an agent accepts routing configuration."""
    FILE = "file"
    ENVIRONMENT = "environment"
    BOTH = "both"


class CLIAgent(str, Enum):
    """Supported CLI agents."""
    CLAUDE_CODE = "claude-code"
    CODEX_CLI = "codex"
    GEMINI_CLI = "gemini-cli"
    AMP_CLI = "amp"
    OPEN_CODE = "opencode"
    FACTORY_DROID = "factory-droid"

    @property
    def display_name(self) -> str:
        """Human-readable display name."""
        names = {
            self.CLAUDE_CODE: "Claude Code",
            self.CODEX_CLI: "Codex CLI",
            self.GEMINI_CLI: "Gemini CLI",
            self.AMP_CLI: "Amp CLI",
            self.OPEN_CODE: "OpenCode",
            self.FACTORY_DROID: "Factory Droid",
        }
        return names.get(self, self.value)

    @property
    def config_type(self) -> AgentConfigType:
        """Configuration type."""
        types = {
            self.CLAUDE_CODE: AgentConfigType.BOTH,
            self.CODEX_CLI: AgentConfigType.FILE,
            self.GEMINI_CLI: AgentConfigType.ENVIRONMENT,
            self.AMP_CLI: AgentConfigType.BOTH,
            self.OPEN_CODE: AgentConfigType.FILE,
            self.FACTORY_DROID: AgentConfigType.FILE,
        }
        return types.get(self, AgentConfigType.FILE)

    @property
    def binary_names(self) -> list[str]:
        """Binary names for detection."""
        names = {
            self.CLAUDE_CODE: ["claude"],
            self.CODEX_CLI: ["codex"],
            self.GEMINI_CLI: ["gemini"],
            self.AMP_CLI: ["amp"],
            self.OPEN_CODE: ["opencode", "oc"],
            self.FACTORY_DROID: ["droid", "factory-droid", "fd"],
        }
        return names.get(self, [])

    @property
    def config_paths(self) -> list[str]:
        """Configuration file paths, relative to the home directory."""
        paths = {
            self.CLAUDE_CODE: ["~/.claude/settings.json"],
            self.CODEX_CLI: ["~/.codex/config.toml", "~/.codex/auth.json"],
            self.GEMINI_CLI: [],
            self.AMP_CLI: ["~/.config/amp/settings.json", "~/.local/share/amp/secrets.json"],
            self.OPEN_CODE: ["~/.config/opencode/opencode.json"],
            self.FACTORY_DROID: ["~/.factory/config.json"],
        }
        return paths.get(self, [])

    @property
    def docs_url(self) -> Optional[str]:
        """Documentation URL."""
        urls = {
            self.CLAUDE_CODE: "https://docs.anthropic.com/en/docs/claude-code",
            self.CODEX_CLI: "https://github.com/openai/codex",
            self.GEMINI_CLI: "https://github.com/google-gemini/gemini-cli",
            self.AMP_CLI: "https://ampcode.com/manual",
            self.OPEN_CODE: "https://github.com/sst/opencode",
            self.FACTORY_DROID: "https://docs.factory.ai/cli",
        }
        return urls.get(self)


class ModelSlot(str, Enum):
    """Semantic roles a model name can fill in an agent configuration."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    FAST = "fast"


class ConfigurationMode(str, Enum):
    """Automatic mode writes files and shell profiles, manual mode only renders."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class ConfigStorageOption(str, Enum):
    """Where a dual-capable agent receives its configuration."""
    JSON_ONLY = "json"
    SHELL_ONLY = "shell"
    BOTH = "both"


@dataclass(frozen=True)
class AvailableModel:
    """A model advertised by the proxy's /v1/models endpoint."""
    name: str
    owned_by: Optional[str] = None

    # Placeholder names; a slot still holding one of these has not been customized.
    DEFAULT_MODELS = {
        ModelSlot.PRIMARY: "claude-opus-4-5-20251101",
        ModelSlot.SECONDARY: "claude-sonnet-4-5-20250929",
        ModelSlot.FAST: "claude-haiku-4-5-20251001",
    }

    @classmethod
    def default_for(cls, slot: ModelSlot) -> str:
        return cls.DEFAULT_MODELS[slot]


def default_model_slots() -> Dict[ModelSlot, str]:
    """A fresh slot mapping holding the placeholder model for every slot."""
    return {slot: AvailableModel.default_for(slot) for slot in ModelSlot}


@dataclass
class AgentConfiguration:
    """Configuration to apply to an agent."""
    agent: CLIAgent
    proxy_url: str
    api_key: str
    model_slots: Dict[ModelSlot, str] = field(default_factory=default_model_slots)

    def __post_init__(self):
        """Every slot is always populated; missing ones fall back to defaults."""
        slots = default_model_slots()
        slots.update(self.model_slots)
        self.model_slots = slots

    @property
    def base_url(self) -> str:
        """Proxy URL without the trailing /v1 (some agents append it themselves)."""
        url = self.proxy_url.rstrip("/")
        if url.endswith("/v1"):
            url = url[:-3]
        return url

    @property
    def models_configured(self) -> int:
        """Number of slots holding a non-default model."""
        return sum(
            1 for slot, model in self.model_slots.items()
            if model != AvailableModel.default_for(slot)
        )


@dataclass(frozen=True)
class RawConfig:
    """One rendered configuration artifact."""
    content: str
    filename: Optional[str] = None
    target_path: Optional[str] = None
    kind: str = "file"  # "file" or "shell"


@dataclass(frozen=True)
class WrittenFile:
    """A file changed by an automatic apply; backup_path is None when it was created."""
    path: str
    backup_path: Optional[str] = None


@dataclass(frozen=True)
class AgentConfigResult:
    """Outcome of a single configuration generation attempt."""
    success: bool
    config_type: Optional[AgentConfigType] = None
    mode: Optional[ConfigurationMode] = None
    config_path: Optional[str] = None
    auth_path: Optional[str] = None
    shell_config: Optional[str] = None
    raw_configs: Tuple[RawConfig, ...] = ()
    written_files: Tuple[WrittenFile, ...] = ()
    instructions: str = ""
    models_configured: int = 0
    error: Optional[str] = None

    @classmethod
    def success_result(
        cls,
        config_type: AgentConfigType,
        mode: ConfigurationMode,
        instructions: str,
        raw_configs: Optional[List[RawConfig]] = None,
        written_files: Optional[List[WrittenFile]] = None,
        config_path: Optional[str] = None,
        auth_path: Optional[str] = None,
        shell_config: Optional[str] = None,
        models_configured: int = 0,
    ) -> "AgentConfigResult":
        return cls(
            success=True,
            config_type=config_type,
            mode=mode,
            config_path=config_path,
            auth_path=auth_path,
            shell_config=shell_config,
            raw_configs=tuple(raw_configs or ()),
            written_files=tuple(written_files or ()),
            instructions=instructions,
            models_configured=models_configured,
        )

    @classmethod
    def failure(cls, error: str) -> "AgentConfigResult":
        return cls(success=False, instructions="Configuration failed", error=error)


@dataclass(frozen=True)
class ConnectionTestResult:
    """Result of probing the proxy with generated credentials."""
    success: bool
    message: str
    latency_ms: Optional[int] = None
    model_responded: Optional[str] = None
