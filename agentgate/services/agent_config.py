"""
Agent configuration service.

WORKFLOW OVERVIEW:
==================
Turns an AgentConfiguration (proxy URL, API key, model slots) into the
artifacts each CLI agent reads its routing configuration from.

1. Pick the channels: FILE agents get config files, ENVIRONMENT agents get
   a shell snippet, BOTH agents follow the ConfigStorageOption.
2. Render every artifact as a RawConfig (pure, deterministic).
3. MANUAL mode stops there; the caller previews or copies the payloads.
4. AUTOMATIC mode merges every file artifact first, then backs up and
   writes them. A failed write restores the files already written, and
   rollback() undoes a finished apply. The shell snippet is returned in
   shell_config for the caller to commit through the shell profile manager.

Failures never escape generate_configuration(); they come back as an
AgentConfigResult with success=False.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from ..models.agents import (
    AgentConfigResult,
    AgentConfigType,
    AgentConfiguration,
    AvailableModel,
    CLIAgent,
    ConfigStorageOption,
    ConfigurationMode,
    ConnectionTestResult,
    ModelSlot,
    RawConfig,
    WrittenFile,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "cliproxyapi"
SHELL_CONFIG_NAME = "Shell Configuration"


@dataclass(eq=False)
class ConfigurationError(Exception):
    """Rendering or writing an agent configuration failed."""
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class BackupFile:
    """Backup file that can be restored."""
    path: str
    timestamp: datetime
    agent: CLIAgent

    @property
    def display_name(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class _RenderedFile:
    """A file artifact before serialization."""
    filename: str
    target_path: str  # "~/..." form; expanded against the service home when written
    data: Any  # dict for JSON files, str for anything else
    merge: Optional[Callable[[dict, dict], dict]] = None

    @property
    def content(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, indent=2) + "\n"


@dataclass
class _Rendered:
    files: List[_RenderedFile] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


def _merge_json_objects(existing: dict, rendered: dict) -> dict:
    """Overlay rendered keys on an existing JSON object, one level deep."""
    merged = dict(existing)
    for key, value in rendered.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _merge_factory_models(existing: dict, rendered: dict) -> dict:
    """Replace previously generated proxy models, keep the user's own."""
    ours = rendered.get("custom_models", [])
    base_urls = {m.get("base_url") for m in ours}
    kept = [
        m for m in existing.get("custom_models", [])
        if not (isinstance(m, dict) and m.get("base_url") in base_urls)
    ]
    merged = dict(existing)
    merged["custom_models"] = kept + ours
    return merged


def shell_quote(value: str) -> str:
    return '"' + re.sub(r'([\\"$`])', r"\\\1", value) + '"'


def toml_quote(value: str) -> str:
    """TOML basic string."""
    escaped = re.sub(r'(["\\])', r"\\\1", value)
    return '"' + escaped.replace("\n", "\\n").replace("\t", "\\t") + '"'


def render_shell_exports(env: Dict[str, str]) -> str:
    return "\n".join(f"export {name}={shell_quote(value)}" for name, value in env.items())


def storage_channels(agent: CLIAgent, storage_option: ConfigStorageOption) -> tuple[bool, bool]:
    """(write files, write shell) for an agent and storage preference."""
    config_type = agent.config_type
    if config_type == AgentConfigType.FILE:
        return True, False
    if config_type == AgentConfigType.ENVIRONMENT:
        return False, True
    if storage_option == ConfigStorageOption.SHELL_ONLY:
        return False, True
    if storage_option == ConfigStorageOption.BOTH:
        return True, True
    return True, False


def should_update_shell(agent: CLIAgent, storage_option: ConfigStorageOption) -> bool:
    """Whether automatic mode commits a shell snippet for this agent."""
    return storage_channels(agent, storage_option)[1]


def _unique_models(config: AgentConfiguration) -> List[str]:
    return list(dict.fromkeys(config.model_slots[slot] for slot in ModelSlot))


class AgentConfigurationService:
    """Service for generating and applying agent configurations."""

    def __init__(
        self,
        home: Optional[Path] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10,
    ):
        """
        Args:
            home: Home directory agent config paths resolve against
            session: Optional shared aiohttp session for proxy calls
            timeout: Total timeout in seconds for proxy calls
        """
        self.home = Path(home) if home else Path.home()
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _expand(self, path: str) -> Path:
        if path.startswith("~/"):
            return self.home / path[2:]
        return Path(path)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_configuration(
        self,
        agent: CLIAgent,
        config: AgentConfiguration,
        mode: ConfigurationMode = ConfigurationMode.AUTOMATIC,
        storage_option: ConfigStorageOption = ConfigStorageOption.JSON_ONLY,
        detection_service=None,
    ) -> AgentConfigResult:
        """
        Render (and in AUTOMATIC mode, write) the configuration for ``agent``.

        ``detection_service`` has its cache invalidated after files are
        written so the next detection sees the new configuration.
        """
        try:
            result = self._generate(agent, config, mode, storage_option)
        except Exception as e:
            logger.error(f"[AgentConfig] Failed to configure {agent.display_name}: {e}")
            return AgentConfigResult.failure(str(e))

        if mode == ConfigurationMode.AUTOMATIC and result.config_path and detection_service is not None:
            detection_service.invalidate_cache()
        return result

    def _generate(
        self,
        agent: CLIAgent,
        config: AgentConfiguration,
        mode: ConfigurationMode,
        storage_option: ConfigStorageOption,
    ) -> AgentConfigResult:
        write_files, write_shell = storage_channels(agent, storage_option)
        rendered = self.render(agent, config)

        raw_configs: List[RawConfig] = []
        prepared: List[Tuple[Path, str]] = []

        if write_files:
            if not rendered.files:
                raise ConfigurationError(f"{agent.display_name} has no file-based configuration")
            for rendered_file in rendered.files:
                content = rendered_file.content
                if mode == ConfigurationMode.AUTOMATIC:
                    path, content = self._prepare_file(rendered_file)
                    prepared.append((path, content))
                raw_configs.append(RawConfig(
                    content=content,
                    filename=rendered_file.filename,
                    target_path=rendered_file.target_path,
                    kind="file",
                ))

        shell_config = None
        if write_shell:
            if not rendered.env:
                raise ConfigurationError(f"{agent.display_name} has no environment configuration")
            shell_config = render_shell_exports(rendered.env)
            raw_configs.append(RawConfig(
                content=shell_config,
                filename=SHELL_CONFIG_NAME,
                kind="shell",
            ))

        for raw in raw_configs:
            if not raw.content.strip():
                raise ConfigurationError(f"Rendered an empty {raw.filename or 'configuration'}")

        written_files = self._write_files(agent, prepared) if prepared else []

        file_targets = [f.target_path for f in rendered.files] if write_files else []
        return AgentConfigResult.success_result(
            config_type=agent.config_type,
            mode=mode,
            config_path=file_targets[0] if file_targets else None,
            auth_path=file_targets[1] if len(file_targets) > 1 else None,
            shell_config=shell_config,
            raw_configs=raw_configs,
            written_files=written_files,
            instructions=self._instructions(agent, mode, file_targets, write_shell),
            models_configured=config.models_configured,
        )

    def _instructions(
        self,
        agent: CLIAgent,
        mode: ConfigurationMode,
        file_targets: List[str],
        write_shell: bool,
    ) -> str:
        parts = []
        if mode == ConfigurationMode.AUTOMATIC:
            if file_targets:
                parts.append(f"Configuration written to {', '.join(file_targets)}.")
            if write_shell:
                parts.append("Environment variables will be added to your shell profile. "
                             "Restart your terminal for changes to take effect.")
            parts.append(f"{agent.display_name} will now route requests through CLIProxyAPI.")
        else:
            if file_targets:
                parts.append(f"Save the configuration to {', '.join(file_targets)}.")
            if write_shell:
                parts.append("Add the environment variables to your shell profile "
                             "(~/.zshrc or ~/.bashrc), then restart your terminal.")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Per-agent rendering
    # ------------------------------------------------------------------

    def render(self, agent: CLIAgent, config: AgentConfiguration) -> _Rendered:
        """Render every artifact ``agent`` supports, regardless of channel."""
        renderers = {
            CLIAgent.CLAUDE_CODE: self._render_claude_code,
            CLIAgent.CODEX_CLI: self._render_codex,
            CLIAgent.GEMINI_CLI: self._render_gemini_cli,
            CLIAgent.AMP_CLI: self._render_amp,
            CLIAgent.OPEN_CODE: self._render_opencode,
            CLIAgent.FACTORY_DROID: self._render_factory_droid,
        }
        renderer = renderers.get(agent)
        if renderer is None:
            raise ConfigurationError(f"Unsupported agent: {agent}")
        return renderer(config)

    def _render_claude_code(self, config: AgentConfiguration) -> _Rendered:
        env = {
            "ANTHROPIC_BASE_URL": config.base_url,
            "ANTHROPIC_AUTH_TOKEN": config.api_key,
            "ANTHROPIC_DEFAULT_OPUS_MODEL": config.model_slots[ModelSlot.PRIMARY],
            "ANTHROPIC_DEFAULT_SONNET_MODEL": config.model_slots[ModelSlot.SECONDARY],
            "ANTHROPIC_DEFAULT_HAIKU_MODEL": config.model_slots[ModelSlot.FAST],
        }
        return _Rendered(
            files=[_RenderedFile(
                filename="settings.json",
                target_path="~/.claude/settings.json",
                data={"env": dict(env)},
                merge=_merge_json_objects,
            )],
            env=env,
        )

    def _render_codex(self, config: AgentConfiguration) -> _Rendered:
        model = config.model_slots[ModelSlot.PRIMARY]
        toml = (
            f'model_provider = "{PROVIDER_ID}"\n'
            f"model = {toml_quote(model)}\n"
            'model_reasoning_effort = "high"\n'
            "\n"
            f"[model_providers.{PROVIDER_ID}]\n"
            'name = "CLIProxyAPI"\n'
            f"base_url = {toml_quote(config.proxy_url)}\n"
            'wire_api = "responses"\n'
        )
        return _Rendered(files=[
            _RenderedFile(filename="config.toml", target_path="~/.codex/config.toml", data=toml),
            _RenderedFile(
                filename="auth.json",
                target_path="~/.codex/auth.json",
                data={"OPENAI_API_KEY": config.api_key},
                merge=_merge_json_objects,
            ),
        ])

    def _render_gemini_cli(self, config: AgentConfiguration) -> _Rendered:
        env = {
            "CODE_ASSIST_ENDPOINT": config.base_url,
            "GEMINI_API_KEY": config.api_key,
        }
        primary = config.model_slots[ModelSlot.PRIMARY]
        if primary != AvailableModel.default_for(ModelSlot.PRIMARY):
            env["GEMINI_MODEL"] = primary
        return _Rendered(env=env)

    def _render_amp(self, config: AgentConfiguration) -> _Rendered:
        base_url = config.base_url
        return _Rendered(
            files=[
                _RenderedFile(
                    filename="settings.json",
                    target_path="~/.config/amp/settings.json",
                    data={"amp.url": base_url},
                    merge=_merge_json_objects,
                ),
                _RenderedFile(
                    filename="secrets.json",
                    target_path="~/.local/share/amp/secrets.json",
                    data={f"apiKey@{base_url}": config.api_key},
                    merge=_merge_json_objects,
                ),
            ],
            env={"AMP_URL": base_url, "AMP_API_KEY": config.api_key},
        )

    def _render_opencode(self, config: AgentConfiguration) -> _Rendered:
        models = {name: {"name": name} for name in _unique_models(config)}
        data = {
            "$schema": "https://opencode.ai/config.json",
            "provider": {
                PROVIDER_ID: {
                    "npm": "@ai-sdk/openai-compatible",
                    "name": "CLIProxyAPI",
                    "options": {
                        "baseURL": config.proxy_url,
                        "apiKey": config.api_key,
                    },
                    "models": models,
                },
            },
            "model": f"{PROVIDER_ID}/{config.model_slots[ModelSlot.PRIMARY]}",
        }
        return _Rendered(files=[_RenderedFile(
            filename="opencode.json",
            target_path="~/.config/opencode/opencode.json",
            data=data,
            merge=_merge_json_objects,
        )])

    def _render_factory_droid(self, config: AgentConfiguration) -> _Rendered:
        custom_models = [
            {
                "model_display_name": f"{name} [CLIProxyAPI]",
                "model": name,
                "base_url": config.proxy_url,
                "api_key": config.api_key,
                "provider": "generic-chat-completion-api",
            }
            for name in _unique_models(config)
        ]
        return _Rendered(files=[_RenderedFile(
            filename="config.json",
            target_path="~/.factory/config.json",
            data={"custom_models": custom_models},
            merge=_merge_factory_models,
        )])

    # ------------------------------------------------------------------
    # Writing and backups
    # ------------------------------------------------------------------

    def _prepare_file(self, rendered_file: _RenderedFile) -> Tuple[Path, str]:
        """Resolve the target and merge with what is already there. Writes nothing."""
        path = self._expand(rendered_file.target_path)
        content = rendered_file.content
        if path.exists() and rendered_file.merge is not None and isinstance(rendered_file.data, dict):
            existing = self._read_json_object(path)
            if existing is not None:
                merged = rendered_file.merge(existing, rendered_file.data)
                content = json.dumps(merged, indent=2) + "\n"
        return path, content

    def _write_files(self, agent: CLIAgent, prepared: List[Tuple[Path, str]]) -> List[WrittenFile]:
        """
        Back up and write every prepared artifact.

        All or nothing: if one write fails, the files already written are
        restored from their backups (or removed when they were created) and
        ConfigurationError is raised.
        """
        written: List[WrittenFile] = []
        path = None
        try:
            for path, content in prepared:
                backup_path = self._backup(path) if path.exists() else None
                written.append(WrittenFile(
                    path=str(path),
                    backup_path=str(backup_path) if backup_path else None,
                ))
                self._write_private(path, content)
                logger.info(f"[AgentConfig] Wrote {agent.display_name} configuration to {path}")
        except OSError as e:
            self.rollback(written)
            raise ConfigurationError(f"Cannot write {path}: {e}") from e
        return written

    @staticmethod
    def _write_private(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Files carry API keys; keep them owner-only.
        old_umask = os.umask(0o077)
        try:
            path.write_text(content, encoding="utf-8")
            os.chmod(path, 0o600)
        finally:
            os.umask(old_umask)

    def rollback(self, written_files: Sequence[WrittenFile]) -> None:
        """Undo an automatic apply: move backups back, delete files it created."""
        for written in reversed(written_files):
            path = Path(written.path)
            try:
                if written.backup_path:
                    os.replace(written.backup_path, path)
                elif path.is_file():
                    path.unlink()
            except OSError as e:
                logger.error(f"[AgentConfig] Could not roll back {path}: {e}")
                continue
            logger.info(f"[AgentConfig] Rolled back {path}")

    @staticmethod
    def _read_json_object(path: Path) -> Optional[dict]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(f"[AgentConfig] {path} is not valid JSON, replacing it")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _backup(path: Path) -> Path:
        stamp = int(time.time())
        backup_path = Path(f"{path}.backup.{stamp}")
        # Never overwrite an earlier backup taken within the same second.
        while backup_path.exists():
            stamp += 1
            backup_path = Path(f"{path}.backup.{stamp}")
        shutil.copy2(path, backup_path)
        return backup_path

    def list_backups(self, agent: CLIAgent) -> List[BackupFile]:
        """List backup files for an agent, most recent first."""
        backups = []
        for config_path_str in agent.config_paths:
            config_path = self._expand(config_path_str)
            if not config_path.parent.exists():
                continue
            prefix = f"{config_path.name}.backup."
            for file in config_path.parent.iterdir():
                if not file.name.startswith(prefix):
                    continue
                try:
                    timestamp = datetime.fromtimestamp(float(file.name[len(prefix):]))
                except ValueError:
                    continue
                backups.append(BackupFile(path=str(file), timestamp=timestamp, agent=agent))

        backups.sort(key=lambda b: b.timestamp, reverse=True)
        return backups

    def restore_from_backup(self, backup: BackupFile) -> Path:
        """Restore a backup over its original file, backing up the current one first."""
        backup_path = Path(backup.path)
        original_path = Path(re.sub(r"\.backup\.\d+(\.\d+)?$", "", backup.path))
        if original_path == backup_path:
            raise ConfigurationError(f"Not a backup file: {backup.path}")

        try:
            if original_path.exists():
                self._backup(original_path)
            shutil.copy2(backup_path, original_path)
        except OSError as e:
            raise ConfigurationError(f"Cannot restore {backup.path}: {e}") from e
        return original_path

    # ------------------------------------------------------------------
    # Proxy calls
    # ------------------------------------------------------------------

    async def _get_models(self, proxy_url: str, api_key: str) -> tuple[int, Any]:
        url = f"{proxy_url.rstrip('/')}/models"
        headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}

        async def call(session: aiohttp.ClientSession):
            async with session.get(url, headers=headers, timeout=self._timeout) as response:
                if response.status != 200:
                    return response.status, None
                return response.status, await response.json(content_type=None)

        if self._session is not None:
            return await call(self._session)
        async with aiohttp.ClientSession() as session:
            return await call(session)

    async def fetch_available_models(self, proxy_url: str, api_key: str) -> List[AvailableModel]:
        """Models the proxy advertises; empty on any failure."""
        try:
            status, data = await self._get_models(proxy_url, api_key)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[AgentConfig] Could not fetch models from {proxy_url}: {e}")
            return []

        if status != 200 or not isinstance(data, dict):
            logger.warning(f"[AgentConfig] Model list request returned status {status}")
            return []

        models = []
        for entry in data.get("data") or []:
            if isinstance(entry, dict) and entry.get("id"):
                models.append(AvailableModel(name=str(entry["id"]), owned_by=entry.get("owned_by")))
        logger.debug(f"[AgentConfig] Proxy advertises {len(models)} model(s)")
        return models

    async def test_connection(self, agent: CLIAgent, config: AgentConfiguration) -> ConnectionTestResult:
        """Probe the proxy with the configuration's key."""
        started = time.monotonic()
        try:
            status, data = await self._get_models(config.proxy_url, config.api_key)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            return ConnectionTestResult(success=False, message=f"Cannot reach proxy: {e}")
        latency_ms = int((time.monotonic() - started) * 1000)

        if status == 401:
            return ConnectionTestResult(success=False, message="Invalid API key", latency_ms=latency_ms)
        if status != 200:
            return ConnectionTestResult(
                success=False, message=f"Proxy returned HTTP {status}", latency_ms=latency_ms
            )

        entries = data.get("data") if isinstance(data, dict) else None
        ids = [e.get("id") for e in entries or [] if isinstance(e, dict) and e.get("id")]
        wanted = config.model_slots[ModelSlot.PRIMARY]
        responded = wanted if wanted in ids else (ids[0] if ids else None)
        return ConnectionTestResult(
            success=True,
            message=f"Connected to CLIProxyAPI for {agent.display_name} ({len(ids)} models available)",
            latency_ms=latency_ms,
            model_responded=responded,
        )
