"""Agent detection service."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from ..models.agents import CLIAgent

logger = logging.getLogger(__name__)

# Markers that identify a config file already pointing at the local proxy.
PROXY_MARKERS = ("127.0.0.1", "localhost", "cliproxyapi")


@dataclass
class AgentStatus:
    """Detection result for one agent. ``configured`` means it already points at the proxy."""
    agent: CLIAgent
    installed: bool
    configured: bool
    binary_path: Optional[str] = None
    version: Optional[str] = None
    last_configured: Optional[datetime] = None


class AgentDetectionService:
    """Detects installed CLI agents and whether they already route through the proxy."""

    # Install locations checked after $PATH, in order
    SEARCH_DIRS = (
        "/usr/local/bin",
        "/opt/homebrew/bin",
        "/usr/bin",
        "~/.local/bin",
        "~/.cargo/bin",
        "~/.bun/bin",
        "~/.deno/bin",
        "~/.npm-global/bin",
        "~/.opencode/bin",
        "~/.volta/bin",
        "~/.asdf/shims",
        "~/.local/share/mise/shims",
    )
    # Seconds to wait for `<binary> --version`
    VERSION_TIMEOUT = 5

    def __init__(self, home: Optional[Path] = None, cache_ttl: int = 60):
        self.home = Path(home) if home else Path.home()
        self._cache: Optional[list[AgentStatus]] = None
        self._cache_timestamp: Optional[datetime] = None
        self._cache_ttl = cache_ttl
        self._configured_overrides: dict[CLIAgent, datetime] = {}

    async def detect_all_agents(self, force_refresh: bool = False) -> list[AgentStatus]:
        """Detect all agents, serving a cached list when it is still fresh."""
        if not force_refresh and self._cache is not None and self._cache_timestamp:
            age = (datetime.now() - self._cache_timestamp).total_seconds()
            if age < self._cache_ttl:
                logger.debug(f"[AgentDetection] Using cached results ({len(self._cache)} agents)")
                return self._cache

        agents = list(CLIAgent)
        results = await asyncio.gather(
            *(self.detect_agent(agent) for agent in agents),
            return_exceptions=True,
        )

        statuses = []
        for agent, result in zip(agents, results):
            if isinstance(result, Exception):
                logger.warning(f"[AgentDetection] Error detecting {agent.display_name}: {result}")
                statuses.append(AgentStatus(agent=agent, installed=False, configured=False))
            else:
                statuses.append(result)

        statuses.sort(key=lambda s: s.agent.display_name)
        logger.info(
            f"[AgentDetection] Detection complete: "
            f"{sum(1 for s in statuses if s.installed)}/{len(statuses)} installed"
        )

        self._cache = statuses
        self._cache_timestamp = datetime.now()
        return statuses

    def invalidate_cache(self):
        """Force the next detect_all_agents() call to re-scan."""
        self._cache = None
        self._cache_timestamp = None

    async def detect_agent(self, agent: CLIAgent) -> AgentStatus:
        """Detect one agent: binary, version and proxy configuration."""
        loop = asyncio.get_running_loop()
        installed, binary_path = await loop.run_in_executor(None, self._find_binary, agent.binary_names)

        version = None
        configured = False
        if installed and binary_path:
            version = await self._get_version(binary_path)
            configured = await loop.run_in_executor(None, self._check_configuration, agent)

        last_configured = self._configured_overrides.get(agent)
        return AgentStatus(
            agent=agent,
            installed=installed,
            configured=configured or last_configured is not None,
            binary_path=binary_path,
            version=version,
            last_configured=last_configured,
        )

    async def mark_as_configured(self, agent: CLIAgent) -> None:
        """Record that ``agent`` was just configured; cached statuses are updated in place."""
        now = datetime.now()
        self._configured_overrides[agent] = now
        if self._cache is not None:
            self._cache = [
                replace(s, configured=True, last_configured=now) if s.agent == agent else s
                for s in self._cache
            ]
        logger.info(f"[AgentDetection] Marked {agent.display_name} as configured")

    def _expand(self, path: str) -> Path:
        if path.startswith("~"):
            return self.home / path[2:]
        return Path(path)

    def _find_binary(self, names: list[str]) -> Tuple[bool, Optional[str]]:
        """Find binary on PATH or in common install locations."""
        for name in names:
            which_path = shutil.which(name)
            if which_path:
                return True, which_path

            for base_path in self.SEARCH_DIRS:
                binary_path = self._expand(base_path) / name
                if binary_path.exists() and os.access(binary_path, os.X_OK):
                    return True, str(binary_path)

        return False, None

    async def _get_version(self, binary_path: str) -> Optional[str]:
        """First version-looking word of `<binary> --version`."""
        try:
            process = await asyncio.create_subprocess_exec(
                binary_path, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"[AgentDetection] Could not run {binary_path}: {e}")
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.VERSION_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.debug(f"[AgentDetection] Timed out reading version of {binary_path}")
            return None

        if process.returncode != 0:
            return None

        lines = stdout.decode(errors="ignore").strip().split("\n")
        for word in lines[0].split() if lines else []:
            candidate = word.lstrip("v")
            if candidate and candidate[0].isdigit():
                return candidate
        return None

    def _check_configuration(self, agent: CLIAgent) -> bool:
        """An agent is configured if one of its config files mentions the proxy."""
        for config_path in agent.config_paths:
            path = self._expand(config_path)
            if not path.exists():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except OSError:
                continue
            if any(marker in content for marker in PROXY_MARKERS):
                return True
        return False
