"""Shell profile management service."""

import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from ..models.agents import CLIAgent

logger = logging.getLogger(__name__)

EXPORT_RE = re.compile(r"^\s*export\s+([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


@dataclass(eq=False)
class ShellProfileError(Exception):
    """Shell profile could not be read or written."""
    message: str

    def __str__(self) -> str:
        return self.message


def to_fish(configuration: str) -> str:
    """Rewrite POSIX `export NAME=value` lines as fish `set -gx NAME value`."""
    lines = []
    for line in configuration.splitlines():
        match = EXPORT_RE.match(line)
        lines.append(f"set -gx {match.group(1)} {match.group(2)}" if match else line)
    return "\n".join(lines)


class ShellType(str, Enum):
    """Shell types."""
    ZSH = "zsh"
    BASH = "bash"
    FISH = "fish"

    def profile_path(self, home: Optional[Path] = None) -> Path:
        """Init file for this shell."""
        home = home or Path.home()
        if self == ShellType.BASH:
            return home / ".bashrc"
        if self == ShellType.FISH:
            return home / ".config" / "fish" / "config.fish"
        return home / ".zshrc"


class ShellProfileManager:
    """Inserts, replaces and removes per-agent export blocks in shell init files."""

    def __init__(self, home: Optional[Path] = None):
        self.home = Path(home) if home else Path.home()

    def detect_shell(self) -> ShellType:
        """Detect current shell from $SHELL, defaulting to zsh."""
        shell = os.environ.get("SHELL", "")
        if "zsh" in shell:
            return ShellType.ZSH
        if "bash" in shell:
            return ShellType.BASH
        if "fish" in shell:
            return ShellType.FISH
        return ShellType.ZSH

    def get_profile_path(self, shell: ShellType) -> Path:
        return shell.profile_path(self.home)

    @staticmethod
    def _markers(agent: CLIAgent) -> Tuple[str, str]:
        name = agent.display_name
        return (
            f"# CLIProxyAPI Configuration for {name}",
            f"# End CLIProxyAPI Configuration for {name}",
        )

    @staticmethod
    def _strip_block(content: str, marker: str, end_marker: str) -> str:
        """Remove the marked block and the newlines that framed it."""
        start_idx = content.find(marker)
        end_idx = content.find(end_marker, start_idx)
        if start_idx < 0 or end_idx < 0:
            return content
        end_idx += len(end_marker)
        if start_idx > 0 and content[start_idx - 1] == "\n":
            start_idx -= 1
        if end_idx < len(content) and content[end_idx] == "\n":
            end_idx += 1
        return content[:start_idx] + content[end_idx:]

    def _read(self, path: Path) -> str:
        if not path.exists():
            return ""
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ShellProfileError(f"Cannot read {path}: {e}") from e

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ShellProfileError(f"Cannot write {path}: {e}") from e

    def add_to_profile(self, shell: ShellType, configuration: str, agent: CLIAgent) -> Path:
        """
        Insert or replace the configuration block for ``agent``.

        Calling this twice with the same configuration leaves a single block.

        Returns:
            Path of the profile that was written
        """
        profile_path = self.get_profile_path(shell)
        marker, end_marker = self._markers(agent)

        if shell == ShellType.FISH:
            configuration = to_fish(configuration)

        content = self._strip_block(self._read(profile_path), marker, end_marker)
        content += f"\n{marker}\n{configuration.rstrip()}\n{end_marker}\n"

        self._write(profile_path, content)
        logger.info(f"[ShellProfile] Updated {agent.display_name} block in {profile_path}")
        return profile_path

    def remove_from_profile(self, shell: ShellType, agent: CLIAgent) -> None:
        """Remove the configuration block for ``agent`` if present."""
        profile_path = self.get_profile_path(shell)
        if not profile_path.exists():
            return

        marker, end_marker = self._markers(agent)
        content = self._read(profile_path)
        stripped = self._strip_block(content, marker, end_marker)
        if stripped != content:
            self._write(profile_path, stripped)
            logger.info(f"[ShellProfile] Removed {agent.display_name} block from {profile_path}")

    def is_configured_in_profile(self, shell: ShellType, agent: CLIAgent) -> bool:
        marker, _ = self._markers(agent)
        try:
            return marker in self._read(self.get_profile_path(shell))
        except ShellProfileError:
            return False

    def create_backup(self, shell: ShellType) -> Optional[Path]:
        """Copy the profile next to itself with a timestamp suffix."""
        profile_path = self.get_profile_path(shell)
        if not profile_path.exists():
            return None
        backup_path = Path(f"{profile_path}.backup.{int(time.time())}")
        shutil.copy2(profile_path, backup_path)
        return backup_path
