"""Settings persistence manager.

Keys are persisted on set() and loaded from settings.json when the
SettingsManager is created. Unknown keys are rejected so typos surface.
"""
import json
import logging
import os
import platform
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Registry of persisted config keys and their defaults
CONFIG_KEYS = {
    # Proxy
    "proxyPort": 8317,
    "proxyConfigPath": None,
    # Quota
    "authDir": "~/.cli-proxy-api",
    "quotaConcurrency": 4,
    "requestTimeout": 15,
    # Agent setup
    "configurationMode": "automatic",
    "configStorageOption": "json",
}


def default_config_dir(app_name: str = "agentgate") -> Path:
    """Platform-specific directory holding settings.json."""
    system = platform.system()
    if system == "Darwin":  # macOS
        return Path.home() / "Library" / "Application Support" / app_name
    elif system == "Windows":
        return Path.home() / "AppData" / "Local" / app_name
    return Path.home() / ".config" / app_name


class SettingsManager:
    """Manages application settings persistence."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.settings_file = self.config_dir / "settings.json"
        self._settings: dict[str, Any] = {}
        self._load()

    def _load(self):
        if not self.settings_file.exists():
            self._settings = {}
            return
        try:
            with open(self.settings_file, "r") as f:
                data = json.load(f)
            self._settings = data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.warning(f"[Settings] Ignoring unreadable {self.settings_file}: {e}")
            self._settings = {}

    def _save(self):
        self.config_dir.mkdir(parents=True, exist_ok=True)
        # Restrictive permissions; settings may point at credentials
        old_umask = os.umask(0o077)
        try:
            with open(self.settings_file, "w") as f:
                json.dump(self._settings, f, indent=2)
            os.chmod(self.settings_file, 0o600)
        finally:
            os.umask(old_umask)

    @staticmethod
    def _check_key(key: str):
        if key not in CONFIG_KEYS:
            raise KeyError(f"Unknown setting: {key}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value, falling back to the registered default."""
        self._check_key(key)
        if key in self._settings:
            return self._settings[key]
        return default if default is not None else CONFIG_KEYS[key]

    def set(self, key: str, value: Any):
        self._check_key(key)
        self._settings[key] = value
        self._save()

    def delete(self, key: str):
        self._check_key(key)
        if key in self._settings:
            del self._settings[key]
            self._save()

    def all(self) -> dict[str, Any]:
        """Effective settings: stored values over defaults."""
        return {**CONFIG_KEYS, **self._settings}
