"""Tests for settings persistence and proxy config loading."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from agentgate.models.proxy import DEFAULT_AUTH_DIR, DEFAULT_PORT
from agentgate.services.proxy_config import load_proxy_config
from agentgate.utils.settings import CONFIG_KEYS, SettingsManager


def test_settings_defaults(tmp_path: Path) -> None:
    settings = SettingsManager(tmp_path)

    assert settings.get("proxyPort") == 8317
    assert settings.get("configurationMode") == "automatic"
    assert settings.all() == CONFIG_KEYS
    assert not (tmp_path / "settings.json").exists()


def test_settings_persist_with_private_permissions(tmp_path: Path) -> None:
    SettingsManager(tmp_path).set("quotaConcurrency", 8)

    settings_file = tmp_path / "settings.json"
    assert json.loads(settings_file.read_text()) == {"quotaConcurrency": 8}
    assert stat.S_IMODE(os.stat(settings_file).st_mode) == 0o600
    assert SettingsManager(tmp_path).get("quotaConcurrency") == 8


def test_settings_delete_restores_default(tmp_path: Path) -> None:
    settings = SettingsManager(tmp_path)
    settings.set("requestTimeout", 30)
    settings.delete("requestTimeout")

    assert SettingsManager(tmp_path).get("requestTimeout") == 15


def test_unknown_setting_is_rejected(tmp_path: Path) -> None:
    settings = SettingsManager(tmp_path)
    with pytest.raises(KeyError):
        settings.get("proxyPrt")
    with pytest.raises(KeyError):
        settings.set("proxyPrt", 1)


def test_corrupt_settings_file_is_ignored(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{oops")
    assert SettingsManager(tmp_path).get("proxyPort") == 8317


def test_load_proxy_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "port: 9000\n"
        "auth-dir: ~/custom-auth\n"
        "api-keys:\n"
        "  - sk-first\n"
        "  - sk-second\n"
        "debug: true\n"
        "routing:\n"
        "  strategy: round-robin\n"
    )

    config = load_proxy_config(config_path)

    assert config.port == 9000
    assert config.auth_dir == "~/custom-auth"
    assert config.first_api_key == "sk-first"
    assert config.base_url == "http://127.0.0.1:9000"
    assert config.debug is True


def test_missing_proxy_config_uses_defaults(tmp_path: Path) -> None:
    config = load_proxy_config(tmp_path / "missing.yaml")

    assert config.port == DEFAULT_PORT
    assert config.auth_dir == DEFAULT_AUTH_DIR
    assert config.first_api_key is None


@pytest.mark.parametrize("content", ["port: [unclosed", "- just\n- a list\n", "port: not-a-number\n"])
def test_invalid_proxy_config_raises_value_error(tmp_path: Path, content: str) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content)

    with pytest.raises(ValueError):
        load_proxy_config(config_path)
