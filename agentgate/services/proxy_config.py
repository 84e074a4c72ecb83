"""Reading the CLIProxyAPI config.yaml."""

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from ..models.proxy import DEFAULT_AUTH_DIR, ProxyConfig

logger = logging.getLogger(__name__)


def default_proxy_config_path() -> Path:
    """The proxy's config.yaml next to its credential files."""
    return Path(DEFAULT_AUTH_DIR).expanduser() / "config.yaml"


def load_proxy_config(path: Optional[Union[str, Path]] = None) -> ProxyConfig:
    """
    Load the proxy configuration.

    A missing file yields the defaults (port 8317, ~/.cli-proxy-api).

    Raises:
        ValueError: the file exists but is not a valid proxy config
    """
    config_path = Path(path).expanduser() if path else default_proxy_config_path()
    if not config_path.exists():
        logger.debug(f"[ProxyConfig] {config_path} not found, using defaults")
        return ProxyConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"{config_path} does not contain a mapping")

    try:
        return ProxyConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid proxy config {config_path}: {e.error_count()} error(s)") from e
