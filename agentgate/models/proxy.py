"""Proxy-related models."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PORT = 8317
DEFAULT_AUTH_DIR = "~/.cli-proxy-api"


class ProxyConfig(BaseModel):
    """Subset of the CLIProxyAPI config.yaml the engine needs."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host: str = ""
    port: int = DEFAULT_PORT
    auth_dir: str = Field(DEFAULT_AUTH_DIR, alias="auth-dir")
    proxy_url: str = Field("", alias="proxy-url")
    api_keys: list[str] = Field(default_factory=list, alias="api-keys")
    debug: bool = False

    @property
    def base_url(self) -> str:
        host = self.host or "127.0.0.1"
        return f"http://{host}:{self.port}"

    @property
    def first_api_key(self) -> Optional[str]:
        return self.api_keys[0] if self.api_keys else None
