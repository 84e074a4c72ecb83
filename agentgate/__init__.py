"""agentgate - route CLI coding agents through a local CLIProxyAPI."""

__version__ = "0.1.0"
