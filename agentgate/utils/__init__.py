"""Utility functions for agentgate."""

from .settings import SettingsManager

__all__ = [
    "SettingsManager",
]
