"""Quota fetchers for AI providers."""

from .base import BaseQuotaFetcher, ModelQuota, QuotaSnapshot, QuotaScanResult
from .claude import ClaudeCodeQuotaFetcher
from .errors import (
    ClaudeQuotaError,
    UnauthorizedError,
    HTTPStatusError,
    QuotaDecodeError,
    CredentialFileError,
)
from .windows import normalize_window, normalize_usage

__all__ = [
    "BaseQuotaFetcher",
    "ModelQuota",
    "QuotaSnapshot",
    "QuotaScanResult",
    "ClaudeCodeQuotaFetcher",
    "ClaudeQuotaError",
    "UnauthorizedError",
    "HTTPStatusError",
    "QuotaDecodeError",
    "CredentialFileError",
    "normalize_window",
    "normalize_usage",
]
