"""Errors raised while fetching Claude quota."""

from dataclasses import dataclass
from typing import Optional


@dataclass(eq=False)
class ClaudeQuotaError(Exception):
    """
    Quota-fetch errors.

    Subclasses let callers tell apart a rejected token, an unexpected
    status, a malformed body and an unreadable credential file.
    """
    message: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        return self.message

    @classmethod
    def unauthorized(cls) -> "UnauthorizedError":
        return UnauthorizedError("Unauthorized - token may be expired", 401)

    @classmethod
    def http_error(cls, status_code: int) -> "HTTPStatusError":
        return HTTPStatusError(f"HTTP error: {status_code}", status_code)

    @classmethod
    def decode_error(cls, detail: str) -> "QuotaDecodeError":
        return QuotaDecodeError(f"Invalid response from server: {detail}")

    @classmethod
    def credential_error(cls, path: str, detail: str) -> "CredentialFileError":
        return CredentialFileError(f"Cannot read credential file {path}: {detail}")


class UnauthorizedError(ClaudeQuotaError):
    """Token rejected (401). Re-authenticate; not retried."""


class HTTPStatusError(ClaudeQuotaError):
    """Any non-success status other than 401 and 403."""


class QuotaDecodeError(ClaudeQuotaError):
    """Usage response body did not match the expected shape."""


class CredentialFileError(ClaudeQuotaError):
    """Credential file missing, unreadable or invalid."""
