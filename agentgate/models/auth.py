"""Authentication models for OAuth credential files."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

# Strict form first (fractional seconds), then the same without them.
EXPIRY_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


def parse_expiry(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 expiry timestamp, or return None if it is unusable."""
    if not value or not value.strip():
        return None
    for fmt in EXPIRY_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


class ClaudeAuthFile(BaseModel):
    """
    Credential record stored by the proxy for one Claude account.

    Files live in the proxy auth directory as ``claude-<account>.json``.
    Only ``access_token`` is required; expiry is derived from ``expired``
    and never stored as a flag.
    """
    access_token: str
    email: Optional[str] = None
    expired: Optional[str] = None
    id_token: Optional[str] = None
    last_refresh: Optional[str] = None
    refresh_token: Optional[str] = None
    type: Optional[str] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        return parse_expiry(self.expired)

    def is_expired_at(self, now: datetime) -> bool:
        """Missing or unparsable expiry counts as expired."""
        expires_at = self.expires_at
        if expires_at is None:
            return True
        return not now < expires_at

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(datetime.now(timezone.utc))


def load_auth_file(path: Union[str, Path]) -> ClaudeAuthFile:
    """
    Load one credential file from disk.

    Raises:
        OSError: file cannot be read
        ValueError: content is not JSON or lacks ``access_token``
    """
    raw = Path(path).expanduser().read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e
    try:
        return ClaudeAuthFile.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid credential file {path}: {e.error_count()} error(s)") from e
