"""Tests for credential file parsing and expiry."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agentgate.models.auth import ClaudeAuthFile, load_auth_file, parse_expiry

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _auth(expired: str | None) -> ClaudeAuthFile:
    return ClaudeAuthFile(access_token="token", expired=expired)


@pytest.mark.parametrize("expired", [None, "", "   ", "tomorrow", "2025-06-01T13:00:00", "2025/06/01 13:00"])
def test_missing_or_unparsable_expiry_counts_as_expired(expired: str | None) -> None:
    assert _auth(expired).is_expired_at(NOW) is True


@pytest.mark.parametrize(
    "expired",
    [
        "2025-06-01T12:30:00.123456+00:00",
        "2025-06-01T12:30:00Z",
        "2025-06-01T14:30:00+02:00",
        "2025-06-01T12:00:01.5Z",
    ],
)
def test_future_expiry_is_not_expired(expired: str) -> None:
    assert _auth(expired).is_expired_at(NOW) is False


@pytest.mark.parametrize(
    "expired",
    [
        "2025-06-01T11:59:59Z",
        "2025-06-01T12:00:00Z",  # exactly now is not strictly in the future
        "2025-06-01T13:00:00+02:00",
    ],
)
def test_past_or_current_expiry_is_expired(expired: str) -> None:
    assert _auth(expired).is_expired_at(NOW) is True


def test_is_expired_uses_current_time() -> None:
    assert _auth("2999-01-01T00:00:00Z").is_expired is False
    assert _auth("2000-01-01T00:00:00Z").is_expired is True


def test_parse_expiry_prefers_fractional_format() -> None:
    parsed = parse_expiry("2025-06-01T12:00:00.250000+00:00")
    assert parsed == datetime(2025, 6, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)


def test_load_auth_file(tmp_path: Path) -> None:
    path = tmp_path / "claude-alice.json"
    path.write_text(json.dumps({
        "access_token": "sk-ant-oat-abc",
        "refresh_token": "refresh",
        "email": "alice@example.com",
        "expired": "2030-01-01T00:00:00Z",
        "type": "claude",
        "unexpected": "field",
    }))

    auth = load_auth_file(path)

    assert auth.access_token == "sk-ant-oat-abc"
    assert auth.email == "alice@example.com"
    assert auth.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_load_auth_file_requires_access_token(tmp_path: Path) -> None:
    path = tmp_path / "claude-bob.json"
    path.write_text(json.dumps({"email": "bob@example.com"}))

    with pytest.raises(ValueError, match="Invalid credential file"):
        load_auth_file(path)


def test_load_auth_file_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "claude-bob.json"
    path.write_text("{")

    with pytest.raises(ValueError, match="Invalid JSON"):
        load_auth_file(path)


def test_load_auth_file_missing_raises_oserror(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        load_auth_file(tmp_path / "missing.json")
