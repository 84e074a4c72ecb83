"""Claude Code quota fetcher."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Union

import aiohttp
from pydantic import ValidationError

from .base import BaseQuotaFetcher, QuotaSnapshot, QuotaScanResult
from .errors import ClaudeQuotaError
from .windows import normalize_usage
from ...models.auth import load_auth_file
from ...models.proxy import DEFAULT_AUTH_DIR
from ...models.usage import ClaudeUsageResponse

logger = logging.getLogger(__name__)


class ClaudeCodeQuotaFetcher(BaseQuotaFetcher):
    """
    Fetches quota data from the Claude Code OAuth usage API.

    The fetcher owns one aiohttp session and no other mutable state, so a
    single instance can serve concurrent account fetches. Use it as an
    async context manager, or call close() when done.
    """

    USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
    USER_AGENT = "claude-code/2.0.76"
    OAUTH_BETA = "oauth-2025-04-20"  # required by the OAuth API gateway

    AUTH_FILE_PREFIX = "claude-"
    AUTH_FILE_SUFFIX = ".json"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        auth_dir: Union[str, Path] = DEFAULT_AUTH_DIR,
        usage_url: str = USAGE_URL,
        max_concurrency: int = 4,
        timeout: float = 15,
    ):
        """
        Initialize the fetcher.

        Args:
            session: Shared aiohttp session. If omitted, one is created lazily
                     and closed by close().
            auth_dir: Directory holding claude-*.json credential files
            usage_url: Usage endpoint (overridable for testing)
            max_concurrency: Upper bound on parallel account fetches
            timeout: Total timeout in seconds for a single request
        """
        self._session = session
        self._owns_session = session is None
        self.auth_dir = Path(auth_dir).expanduser()
        self.usage_url = usage_url
        self.max_concurrency = max(1, max_concurrency)
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "ClaudeCodeQuotaFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this fetcher created it."""
        if not self._owns_session or self._session is None:
            return
        if not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "User-Agent": self.USER_AGENT,
            "Content-Type": "application/json",
            "anthropic-beta": self.OAUTH_BETA,
        }

    async def fetch_quota(self, access_token: str) -> QuotaSnapshot:
        """
        Fetch quota for one account.

        Raises:
            UnauthorizedError: the token was rejected (401)
            HTTPStatusError: any other non-2xx status except 403
            QuotaDecodeError: the body is not a valid usage response
        """
        session = self._get_session()
        async with session.get(
            self.usage_url,
            headers=self._headers(access_token),
            timeout=self._timeout,
        ) as response:
            if response.status == 401:
                raise ClaudeQuotaError.unauthorized()

            if response.status == 403:
                # Valid token without entitlement; not an error.
                logger.info("[ClaudeCodeQuotaFetcher] Usage endpoint returned 403, marking account forbidden")
                return QuotaSnapshot.forbidden()

            if not 200 <= response.status < 300:
                raise ClaudeQuotaError.http_error(response.status)

            body = await response.read()

        usage = self._decode(body)
        models = normalize_usage(usage)
        logger.debug(f"[ClaudeCodeQuotaFetcher] Parsed {len(models)} usage window(s)")
        return QuotaSnapshot(models=models)

    def _decode(self, body: bytes) -> ClaudeUsageResponse:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise ClaudeQuotaError.decode_error(str(e)) from e
        try:
            return ClaudeUsageResponse.model_validate(data)
        except ValidationError as e:
            raise ClaudeQuotaError.decode_error(f"{e.error_count()} validation error(s)") from e

    async def fetch_quota_for_auth_file(self, path: Union[str, Path]) -> QuotaSnapshot:
        """
        Fetch quota using the credential file at ``path``.

        Expired tokens are used as-is; refreshing them is not supported.

        Raises:
            CredentialFileError: the file cannot be read or is invalid
            plus everything fetch_quota() raises
        """
        try:
            auth_file = load_auth_file(path)
        except (OSError, ValueError) as e:
            raise ClaudeQuotaError.credential_error(str(path), str(e)) from e

        if auth_file.is_expired:
            # TODO: refresh through the OAuth token endpoint once the proxy exposes refresh tokens.
            logger.warning(f"[ClaudeCodeQuotaFetcher] Token in {Path(path).name} looks expired, using it anyway")

        return await self.fetch_quota(auth_file.access_token)

    def account_id_for(self, filename: str) -> Optional[str]:
        """Account identifier for a credential filename, or None if it is not one."""
        prefix, suffix = self.AUTH_FILE_PREFIX, self.AUTH_FILE_SUFFIX
        if not (filename.startswith(prefix) and filename.endswith(suffix)):
            return None
        account_id = filename[len(prefix):-len(suffix)]
        return account_id or None

    def _find_auth_files(self, directory: Path) -> dict[str, Path]:
        accounts = {}
        for file_path in sorted(directory.iterdir()):
            if not file_path.is_file():
                continue
            account_id = self.account_id_for(file_path.name)
            if account_id:
                accounts[account_id] = file_path
        return accounts

    async def scan_quotas(self, directory: Optional[Union[str, Path]] = None) -> QuotaScanResult:
        """
        Fetch quotas for every claude-*.json file in ``directory``.

        Accounts are fetched concurrently (bounded by max_concurrency).
        A failing account never affects the others: it is recorded in
        ``skipped`` and left out of ``quotas``.
        """
        directory = Path(directory).expanduser() if directory else self.auth_dir
        result = QuotaScanResult()

        if not directory.is_dir():
            logger.debug(f"[ClaudeCodeQuotaFetcher] Auth directory {directory} does not exist")
            return result

        try:
            accounts = self._find_auth_files(directory)
        except OSError as e:
            logger.warning(f"[ClaudeCodeQuotaFetcher] Cannot list {directory}: {e}")
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch_one(path: Path) -> QuotaSnapshot:
            async with semaphore:
                return await self.fetch_quota_for_auth_file(path)

        outcomes = await asyncio.gather(
            *(fetch_one(path) for path in accounts.values()),
            return_exceptions=True,
        )

        for account_id, outcome in zip(accounts, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"[ClaudeCodeQuotaFetcher] Skipping {account_id}: {outcome}")
                result.skipped[account_id] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.quotas[account_id] = outcome

        logger.info(
            f"[ClaudeCodeQuotaFetcher] Fetched {len(result.quotas)}/{len(accounts)} account(s) from {directory}"
        )
        return result
