"""
Base quota fetcher class.

WORKFLOW OVERVIEW:
==================
A quota fetcher turns stored credentials into normalized quota snapshots.
Each provider has its own fetcher class inheriting from BaseQuotaFetcher.

WORKFLOW:
1. The caller creates a fetcher (optionally injecting an aiohttp session)
2. fetch_all_quotas() scans the auth directory for the provider's files
3. For each account, the fetcher calls the provider API independently
4. Responses are normalized into ModelQuota entries inside a QuotaSnapshot
5. Accounts that fail are left out of the result map; scan_quotas() also
   reports them with the exception that caused the skip

DATA STRUCTURES:
- ModelQuota: remaining percentage for one usage window
- QuotaSnapshot: all windows for one account, or a forbidden marker
- QuotaScanResult: per-account snapshots plus skipped accounts
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List, Union


@dataclass(frozen=True)
class ModelQuota:
    """
    Remaining quota for one usage window.

    Fields:
        name: Window name (e.g., "5-hour", "weekly")
        percentage: Remaining percentage, 0-100
        reset_time: ISO timestamp string of the next reset, empty if unknown
    """
    name: str
    percentage: float
    reset_time: str = ""


@dataclass
class QuotaSnapshot:
    """
    Quota data for one account.

    A forbidden snapshot (valid token, no entitlement) never carries models.
    """
    models: List[ModelQuota] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_forbidden: bool = False

    def __post_init__(self):
        if self.is_forbidden and self.models:
            raise ValueError("A forbidden quota snapshot cannot carry models")

    @classmethod
    def forbidden(cls) -> "QuotaSnapshot":
        return cls(models=[], is_forbidden=True)

    def to_dict(self) -> dict:
        return {
            "models": [
                {"name": m.name, "percentage": m.percentage, "reset_time": m.reset_time}
                for m in self.models
            ],
            "last_updated": self.last_updated.isoformat(),
            "is_forbidden": self.is_forbidden,
        }


@dataclass
class QuotaScanResult:
    """Snapshots keyed by account, plus the accounts that were skipped."""
    quotas: Dict[str, QuotaSnapshot] = field(default_factory=dict)
    skipped: Dict[str, Exception] = field(default_factory=dict)


class BaseQuotaFetcher(ABC):
    """
    Base class for quota fetchers.

    Subclasses must implement:
    - fetch_quota(access_token): one API call for one account
    - scan_quotas(directory): fetch every account found in a directory

    fetch_all_quotas() and fetch_as_provider_quota() are built on scan_quotas().
    """

    @abstractmethod
    async def fetch_quota(self, access_token: str) -> QuotaSnapshot:
        """Fetch quota for one account identified by its access token."""
        pass

    @abstractmethod
    async def scan_quotas(self, directory: Optional[Union[str, Path]] = None) -> QuotaScanResult:
        """Fetch quotas for all accounts in a directory, recording skipped ones."""
        pass

    async def fetch_all_quotas(self, directory: Optional[Union[str, Path]] = None) -> Dict[str, QuotaSnapshot]:
        """
        Fetch quotas for all accounts.

        Failed accounts are omitted. Use scan_quotas() to find out why.

        Returns:
            Dictionary mapping account_key -> QuotaSnapshot
        """
        result = await self.scan_quotas(directory)
        return result.quotas

    async def fetch_as_provider_quota(self) -> Dict[str, QuotaSnapshot]:
        """Fetch quotas from the default location."""
        return await self.fetch_all_quotas()
