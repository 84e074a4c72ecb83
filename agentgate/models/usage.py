"""Usage endpoint response models."""

from typing import Optional
from pydantic import BaseModel, Field


class UsageWindow(BaseModel):
    """One rolling usage window as reported by the provider."""
    utilization: Optional[float] = None
    resets_at: Optional[str] = None


class ExtraUsage(BaseModel):
    """Pay-as-you-go usage block. Decoded but not surfaced as quota."""
    is_enabled: Optional[bool] = None
    monthly_limit: Optional[int] = None
    used_credits: Optional[float] = None
    utilization: Optional[float] = None


class ClaudeUsageResponse(BaseModel):
    """Response body of the Claude OAuth usage API."""
    five_hour: Optional[UsageWindow] = None
    seven_day: Optional[UsageWindow] = None
    seven_day_oauth_apps: Optional[UsageWindow] = None
    seven_day_opus: Optional[UsageWindow] = None
    seven_day_sonnet: Optional[UsageWindow] = None
    iguana_necktie: Optional[UsageWindow] = None
    extra_usage: Optional[ExtraUsage] = Field(default=None)
