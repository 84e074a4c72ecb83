"""Normalization of provider usage windows into ModelQuota entries."""

from typing import List, Optional

from .base import ModelQuota
from ...models.usage import ClaudeUsageResponse, UsageWindow

# Response field -> display name, in emission order.
CLAUDE_USAGE_WINDOWS = (
    ("five_hour", "5-hour"),
    ("seven_day", "weekly"),
    ("seven_day_opus", "opus-weekly"),
    ("seven_day_sonnet", "sonnet-weekly"),
)


def normalize_window(name: str, window: UsageWindow) -> ModelQuota:
    """
    Convert one usage window into a remaining-percentage quota.

    Missing utilization is treated as 0 (fully available), not as unknown.
    The result is clamped to 0-100.
    """
    utilization = window.utilization if window.utilization is not None else 0.0
    remaining = max(0.0, min(100.0, 100.0 - float(utilization)))
    return ModelQuota(
        name=name,
        percentage=remaining,
        reset_time=window.resets_at or "",
    )


def normalize_usage(response: ClaudeUsageResponse) -> List[ModelQuota]:
    """Normalize every window present in the response, in fixed order."""
    models = []
    for field_name, display_name in CLAUDE_USAGE_WINDOWS:
        window: Optional[UsageWindow] = getattr(response, field_name)
        if window is not None:
            models.append(normalize_window(display_name, window))
    return models
