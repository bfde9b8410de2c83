"""Track the Strava API rate limit budget from response headers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

LIMIT_HEADER = "X-RateLimit-Limit"
USAGE_HEADER = "X-RateLimit-Usage"

NEAR_LIMIT_RATIO = 0.8


@dataclass
class RateLimitWindow:
    """Usage and limit for a single accounting window."""

    usage: int = 0
    limit: int = 0

    @property
    def known(self) -> bool:
        return self.limit > 0

    @property
    def ratio(self) -> float:
        if not self.known:
            return 0.0
        return self.usage / self.limit

    def describe(self) -> str:
        return f"{self.usage}/{self.limit}"


class RateLimitTracker:
    """Remember the most recent short (15 minute) and long (daily) budgets.

    The tracker is advisory. It starts with every counter at zero, and until
    Strava reports a limit neither predicate ever reports trouble.
    """

    def __init__(self, near_limit_ratio: float = NEAR_LIMIT_RATIO) -> None:
        self.near_limit_ratio = near_limit_ratio
        self.short = RateLimitWindow()
        self.long = RateLimitWindow()
        self.last_refresh: Optional[datetime] = None

    def observe(self, headers: Optional[Mapping[str, str]]) -> None:
        """Update counters from the rate limit headers of a response."""
        if not headers:
            return

        limits = _parse_pair(_header(headers, LIMIT_HEADER))
        usage = _parse_pair(_header(headers, USAGE_HEADER))
        if limits is None and usage is None:
            return

        if limits is not None:
            self.short.limit, self.long.limit = limits
        if usage is not None:
            self.short.usage, self.long.usage = usage
        self.last_refresh = datetime.now(timezone.utc)
        logger.debug(
            "rate_limit_observed",
            short=self.short.describe(),
            long=self.long.describe(),
        )

    def is_near_limit(self) -> bool:
        return any(
            window.ratio >= self.near_limit_ratio for window in self._known_windows()
        )

    def is_exceeded(self) -> bool:
        return any(window.usage >= window.limit for window in self._known_windows())

    def status(self) -> str:
        if not self.short.known or not self.long.known:
            return "Rate limits: Unknown"
        return f"15-min: {self.short.describe()} | Daily: {self.long.describe()}"

    def warning_lines(self) -> List[str]:
        """Return a human readable warning, or nothing when the budget is fine."""
        if not self.is_near_limit():
            return []
        return [
            "Rate Limit Warning:",
            f"  15-min: {self.short.describe()} ({self.short.ratio * 100:.1f}%)",
            f"  Daily: {self.long.describe()} ({self.long.ratio * 100:.1f}%)",
            "  Consider slowing down to avoid being rate limited.",
        ]

    def _known_windows(self) -> List[RateLimitWindow]:
        return [window for window in (self.short, self.long) if window.known]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _parse_pair(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    parts = [part.strip() for part in str(value).split(",")]
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None
