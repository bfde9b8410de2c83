"""Shared Strava API client utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urljoin

import requests
import structlog

from . import STRAVA_API_BASE
from .rate_limit import RateLimitTracker

logger = structlog.get_logger(__name__)

ATHLETE_PATH = "athlete"
DEFAULT_TIMEOUT = 60


class StravaAPIError(RuntimeError):
    """Raised when Strava API interactions fail."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StravaRateLimitError(StravaAPIError):
    """Raised when Strava answers 429 Too Many Requests."""


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of the authenticated probe used to validate a token."""

    ok: bool
    status_code: Optional[int] = None
    athlete: Optional[str] = None
    message: Optional[str] = None


class StravaAPIClient:
    """Base class that sends authorized requests and records rate limits."""

    def __init__(
        self,
        access_token: str,
        *,
        session: Optional[requests.Session] = None,
        rate_limits: Optional[RateLimitTracker] = None,
        api_base: str = STRAVA_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.access_token = access_token
        self.session = session or requests.Session()
        self.rate_limits = rate_limits or RateLimitTracker()
        self.api_base = api_base.rstrip("/") + "/"
        self.timeout = timeout

    def url(self, path: str) -> str:
        return urljoin(self.api_base, path.lstrip("/"))

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Perform an authorized HTTP request and raise on error statuses."""
        response = self._send(
            method,
            url,
            params=params,
            data=data,
            headers=headers,
            **kwargs,
        )

        if response.status_code == 429:
            logger.warning(
                "strava_rate_limited",
                url=url,
                status=self.rate_limits.status(),
            )
            raise StravaRateLimitError(
                f"Strava rate limit exceeded ({self.rate_limits.status()})",
                status_code=429,
            )

        if response.status_code >= 400:
            raise StravaAPIError(
                f"Strava API call failed with {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        return response

    def probe(self) -> ProbeResult:
        """Check the token against ``GET /athlete`` without raising."""
        try:
            response = self._send("GET", self.url(ATHLETE_PATH))
        except requests.RequestException as exc:
            logger.warning("probe_network_error", error=str(exc))
            return ProbeResult(ok=False, message=f"Network error: {exc}")

        status_code = response.status_code
        if status_code == 429:
            return ProbeResult(
                ok=False,
                status_code=status_code,
                message=f"Rate limit exceeded ({self.rate_limits.status()})",
            )
        if status_code == 401:
            return ProbeResult(
                ok=False,
                status_code=status_code,
                message="Unauthorized - invalid or expired access token",
            )
        if status_code >= 400:
            return ProbeResult(
                ok=False,
                status_code=status_code,
                message=f"API error ({status_code}): {response.text}",
            )

        try:
            athlete = _athlete_name(response.json())
        except ValueError:
            athlete = None
        return ProbeResult(ok=True, status_code=status_code, athlete=athlete)

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> requests.Response:
        merged_headers = {"Accept": "application/json"}
        if headers:
            merged_headers.update(headers)
        merged_headers["Authorization"] = f"Bearer {self.access_token}"
        kwargs.setdefault("timeout", self.timeout)

        response = self.session.request(method, url, headers=merged_headers, **kwargs)
        self.rate_limits.observe(getattr(response, "headers", None))
        return response


def _athlete_name(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    parts = [payload.get("firstname"), payload.get("lastname")]
    name = " ".join(str(part) for part in parts if part)
    return name or None


def _human_readable_duration(seconds: float) -> str:
    """Return a zero-padded HH:MM:SS string for the provided seconds value."""
    total_seconds = max(0, int(math.ceil(seconds)))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
