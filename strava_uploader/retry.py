"""Bounded fixed-delay retries around the upload state machine."""

from __future__ import annotations

import time
from typing import Callable, Optional

import requests
import structlog

from .client import StravaAPIError, StravaRateLimitError
from .upload import (
    Printer,
    Submission,
    UploadError,
    UploadResult,
    UploadStateMachine,
    _noop_printer,
)

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS = (UploadError, StravaAPIError, requests.RequestException, OSError)


class RetryController:
    """Run the state machine up to ``max_attempts`` times with a fixed delay."""

    def __init__(
        self,
        machine: UploadStateMachine,
        *,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        sleep_func: Optional[Callable[[float], None]] = None,
        printer: Optional[Printer] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.machine = machine
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep_func or time.sleep
        self._print = printer or _noop_printer
        self.last_error: Optional[BaseException] = None

    def attempt(self, submission: Submission) -> Optional[UploadResult]:
        """Return the successful result, or None once every attempt failed."""
        self.last_error = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                self._print(f"  Retry attempt {attempt}/{self.max_attempts}...")
                self._sleep(self.retry_delay)

            try:
                return self.machine.run(submission)
            except RETRYABLE_ERRORS as exc:
                self.last_error = exc
                logger.warning(
                    "upload_attempt_failed",
                    file=submission.name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(exc),
                )
                self._print(f"  Attempt {attempt} failed: {exc}")
                if isinstance(exc, StravaRateLimitError):
                    self._print("  Rate limit exceeded; not retrying.")
                    return None

        logger.error(
            "upload_attempts_exhausted",
            file=submission.name,
            attempts=self.max_attempts,
        )
        self._print("  All retry attempts exhausted.")
        return None
