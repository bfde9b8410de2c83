"""Drive a single FIT file through submission and processing on Strava."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

import requests
import structlog

from .client import StravaAPIError, _human_readable_duration
from .config import UploadSettings
from .status import (
    STATUS_READY,
    UploadHandle,
    UploadPhase,
    is_duplicate_error,
    is_known_status,
    mentions_error,
    mentions_ready,
)
from .uploads import ActivityType

logger = structlog.get_logger(__name__)

Printer = Callable[[str], None]


class UploadError(RuntimeError):
    """Base class for failures that should be retried."""


class UploadProcessingError(UploadError):
    """Raised when Strava reports a non-duplicate processing error."""


class UploadNotTrackedError(UploadError):
    """Raised when Strava accepted bytes without an identifier to poll."""


class UploadOutcome(str, Enum):
    """Terminal states that count as a successful delivery."""

    READY = "ready"
    DUPLICATE = "duplicate"
    ACCEPTED_UNCONFIRMED = "accepted_unconfirmed"


@dataclass(frozen=True)
class Submission:
    """One attempt to deliver one local file."""

    path: Path
    activity_type: Optional[ActivityType] = None

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class UploadResult:
    outcome: UploadOutcome
    upload_id: Optional[int] = None
    activity_id: Optional[int] = None
    message: Optional[str] = None


class UploadGateway(Protocol):
    def submit(
        self, path: Path, activity_type: Optional[ActivityType] = None
    ) -> UploadHandle:
        ...

    def poll_status(self, upload_id: int) -> Optional[UploadHandle]:
        ...


def _noop_printer(_: str) -> None:
    return None


class UploadStateMachine:
    """Submit a file, classify the answer and poll until a terminal outcome.

    Success outcomes are returned as :class:`UploadResult`. Every failure is
    raised as an :class:`UploadError` (or a transport error from the gateway)
    so the retry controller can decide whether to try again.
    """

    def __init__(
        self,
        gateway: UploadGateway,
        *,
        settings: Optional[UploadSettings] = None,
        sleep_func: Optional[Callable[[float], None]] = None,
        printer: Optional[Printer] = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or UploadSettings()
        self._sleep = sleep_func or time.sleep
        self._print = printer or _noop_printer

    def run(self, submission: Submission) -> UploadResult:
        if submission.activity_type is not None:
            self._print(
                f"  Using configured activity type: {submission.activity_type.value}"
            )
        else:
            self._print("  Activity type will be auto-detected from the FIT file")

        self._print("  Uploading to Strava...")
        handle = self.gateway.submit(submission.path, submission.activity_type)
        self._print(
            f"  Upload ID: {handle.upload_id} - Status: {handle.status or 'Unknown'}"
        )

        if handle.phase is UploadPhase.ERROR:
            return self._resolve_error(
                submission,
                handle,
                default="Upload error (no details provided)",
            )

        if not handle.is_tracked:
            return self._resolve_untracked(submission, handle)

        return self._await_processing(submission, handle.upload_id)

    def _resolve_error(
        self,
        submission: Submission,
        handle: UploadHandle,
        *,
        default: str,
    ) -> UploadResult:
        message = handle.error or handle.status or default
        if is_duplicate_error(message):
            logger.info("upload_duplicate", file=submission.name, error=message)
            self._print(f"  Duplicate detected: {message}")
            return UploadResult(
                outcome=UploadOutcome.DUPLICATE,
                upload_id=handle.upload_id or None,
                message=message,
            )
        logger.warning("upload_processing_error", file=submission.name, error=message)
        raise UploadProcessingError(f"Upload error: {message}")

    def _resolve_untracked(
        self, submission: Submission, handle: UploadHandle
    ) -> UploadResult:
        status = handle.status
        logger.warning("upload_without_id", file=submission.name, status=status)
        self._print(f'  Warning: upload ID is 0, status "{status}"')

        if status == STATUS_READY and handle.activity_id is not None:
            return self._ready(submission, handle)

        if not is_known_status(status):
            raise UploadNotTrackedError(
                f"Upload rejected - no upload ID and unknown status: {status}"
            )
        raise UploadNotTrackedError(f"Upload ID not assigned - status: {status}")

    def _await_processing(
        self, submission: Submission, upload_id: int
    ) -> UploadResult:
        settings = self.settings
        self._print(f"  Monitoring upload status (ID: {upload_id})...")
        empty_responses = 0

        for check in range(1, settings.max_polls + 1):
            self._sleep(settings.poll_interval)

            try:
                handle = self.gateway.poll_status(upload_id)
            except (StravaAPIError, requests.RequestException) as exc:
                logger.warning(
                    "upload_poll_failed",
                    file=submission.name,
                    upload_id=upload_id,
                    check=check,
                    error=str(exc),
                )
                handle = None

            if handle is None:
                empty_responses += 1
                self._print(f"  Status check {check}: no response")
                if empty_responses >= settings.max_consecutive_empty_polls:
                    logger.warning(
                        "upload_status_unavailable",
                        file=submission.name,
                        upload_id=upload_id,
                        empty_responses=empty_responses,
                    )
                    self._print(
                        f"  No status after {empty_responses} checks; upload was "
                        "accepted, treating as success"
                    )
                    return UploadResult(
                        outcome=UploadOutcome.ACCEPTED_UNCONFIRMED,
                        upload_id=upload_id,
                        message="status unavailable",
                    )
                continue

            empty_responses = 0
            phase = handle.phase
            self._print(f'  Status check {check}: {phase.value} "{handle.status}"')

            if phase is UploadPhase.READY:
                return self._ready(submission, handle, upload_id=upload_id)
            if phase is UploadPhase.ERROR:
                return self._resolve_error(
                    submission,
                    handle,
                    default="Unknown error occurred",
                )
            if phase is UploadPhase.UNKNOWN:
                if mentions_ready(handle.status):
                    return self._ready(submission, handle, upload_id=upload_id)
                if mentions_error(handle.status):
                    raise UploadProcessingError(
                        f"Upload failed with status: {handle.status}"
                    )

        waited = settings.max_polls * settings.poll_interval
        logger.warning(
            "upload_status_timeout",
            file=submission.name,
            upload_id=upload_id,
            waited=_human_readable_duration(waited),
        )
        self._print(
            f"  Status check timeout after {_human_readable_duration(waited)}; "
            "upload was accepted, treating as success"
        )
        return UploadResult(
            outcome=UploadOutcome.ACCEPTED_UNCONFIRMED,
            upload_id=upload_id,
            message="status timeout",
        )

    def _ready(
        self,
        submission: Submission,
        handle: UploadHandle,
        *,
        upload_id: Optional[int] = None,
    ) -> UploadResult:
        logger.info(
            "upload_ready",
            file=submission.name,
            upload_id=upload_id,
            activity_id=handle.activity_id,
        )
        self._print("  [OK] Upload complete!")
        if handle.activity_id is not None:
            self._print(f"  Activity ID: {handle.activity_id}")
        return UploadResult(
            outcome=UploadOutcome.READY,
            upload_id=upload_id,
            activity_id=handle.activity_id,
        )
