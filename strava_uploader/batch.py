"""Upload every FIT file in a directory exactly once."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

import structlog

from .client import ProbeResult, StravaAPIError, StravaRateLimitError
from .config import UploadSettings
from .ledger import UploadLedger
from .rate_limit import RateLimitTracker
from .retry import RetryController
from .upload import (
    Printer,
    Submission,
    UploadGateway,
    UploadStateMachine,
    _noop_printer,
)
from .uploads import ActivityType

logger = structlog.get_logger(__name__)

FIT_SUFFIX = ".fit"


class AuthenticationError(StravaAPIError):
    """Raised when the pre-flight token check fails."""


class StravaGateway(UploadGateway, Protocol):
    rate_limits: RateLimitTracker

    def probe(self) -> ProbeResult:
        ...


@dataclass
class BatchSummary:
    """Metrics about a batch run."""

    total_files: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    not_attempted: int = 0
    ledger_errors: int = 0
    dry_run_listed: int = 0
    total_delivered: int = 0
    aborted: bool = False


def collect_fit_files(resources_dir: str | Path) -> List[Path]:
    """Return the FIT files directly inside ``resources_dir`` sorted by name."""
    directory = Path(resources_dir).expanduser()
    if not directory.is_dir():
        raise FileNotFoundError(f"Resources directory not found: {directory}")
    return sorted(
        (
            path
            for path in directory.iterdir()
            if path.is_file() and path.suffix.lower() == FIT_SUFFIX
        ),
        key=lambda path: path.name,
    )


class BatchUploader:
    """Validate the token, then deliver files one at a time.

    Files already present in the ledger are skipped without any remote call.
    A file is only added to the ledger after the retry controller reports a
    success outcome. One file failing never stops the batch; a Strava rate
    limit that is fully spent does.
    """

    def __init__(
        self,
        gateway: StravaGateway,
        ledger: UploadLedger,
        *,
        settings: Optional[UploadSettings] = None,
        activity_type: Optional[ActivityType] = None,
        sleep_func: Optional[Callable[[float], None]] = None,
        printer: Optional[Printer] = None,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.settings = settings or UploadSettings()
        self.activity_type = activity_type
        self._print = printer or _noop_printer
        sleep = sleep_func or time.sleep
        machine = UploadStateMachine(
            gateway,
            settings=self.settings,
            sleep_func=sleep,
            printer=self._print,
        )
        self.retry = RetryController(
            machine,
            max_attempts=self.settings.max_attempts,
            retry_delay=self.settings.retry_delay,
            sleep_func=sleep,
            printer=self._print,
        )

    @property
    def rate_limits(self) -> RateLimitTracker:
        return self.gateway.rate_limits

    def validate_token(self) -> None:
        """Probe Strava once and raise :class:`AuthenticationError` on failure."""
        self._print("Validating Strava access token...")
        result = self.gateway.probe()

        if not result.ok:
            logger.error(
                "token_validation_failed",
                status_code=result.status_code,
                message=result.message,
            )
            self._print(f"  {result.message}")
            raise AuthenticationError(
                result.message or "Token validation failed.",
                status_code=result.status_code,
            )

        if self.rate_limits.is_exceeded():
            logger.error("rate_limit_exhausted", status=self.rate_limits.status())
            raise StravaRateLimitError(
                f"Rate limit exhausted before upload ({self.rate_limits.status()})",
                status_code=result.status_code,
            )

        logger.info("token_validated", athlete=result.athlete)
        if result.athlete:
            self._print(f"  Authenticated as: {result.athlete}")
        self._print(f"  {self.rate_limits.status()}")

    def upload_directory(
        self,
        resources_dir: str | Path,
        *,
        dry_run: bool = False,
    ) -> BatchSummary:
        """Upload the FIT files found in ``resources_dir``."""
        if dry_run:
            return self.plan(collect_fit_files(resources_dir))

        self.validate_token()
        files = collect_fit_files(resources_dir)
        if not files:
            logger.info("no_fit_files", path=str(resources_dir))
            self._print(f"No .fit files found in {resources_dir}.")
        return self.upload_files(files)

    def plan(self, files: Sequence[Path]) -> BatchSummary:
        """Report which files would be uploaded without contacting Strava."""
        summary = BatchSummary(total_files=len(files))
        for path in files:
            if self.ledger.contains(path.name):
                summary.skipped += 1
                continue
            summary.dry_run_listed += 1
            self._print(f"  would upload: {path.name}")
        summary.total_delivered = self.ledger.count()
        return summary

    def upload_files(self, files: Sequence[Path]) -> BatchSummary:
        summary = BatchSummary(total_files=len(files))
        every = max(1, self.settings.rate_limit_check_every)

        for index, path in enumerate(files, start=1):
            name = path.name
            self._print(f"[{index}/{len(files)}] Processing: {name}")

            if self.ledger.contains(name):
                summary.skipped += 1
                logger.info("upload_skipped", file=name)
                self._print("  Skipped - already uploaded previously")
                continue

            result = self.retry.attempt(
                Submission(path=path, activity_type=self.activity_type)
            )
            if result is None:
                summary.failed += 1
                logger.error("upload_failed", file=name)
                self._print("  [FAILED] Failed to upload")
            else:
                summary.succeeded += 1
                logger.info(
                    "upload_succeeded",
                    file=name,
                    outcome=result.outcome.value,
                    activity_id=result.activity_id,
                )
                self._print("  [SUCCESS] Successfully uploaded")
                if not self.ledger.add(name):
                    summary.ledger_errors += 1
                    self._print(
                        f"  ERROR: could not record {name} in {self.ledger.path}; "
                        "it may be uploaded again on the next run"
                    )

            if index < len(files) and self.rate_limits.is_exceeded():
                summary.aborted = True
                summary.not_attempted = len(files) - index
                logger.error(
                    "rate_limit_exhausted",
                    status=self.rate_limits.status(),
                    remaining=summary.not_attempted,
                )
                self._print(
                    f"Rate limit exhausted ({self.rate_limits.status()}); "
                    f"stopping with {summary.not_attempted} file(s) left."
                )
                break

            if index % every == 0 and self.rate_limits.is_near_limit():
                logger.warning("rate_limit_near", status=self.rate_limits.status())
                for line in self.rate_limits.warning_lines():
                    self._print(line)

        summary.total_delivered = self.ledger.count()
        for line in format_summary(summary):
            self._print(line)
        return summary


def format_summary(summary: BatchSummary) -> List[str]:
    lines = ["=== Upload Summary ===", f"Successful: {summary.succeeded}"]
    if summary.skipped:
        lines.append(f"Skipped: {summary.skipped}")
    if summary.failed:
        lines.append(f"Failed: {summary.failed}")
    if summary.not_attempted:
        lines.append(f"Not attempted: {summary.not_attempted}")
    if summary.ledger_errors:
        lines.append(f"Not recorded in ledger: {summary.ledger_errors}")
    lines.append(f"Total previously uploaded: {summary.total_delivered}")
    return lines
