#!/usr/bin/env python3
"""Upload every FIT file in a directory to Strava, skipping ones already sent."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from strava_uploader.batch import BatchUploader
from strava_uploader.client import StravaAPIError
from strava_uploader.config import (
    DEFAULT_RESOURCES_DIR,
    CredentialProvider,
    MissingCredentialError,
    UploadSettings,
    default_config_file,
)
from strava_uploader.ledger import DEFAULT_LEDGER_FILE, UploadLedger
from strava_uploader.rate_limit import RateLimitTracker
from strava_uploader.uploads import StravaUploadClient, parse_activity_type

logger = structlog.get_logger(__name__)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    defaults = UploadSettings()
    parser = argparse.ArgumentParser(
        description="Upload FIT activity files to Strava, at most once per file."
    )
    parser.add_argument(
        "--resources-dir",
        default=DEFAULT_RESOURCES_DIR,
        help="Directory containing .fit files (default: %(default)s).",
    )
    parser.add_argument(
        "--config-file",
        default=default_config_file(),
        help="Path to the JSON file holding the access token (default: %(default)s).",
    )
    parser.add_argument(
        "--ledger-file",
        default=DEFAULT_LEDGER_FILE,
        help="Path to the list of files already uploaded (default: %(default)s).",
    )
    parser.add_argument(
        "--activity-type",
        help="Override the activity type instead of the one in the config file.",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=defaults.max_attempts,
        help="Upload attempts per file (default: %(default)s).",
    )
    parser.add_argument(
        "--retry-delay",
        type=float,
        default=defaults.retry_delay,
        help="Seconds to wait between attempts (default: %(default)s).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List files that would be uploaded without contacting Strava.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    resources_dir = Path(args.resources_dir).expanduser()
    if not resources_dir.is_dir():
        logger.error("resources_dir_missing", path=str(resources_dir))
        return 1

    if args.max_retries < 1:
        logger.error("invalid_max_retries", value=args.max_retries)
        return 1

    settings = UploadSettings(
        max_attempts=args.max_retries,
        retry_delay=args.retry_delay,
    )
    ledger = UploadLedger(args.ledger_file, create=not args.dry_run)
    credentials = CredentialProvider(args.config_file)

    if args.dry_run:
        token = ""
    else:
        try:
            token = credentials.get_access_token()
        except MissingCredentialError as exc:
            logger.error("access_token_missing", error=str(exc))
            return 1

    activity_type = parse_activity_type(
        args.activity_type or credentials.get_activity_type_override()
    )
    client = StravaUploadClient(token, rate_limits=RateLimitTracker())
    uploader = BatchUploader(
        client,
        ledger,
        settings=settings,
        activity_type=activity_type,
        printer=print,
    )

    try:
        summary = uploader.upload_directory(resources_dir, dry_run=args.dry_run)
    except StravaAPIError as exc:
        logger.error("strava_api_error", error=str(exc))
        return 1

    logger.info(
        "upload_summary",
        total=summary.total_files,
        succeeded=summary.succeeded,
        skipped=summary.skipped,
        failed=summary.failed,
        not_attempted=summary.not_attempted,
        delivered=summary.total_delivered,
        dry_run=args.dry_run,
    )
    if args.dry_run:
        print(
            f"[dry-run] {summary.dry_run_listed} file(s) to upload, "
            f"{summary.skipped} already uploaded."
        )
    return 1 if summary.aborted else 0


if __name__ == "__main__":
    raise SystemExit(main())
