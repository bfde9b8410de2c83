"""Tests for the batch orchestrator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

import pytest
import requests

from strava_uploader.batch import (
    BatchSummary,
    AuthenticationError,
    BatchUploader,
    collect_fit_files,
    format_summary,
)
from strava_uploader.client import ProbeResult, StravaRateLimitError
from strava_uploader.config import UploadSettings
from strava_uploader.ledger import UploadLedger
from strava_uploader.status import STATUS_PROCESSING, STATUS_READY, UploadHandle
from strava_uploader.uploads import StravaUploadClient
from tests.fakes import DummySession, FakeGateway, FakeResponse, SleepRecorder

LIMITS = {"X-RateLimit-Limit": "600,30000", "X-RateLimit-Usage": "10,100"}


def _resources(tmp_path: Path, *names: str) -> Path:
    resources = tmp_path / "Resources"
    resources.mkdir()
    for name in names:
        (resources / name).write_bytes(b"fit-bytes")
    return resources


def _processing(upload_id: int) -> UploadHandle:
    return UploadHandle(upload_id=upload_id, status=STATUS_PROCESSING)


def _ready(upload_id: int) -> UploadHandle:
    return UploadHandle(
        upload_id=upload_id, status=STATUS_READY, activity_id=upload_id * 10
    )


def test_collect_fit_files_is_sorted_and_filtered(tmp_path):
    resources = _resources(tmp_path, "b.fit", "a.FIT", "notes.txt", "c.fit")
    (resources / "nested.fit").mkdir()

    files = collect_fit_files(resources)

    assert [path.name for path in files] == ["a.FIT", "b.fit", "c.fit"]


def test_collect_fit_files_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_fit_files(tmp_path / "missing")


def test_end_to_end_with_strava_client(tmp_path):
    resources = _resources(tmp_path, "one.fit", "two.fit", "three.fit")
    ledger_path = tmp_path / "uploaded_files.json"
    ledger_path.write_text(json.dumps(["three.fit"]), encoding="utf-8")

    session = DummySession(
        [
            FakeResponse(200, {"firstname": "Ada"}, headers=LIMITS),
            FakeResponse(201, {"id": 1, "status": STATUS_PROCESSING}, headers=LIMITS),
            FakeResponse(200, {"id": 1, "status": STATUS_READY, "activity_id": 11}),
            FakeResponse(201, {"id": 2, "status": STATUS_PROCESSING}, headers=LIMITS),
            FakeResponse(200, {"id": 2, "status": STATUS_READY, "activity_id": 22}),
        ]
    )
    client = StravaUploadClient("token", session=session)
    ledger = UploadLedger(ledger_path)
    lines: List[str] = []
    uploader = BatchUploader(
        client,
        ledger,
        sleep_func=SleepRecorder(),
        printer=lines.append,
    )

    summary = uploader.upload_directory(resources)

    assert summary.succeeded == 2
    assert summary.skipped == 1
    assert summary.failed == 0
    assert summary.total_delivered == 3
    saved = json.loads(ledger_path.read_text(encoding="utf-8"))
    assert sorted(saved) == ["one.fit", "three.fit", "two.fit"]
    methods = [method for method, _ in session.calls]
    assert methods == ["GET", "POST", "GET", "POST", "GET"]
    assert "Total previously uploaded: 3" in lines


def test_files_in_ledger_make_no_remote_calls(tmp_path):
    resources = _resources(tmp_path, "Ride.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    ledger.add("ride.FIT")
    gateway = FakeGateway()

    summary = BatchUploader(gateway, ledger).upload_directory(resources)

    assert summary.skipped == 1
    assert gateway.submitted == []
    assert gateway.polled == []


def test_repeated_runs_upload_each_file_once(tmp_path):
    resources = _resources(tmp_path, "a.fit", "b.fit")
    ledger_path = tmp_path / "ledger.json"
    gateway = FakeGateway(
        submissions=[_processing(1), _processing(2)],
        polls=[_ready(1), _ready(2)],
    )

    for _ in range(3):
        BatchUploader(
            gateway,
            UploadLedger(ledger_path),
            sleep_func=SleepRecorder(),
        ).upload_directory(resources)

    assert gateway.submitted == ["a.fit", "b.fit"]
    assert UploadLedger(ledger_path).count() == 2


def test_duplicate_error_is_recorded_in_ledger(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    gateway = FakeGateway(
        submissions=[UploadHandle(upload_id=5, error="a.fit DUPLICATE of activity 9")]
    )

    summary = BatchUploader(gateway, ledger).upload_directory(resources)

    assert summary.succeeded == 1
    assert ledger.contains("a.fit")


def test_failed_file_does_not_stop_the_batch(tmp_path):
    resources = _resources(tmp_path, "a.fit", "b.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    gateway = FakeGateway(
        submissions=[requests.Timeout("slow")] * 3 + [_processing(2)],
        polls=[_ready(2)],
    )
    sleep = SleepRecorder()
    settings = UploadSettings(max_attempts=3, retry_delay=1.5)

    summary = BatchUploader(
        gateway, ledger, settings=settings, sleep_func=sleep
    ).upload_directory(resources)

    assert summary.failed == 1
    assert summary.succeeded == 1
    assert not ledger.contains("a.fit")
    assert ledger.contains("b.fit")
    assert sleep.waits[:2] == [1.5, 1.5]


def test_authentication_failure_aborts_before_any_file(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    gateway = FakeGateway(
        probe_result=ProbeResult(ok=False, status_code=401, message="Unauthorized")
    )

    with pytest.raises(AuthenticationError):
        BatchUploader(gateway, ledger).upload_directory(resources)

    assert gateway.submitted == []
    assert ledger.count() == 0


def test_exhausted_rate_limit_before_upload_is_fatal(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    gateway = FakeGateway()
    gateway.rate_limits.observe(
        {"X-RateLimit-Limit": "600,30000", "X-RateLimit-Usage": "600,900"}
    )

    with pytest.raises(StravaRateLimitError):
        BatchUploader(gateway, UploadLedger(tmp_path / "l.json")).upload_directory(
            resources
        )
    assert gateway.submitted == []


class ExhaustingGateway(FakeGateway):
    """Reports a spent rate limit after the first submission."""

    def submit(self, path, activity_type=None):
        self.rate_limits.observe(
            {"X-RateLimit-Limit": "600,30000", "X-RateLimit-Usage": "600,900"}
        )
        return super().submit(path, activity_type)


def test_spent_rate_limit_stops_remaining_files(tmp_path):
    resources = _resources(tmp_path, "a.fit", "b.fit", "c.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    gateway = ExhaustingGateway(submissions=[_processing(1)], polls=[_ready(1)])

    summary = BatchUploader(
        gateway, ledger, sleep_func=SleepRecorder()
    ).upload_directory(resources)

    assert summary.aborted
    assert summary.succeeded == 1
    assert summary.not_attempted == 2
    assert gateway.submitted == ["a.fit"]
    assert ledger.contains("a.fit")


def test_budget_spent_by_last_file_completes_normally(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    gateway = ExhaustingGateway(submissions=[_processing(1)], polls=[_ready(1)])

    summary = BatchUploader(
        gateway, ledger, sleep_func=SleepRecorder()
    ).upload_directory(resources)

    assert not summary.aborted
    assert summary.succeeded == 1
    assert summary.not_attempted == 0
    assert ledger.contains("a.fit")


def test_near_limit_warning_is_printed(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    gateway = FakeGateway(submissions=[_processing(1)], polls=[_ready(1)])
    gateway.rate_limits.observe(
        {"X-RateLimit-Limit": "600,30000", "X-RateLimit-Usage": "590,900"}
    )
    lines: List[str] = []
    settings = UploadSettings(rate_limit_check_every=1)

    summary = BatchUploader(
        gateway,
        UploadLedger(tmp_path / "ledger.json"),
        settings=settings,
        sleep_func=SleepRecorder(),
        printer=lines.append,
    ).upload_directory(resources)

    assert summary.succeeded == 1
    assert "Rate Limit Warning:" in lines


def test_ledger_write_failure_is_counted(tmp_path):
    resources = _resources(tmp_path, "a.fit")
    ledger_dir = tmp_path / "ledger"
    ledger_dir.mkdir()
    gateway = FakeGateway(submissions=[_processing(1)], polls=[_ready(1)])
    lines: List[str] = []

    summary = BatchUploader(
        gateway,
        UploadLedger(ledger_dir),
        sleep_func=SleepRecorder(),
        printer=lines.append,
    ).upload_directory(resources)

    assert summary.succeeded == 1
    assert summary.ledger_errors == 1
    assert any(line.startswith("  ERROR: could not record a.fit") for line in lines)


def test_dry_run_makes_no_remote_calls(tmp_path):
    resources = _resources(tmp_path, "a.fit", "b.fit")
    ledger = UploadLedger(tmp_path / "ledger.json")
    ledger.add("b.fit")
    gateway = FakeGateway()

    summary = BatchUploader(gateway, ledger).upload_directory(resources, dry_run=True)

    assert summary.dry_run_listed == 1
    assert summary.skipped == 1
    assert gateway.probes == 0
    assert gateway.submitted == []


def test_format_summary_lists_only_nonzero_counts():
    lines = format_summary(BatchSummary(succeeded=2, total_delivered=5))

    assert lines == [
        "=== Upload Summary ===",
        "Successful: 2",
        "Total previously uploaded: 5",
    ]
