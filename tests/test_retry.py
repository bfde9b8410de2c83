"""Tests for the fixed-delay retry controller."""

from __future__ import annotations

from pathlib import Path

import pytest
import requests

from strava_uploader.client import StravaRateLimitError
from strava_uploader.config import UploadSettings
from strava_uploader.retry import RetryController
from strava_uploader.status import STATUS_PROCESSING, STATUS_READY, UploadHandle
from strava_uploader.upload import Submission, UploadOutcome, UploadStateMachine
from tests.fakes import FakeGateway, SleepRecorder

SUBMISSION = Submission(path=Path("Resources/ride.fit"))


def _controller(
    gateway: FakeGateway, sleep: SleepRecorder, **kwargs
) -> RetryController:
    machine = UploadStateMachine(gateway, settings=UploadSettings(), sleep_func=sleep)
    return RetryController(machine, sleep_func=sleep, **kwargs)


def test_transport_errors_exhaust_every_attempt():
    gateway = FakeGateway(
        submissions=[requests.ConnectionError("connection reset")] * 3
    )
    sleep = SleepRecorder()
    controller = _controller(gateway, sleep, max_attempts=3, retry_delay=5.0)

    assert controller.attempt(SUBMISSION) is None

    assert len(gateway.submitted) == 3
    assert sleep.waits == [5.0, 5.0]
    assert isinstance(controller.last_error, requests.ConnectionError)


def test_success_after_a_failed_attempt():
    gateway = FakeGateway(
        submissions=[
            UploadHandle(upload_id=0, status="???"),
            UploadHandle(upload_id=8, status=STATUS_PROCESSING),
        ],
        polls=[UploadHandle(upload_id=8, status=STATUS_READY, activity_id=3)],
    )
    sleep = SleepRecorder()

    result = _controller(gateway, sleep).attempt(SUBMISSION)

    assert result is not None
    assert result.outcome is UploadOutcome.READY
    assert len(gateway.submitted) == 2
    assert sleep.waits == [5.0, 2.0]


def test_duplicate_outcome_is_not_retried():
    gateway = FakeGateway(
        submissions=[UploadHandle(upload_id=1, error="Duplicate activity")]
    )
    sleep = SleepRecorder()

    result = _controller(gateway, sleep).attempt(SUBMISSION)

    assert result.outcome is UploadOutcome.DUPLICATE
    assert len(gateway.submitted) == 1
    assert sleep.waits == []


def test_rate_limit_error_stops_retrying():
    gateway = FakeGateway(
        submissions=[StravaRateLimitError("Too many requests", status_code=429)] * 3
    )
    sleep = SleepRecorder()

    assert _controller(gateway, sleep).attempt(SUBMISSION) is None
    assert len(gateway.submitted) == 1
    assert sleep.waits == []


def test_file_errors_are_retried():
    gateway = FakeGateway(submissions=[FileNotFoundError("gone")] * 2)

    controller = _controller(gateway, SleepRecorder(), max_attempts=2, retry_delay=0)

    assert controller.attempt(SUBMISSION) is None
    assert len(gateway.submitted) == 2


def test_max_attempts_must_be_positive():
    machine = UploadStateMachine(FakeGateway())
    with pytest.raises(ValueError):
        RetryController(machine, max_attempts=0)
