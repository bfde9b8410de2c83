"""Submit FIT files to Strava and query their processing status."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .client import StravaAPIClient, StravaAPIError
from .status import UploadHandle

logger = structlog.get_logger(__name__)

UPLOADS_PATH = "uploads"
FIT_DATA_TYPE = "fit"


class ActivityType(str, Enum):
    """Activity types Strava accepts as an upload override."""

    ALPINE_SKI = "AlpineSki"
    BACKCOUNTRY_SKI = "BackcountrySki"
    CANOEING = "Canoeing"
    CROSSFIT = "Crossfit"
    EBIKE_RIDE = "EBikeRide"
    ELLIPTICAL = "Elliptical"
    HANDCYCLE = "Handcycle"
    HIKE = "Hike"
    ICE_SKATE = "IceSkate"
    INLINE_SKATE = "InlineSkate"
    KAYAKING = "Kayaking"
    KITESURF = "Kitesurf"
    NORDIC_SKI = "NordicSki"
    RIDE = "Ride"
    ROCK_CLIMBING = "RockClimbing"
    ROLLER_SKI = "RollerSki"
    ROWING = "Rowing"
    RUN = "Run"
    SNOWBOARD = "Snowboard"
    SNOWSHOE = "Snowshoe"
    STAIR_STEPPER = "StairStepper"
    STAND_UP_PADDLING = "StandUpPaddling"
    SURFING = "Surfing"
    SWIM = "Swim"
    VIRTUAL_RIDE = "VirtualRide"
    VIRTUAL_RUN = "VirtualRun"
    WALK = "Walk"
    WEIGHT_TRAINING = "WeightTraining"
    WHEELCHAIR = "Wheelchair"
    WINDSURF = "Windsurf"
    WORKOUT = "Workout"
    YOGA = "Yoga"


def parse_activity_type(label: Optional[str]) -> Optional[ActivityType]:
    """Match ``label`` against :class:`ActivityType` ignoring case.

    Returns None for empty or unrecognized labels so Strava detects the type
    from the file itself.
    """
    if not label or not label.strip():
        return None
    wanted = label.strip().casefold()
    for activity_type in ActivityType:
        if wanted in (activity_type.value.casefold(), activity_type.name.casefold()):
            return activity_type
    logger.warning("activity_type_unrecognized", label=label)
    return None


class StravaUploadClient(StravaAPIClient):
    """Gateway for the ``/uploads`` endpoints."""

    def submit(
        self,
        path: str | Path,
        activity_type: Optional[ActivityType] = None,
    ) -> UploadHandle:
        """Send a FIT file and return Strava's initial upload status."""
        file_path = Path(path)
        data: Dict[str, Any] = {"data_type": FIT_DATA_TYPE}
        if activity_type is not None:
            data["activity_type"] = activity_type.value.lower()

        with file_path.open("rb") as handle:
            response = self.request(
                "POST",
                self.url(UPLOADS_PATH),
                data=data,
                files={"file": (file_path.name, handle, "application/octet-stream")},
            )

        payload = _json_body(response)
        if payload is None:
            raise StravaAPIError(
                "Upload failed - no response received from Strava.",
                status_code=response.status_code,
            )
        upload = UploadHandle.from_dict(payload)
        logger.info(
            "upload_submitted",
            file=file_path.name,
            upload_id=upload.upload_id,
            status=upload.status,
        )
        return upload

    def poll_status(self, upload_id: int | str) -> Optional[UploadHandle]:
        """Return the current status of an upload, or None for an empty reply."""
        response = self.request("GET", self.url(f"{UPLOADS_PATH}/{upload_id}"))
        payload = _json_body(response)
        if payload is None:
            return None
        return UploadHandle.from_dict(payload)


def _json_body(response: Any) -> Optional[Dict[str, Any]]:
    if not (getattr(response, "text", "") or "").strip():
        return None
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict) or not payload:
        return None
    return payload
