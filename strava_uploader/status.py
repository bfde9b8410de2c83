"""Classification of the free-text status fields Strava returns for uploads.

Strava reports upload progress as human readable sentences rather than a
structured state. Every substring heuristic used to interpret those sentences
lives in this module so the rest of the package only deals in
:class:`UploadPhase` values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

STATUS_PROCESSING = "Your activity is still being processed."
STATUS_DELETED = "The created activity has been deleted."
STATUS_ERROR = "There was an error processing your activity."
STATUS_READY = "Your activity is ready."

KNOWN_STATUSES = frozenset(
    {STATUS_PROCESSING, STATUS_DELETED, STATUS_ERROR, STATUS_READY}
)

DUPLICATE_MARKER = "duplicate"


class UploadPhase(str, Enum):
    """Processing state of an upload as reported by Strava."""

    PROCESSING = "Processing"
    READY = "Ready"
    ERROR = "Error"
    UNKNOWN = "Unknown"


@dataclass
class UploadHandle:
    """Result of an upload submission or a status poll."""

    upload_id: int = 0
    status: Optional[str] = None
    error: Optional[str] = None
    activity_id: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UploadHandle":
        """Build a handle from the JSON body of an ``/uploads`` response."""
        return cls(
            upload_id=_coerce_int(payload.get("id")) or 0,
            status=_clean_text(payload.get("status")),
            error=_clean_text(payload.get("error")),
            activity_id=_coerce_int(payload.get("activity_id")),
            raw=payload,
        )

    @property
    def phase(self) -> UploadPhase:
        return classify_phase(self.status, self.error)

    @property
    def is_tracked(self) -> bool:
        """Return True when Strava assigned an identifier that can be polled."""
        return self.upload_id > 0


def classify_phase(status: Optional[str], error: Optional[str]) -> UploadPhase:
    """Map Strava's status/error text onto an :class:`UploadPhase`."""
    if error:
        return UploadPhase.ERROR
    if not status:
        return UploadPhase.UNKNOWN
    if status == STATUS_PROCESSING:
        return UploadPhase.PROCESSING
    if status == STATUS_READY:
        return UploadPhase.READY
    if status in (STATUS_ERROR, STATUS_DELETED):
        return UploadPhase.ERROR
    return UploadPhase.UNKNOWN


def is_duplicate_error(text: Optional[str]) -> bool:
    """Return True when an error message says Strava already has the file."""
    return bool(text) and DUPLICATE_MARKER in text.lower()


def mentions_ready(text: Optional[str]) -> bool:
    return bool(text) and "ready" in text.lower()


def mentions_error(text: Optional[str]) -> bool:
    return bool(text) and "error" in text.lower()


def is_known_status(text: Optional[str]) -> bool:
    return text in KNOWN_STATUSES


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
