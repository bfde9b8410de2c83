"""Core helpers for uploading activity files to Strava."""

from __future__ import annotations

__all__ = ["STRAVA_API_BASE"]

STRAVA_API_BASE = "https://www.strava.com/api/v3"
