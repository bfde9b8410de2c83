"""Helpers for reading and writing the uploader configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_FILE = "strava_config.json"
DEFAULT_RESOURCES_DIR = "Resources"
ACCESS_TOKEN_ENV = "STRAVA_ACCESS_TOKEN"
CONFIG_FILE_ENV = "STRAVA_CONFIG_FILE"
LEGACY_KEYS = ("AccessToken", "ActivityTypeOverride")


class MissingCredentialError(RuntimeError):
    """Raised when no Strava access token can be obtained."""


@dataclass
class UploaderConfig:
    """In-memory representation of the credentials file."""

    access_token: str = ""
    activity_type_override: Optional[str] = None
    raw: Dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "UploaderConfig":
        """Create an UploaderConfig from the JSON payload stored on disk."""
        token = payload.get("access_token") or payload.get("AccessToken") or ""
        override = payload.get("activity_type_override") or payload.get(
            "ActivityTypeOverride"
        )
        return cls(
            access_token=str(token).strip(),
            activity_type_override=str(override).strip() if override else None,
            raw=payload,
        )

    def as_serializable_dict(self) -> Dict[str, Any]:
        """Return a JSON serializable representation of the config."""
        data: Dict[str, Any] = {"access_token": self.access_token}
        if self.activity_type_override:
            data["activity_type_override"] = self.activity_type_override
        if self.raw:
            for key, value in self.raw.items():
                if key not in data and key not in LEGACY_KEYS:
                    data[key] = value
        return data


@dataclass
class UploadSettings:
    """Tunables for a batch run."""

    max_attempts: int = 3
    retry_delay: float = 5.0
    poll_interval: float = 2.0
    max_polls: int = 30
    max_consecutive_empty_polls: int = 5
    rate_limit_check_every: int = 10


def default_config_file() -> str:
    return os.environ.get(CONFIG_FILE_ENV) or DEFAULT_CONFIG_FILE


def load_config_file(path: str | Path) -> UploaderConfig:
    """Load config JSON from disk."""
    config_path = Path(path).expanduser()
    with config_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError("Config file must contain a JSON object.")
    return UploaderConfig.from_dict(payload)


def write_config_file(config: UploaderConfig, path: str | Path) -> None:
    """Persist config JSON to disk."""
    config_path = Path(path).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        json.dump(config.as_serializable_dict(), handle, indent=2)
        handle.write("\n")


class CredentialProvider:
    """Resolve the access token and activity type override for a run.

    The token comes from ``STRAVA_ACCESS_TOKEN`` when set, otherwise from the
    config file, otherwise from an interactive prompt whose answer is saved.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        input_func: Optional[Callable[[str], str]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.path = Path(path).expanduser()
        self._input = input_func or input
        self._environ = os.environ if environ is None else environ
        self._config: Optional[UploaderConfig] = None

    def get_access_token(self) -> str:
        env_token = (self._environ.get(ACCESS_TOKEN_ENV) or "").strip()
        if env_token:
            logger.info("access_token_from_environment", variable=ACCESS_TOKEN_ENV)
            return env_token

        config = self._load()
        if config.access_token:
            logger.info("access_token_loaded", path=str(self.path))
            return config.access_token

        token = self._input("No access token found. Enter your Strava access token: ")
        token = (token or "").strip()
        if not token:
            raise MissingCredentialError(
                "Access token is required to upload files to Strava."
            )

        config.access_token = token
        try:
            write_config_file(config, self.path)
        except OSError as exc:
            logger.warning("config_save_failed", path=str(self.path), error=str(exc))
        else:
            logger.info("access_token_saved", path=str(self.path))
        return token

    def get_activity_type_override(self) -> Optional[str]:
        return self._load().activity_type_override

    def _load(self) -> UploaderConfig:
        if self._config is not None:
            return self._config

        self._config = UploaderConfig()
        if not self.path.exists():
            return self._config

        try:
            self._config = load_config_file(self.path)
        except (OSError, ValueError) as exc:
            logger.warning("config_load_failed", path=str(self.path), error=str(exc))
        return self._config
