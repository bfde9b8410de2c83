"""Strava OAuth2 authorization helper utilities."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import structlog
from requests_oauth2client import BearerToken, OAuth2Client

from .config import (
    UploaderConfig,
    default_config_file,
    load_config_file,
    write_config_file,
)

__all__ = [
    "REQUIRED_SCOPES",
    "STRAVA_AUTHORIZATION_ENDPOINT",
    "STRAVA_DEAUTHORIZATION_ENDPOINT",
    "STRAVA_TOKEN_ENDPOINT",
    "CallbackError",
    "create_strava_client",
    "get_env_or_exit",
    "main",
    "parse_callback_url",
    "save_token",
]

logger = structlog.get_logger(__name__)

STRAVA_AUTHORIZATION_ENDPOINT = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_ENDPOINT = "https://www.strava.com/oauth/token"
STRAVA_DEAUTHORIZATION_ENDPOINT = "https://www.strava.com/oauth/deauthorize"

# Uploading needs activity:write; read lets the token check fetch the athlete.
REQUIRED_SCOPES = ["read", "activity:write"]

DEFAULT_REDIRECT_URI = "https://localhost/exchange_token"


class CallbackError(ValueError):
    """Raised when the pasted callback URL does not carry an authorization code."""


def get_env_or_exit(var_name: str) -> str:
    """Get environment variable or exit with error message.

    Args:
        var_name: The name of the environment variable to retrieve.

    Returns:
        The value of the environment variable.

    Raises:
        SystemExit: If the environment variable is not set.
    """
    value = os.environ.get(var_name)
    if not value:
        logger.error(
            "Environment variable not set",
            variable=var_name,
            help=f"Please set {var_name} environment variable",
        )
        sys.exit(1)
    return value


def create_strava_client(
    client_id: str, client_secret: str, redirect_uri: str
) -> OAuth2Client:
    """Create an OAuth2 client configured for the Strava API.

    Strava does not support PKCE, so code challenges are disabled.

    Args:
        client_id: The Strava application client ID.
        client_secret: The Strava application client secret.
        redirect_uri: The redirect URI allowed by the Strava application.

    Returns:
        A configured OAuth2Client instance.
    """
    logger.info(
        "Creating Strava OAuth2 client",
        authorization_endpoint=STRAVA_AUTHORIZATION_ENDPOINT,
        token_endpoint=STRAVA_TOKEN_ENDPOINT,
    )

    return OAuth2Client(
        authorization_endpoint=STRAVA_AUTHORIZATION_ENDPOINT,
        token_endpoint=STRAVA_TOKEN_ENDPOINT,
        revocation_endpoint=STRAVA_DEAUTHORIZATION_ENDPOINT,
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        code_challenge_method=None,
    )


def parse_callback_url(callback_url: str) -> str:
    """Return the authorization code carried by a Strava redirect URL.

    Raises:
        CallbackError: If Strava reported an error or no code is present.
    """
    query_params = parse_qs(urlparse(callback_url).query)

    if "error" in query_params:
        raise CallbackError(f"Authorization failed: {query_params['error'][0]}")

    if "code" not in query_params:
        raise CallbackError("No authorization code found in callback URL")

    granted = ",".join(query_params.get("scope", [])).split(",")
    if "activity:write" not in granted:
        logger.warning("activity_write_scope_missing", granted=granted)

    return query_params["code"][0]


def save_token(token: BearerToken, config_path: Path) -> None:
    """Store the access token in the uploader config, keeping other settings."""
    config_path = config_path.expanduser()
    if config_path.exists():
        try:
            config = load_config_file(config_path)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Existing config unreadable, replacing it",
                path=str(config_path),
                error=str(exc),
            )
            config = UploaderConfig()
    else:
        config = UploaderConfig()

    config.access_token = token.access_token
    extras = dict(config.raw or {})
    if token.expires_at:
        extras["expires_at"] = token.expires_at.isoformat()
    config.raw = extras

    write_config_file(config, config_path)
    logger.info("Saved access token to config", path=str(config_path))


def main() -> None:
    """Run the Strava OAuth2 authorization flow tool"""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]
    )
    logger.info("Starting Strava OAuth2 Flow Helper")

    client_id = get_env_or_exit("STRAVA_CLIENT_ID")
    client_secret = get_env_or_exit("STRAVA_CLIENT_SECRET")
    redirect_uri = os.environ.get("STRAVA_REDIRECT_URI", DEFAULT_REDIRECT_URI)

    logger.info(
        "Using configuration",
        client_id=client_id[:8] + "...",
        redirect_uri=redirect_uri,
        scopes=REQUIRED_SCOPES,
    )

    client = create_strava_client(client_id, client_secret, redirect_uri)

    logger.info("Generating authorization request")
    auth_request = client.authorization_request(
        scope=",".join(REQUIRED_SCOPES),
        response_type="code",
        approval_prompt="force",
    )

    print("\n" + "=" * 80)
    print("STEP 1: Visit the following URL to authorize the application:")
    print("=" * 80)
    print(f"\n{auth_request.uri}\n")
    print("=" * 80)

    # Strava redirects to localhost, which usually shows a browser error page.
    print("\nSTEP 2: After authorizing, copy the entire URL from your browser.")
    callback_url = input("\nPaste the callback URL here: ").strip()

    if not callback_url:
        logger.error("No callback URL provided")
        sys.exit(1)

    try:
        auth_code = parse_callback_url(callback_url)
    except CallbackError as exc:
        logger.error("Failed to parse callback URL", error=str(exc))
        sys.exit(1)
    logger.info("Authorization code received", code=auth_code[:10] + "...")

    logger.info("Exchanging authorization code for access token")
    try:
        token = client.authorization_code(code=auth_code, redirect_uri=redirect_uri)
    except Exception as exc:  # pragma: no cover - external dependency failure
        logger.error("Failed to exchange authorization code", error=str(exc))
        sys.exit(1)

    logger.info(
        "Access token received successfully",
        token_type=token.token_type,
        expires_in=token.expires_in,
        scope=token.scope,
    )

    output_file = Path(default_config_file())
    try:
        save_token(token, output_file)
    except OSError as exc:
        logger.error(
            "Failed to write config file",
            path=str(output_file),
            error=str(exc),
        )
        sys.exit(1)

    print("\n" + "=" * 80)
    print(f"SUCCESS! Access token saved to {output_file}")
    print("Strava access tokens expire after six hours; rerun this helper when")
    print("the uploader reports an unauthorized token.")
    print("=" * 80)


if __name__ == "__main__":  # pragma: no cover
    main()
