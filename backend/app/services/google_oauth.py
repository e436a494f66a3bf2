"""
Google OAuth token exchange.

Turns a stored refresh token into a short-lived access token by calling the
OAuth token endpoint with the application's client credentials. A fresh
access token is minted on every call; callers are infrequent (a user click
or a push notification) so there is no cache to invalidate.

Environment variables
---------------------
GOOGLE_CLIENT_ID       OAuth client id (required for any exchange).
GOOGLE_CLIENT_SECRET   OAuth client secret (required for any exchange).
"""

import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class CredentialExchangeError(Exception):
    """The provider refused to exchange the refresh token."""

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.detail = detail


class OAuthConfigError(CredentialExchangeError):
    """GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not configured."""


def _get_client_credentials() -> tuple[str, str]:
    client_id = os.getenv("GOOGLE_CLIENT_ID", "").strip()
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
    if not client_id or not client_secret:
        raise OAuthConfigError("Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET")
    return client_id, client_secret


async def exchange_refresh_token(refresh_token: str, http_client: httpx.AsyncClient) -> str:
    """
    Exchange a refresh token for an access token.

    Args:
        refresh_token: Long-lived token from the credential store.
        http_client:   Client used for the single outbound POST.

    Returns:
        The ``access_token`` from the token endpoint response.

    Raises:
        OAuthConfigError: client credentials are not configured (no request is sent).
        CredentialExchangeError: non-2xx response or no access_token in the body.
    """
    client_id, client_secret = _get_client_credentials()

    response = await http_client.post(
        GOOGLE_TOKEN_URL,
        data={
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
    )

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    access_token = payload.get("access_token")
    if response.is_error or not access_token:
        error = payload.get("error")
        description = payload.get("error_description")
        logger.error(
            "OAuth token refresh failed status=%s error=%s description=%s",
            response.status_code,
            error,
            description,
        )
        raise CredentialExchangeError(
            error or "Failed to exchange refresh token",
            detail=description or error,
        )

    return access_token
