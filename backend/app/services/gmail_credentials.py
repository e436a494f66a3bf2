"""
Credential gating shared by the webhook pipeline and the interactive endpoints.

A stored credential is only usable if it is a refresh token. Google access
tokens start with ``ya29.``; one of those in the store means the login flow
persisted the wrong token, and the account has to re-authorize before
anything can be exchanged.
"""

import httpx

from app.services.google_oauth import exchange_refresh_token
from app.services.token_store import CredentialStore, normalize_account

ACCESS_TOKEN_PREFIX = "ya29."


class CredentialNotFoundError(Exception):
    """No credential is stored for the account."""


class StoredAccessTokenError(Exception):
    """The stored credential is an access token, not a refresh token."""


def is_access_token(value: str) -> bool:
    return value.startswith(ACCESS_TOKEN_PREFIX)


def resolve_refresh_token(store: CredentialStore, account: str) -> str:
    """
    Look up the refresh token for ``account``.

    Raises:
        CredentialNotFoundError: nothing stored for the account.
        StoredAccessTokenError: the stored value is access-token-shaped.
    """
    credential = store.get(normalize_account(account))
    if not credential:
        raise CredentialNotFoundError(f"No stored Gmail token for {account}")
    if is_access_token(credential):
        raise StoredAccessTokenError(
            f"Stored Gmail token for {account} is an access token; expected refresh token"
        )
    return credential


async def mint_access_token(
    store: CredentialStore, account: str, http_client: httpx.AsyncClient
) -> str:
    """Gate the stored credential, then exchange it for a fresh access token."""
    refresh_token = resolve_refresh_token(store, account)
    return await exchange_refresh_token(refresh_token, http_client)
