"""
Gmail router.

Handles the Pub/Sub push webhook and the caller-facing Gmail actions
(token submission, recent-message listing, watch start/stop).

The webhook always answers 204. Pub/Sub redelivers anything that is not a
fast 2xx, so even malformed or unauthenticated pushes are acknowledged and
then dropped with a log line. Reconciliation runs after the response, on the
notification dispatcher.

Caller-facing endpoints answer errors as ``{"error": ..., "detail": ...}``:
  404  no stored Gmail token for the caller
  400  stored token is an access token / caller has no email / bad body
  502  Google rejected the token exchange or a Gmail API call
  500  configuration missing or anything unexpected

Environment variables
---------------------
GMAIL_PUBSUB_TOPIC          Topic passed to users.watch (required for /watch/start).
PUBSUB_VERIFICATION_TOKEN   When set, pushes must carry ``?token=<value>``.

Endpoints:
  POST /pubsub/webhook    — Pub/Sub push (no auth; always 204)
  POST /token             — store the caller's refresh token (auth: JWT)
  POST /messages/recent   — five most recent messages (auth: JWT)
  POST /watch/start       — start push notifications (auth: JWT)
  POST /watch/stop        — stop push notifications (auth: JWT)
"""

import asyncio
import hmac
import logging
import os
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Request, Response

from app.auth import get_current_user_email
from app.errors import ApiError
from app.models.gmail import RecentMessagesResponse, WatchStartResponse, WatchStopResponse
from app.services import gmail_client
from app.services.gmail_client import GmailApiError, GmailClient
from app.services.gmail_credentials import (
    CredentialNotFoundError,
    StoredAccessTokenError,
    mint_access_token,
)
from app.services.google_oauth import CredentialExchangeError, OAuthConfigError
from app.services.message_decoder import fetch_message_summary
from app.services.push_pipeline import (
    MalformedPushError,
    NotificationDispatcher,
    decode_push_envelope,
    get_dispatcher,
)
from app.services.token_store import CredentialStore, get_credential_store

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_RECENT_MESSAGE_LIMIT = 5
_WATCH_LABEL_IDS = ["INBOX"]

_REAUTH_HINT = "Re-login so a Google refresh token can be stored."


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _to_api_error(exc: Exception, failure: str) -> ApiError:
    """
    Translate a service-layer exception into the caller-facing error.

    ``failure`` is the generic message for upstream and unexpected errors,
    e.g. "Failed to start Gmail watch".
    """
    if isinstance(exc, CredentialNotFoundError):
        return ApiError(404, "No stored Gmail token found for user")
    if isinstance(exc, StoredAccessTokenError):
        return ApiError(400, "Stored token is an access token; expected refresh token", _REAUTH_HINT)
    if isinstance(exc, OAuthConfigError):
        return ApiError(500, failure, str(exc))
    if isinstance(exc, CredentialExchangeError):
        return ApiError(502, "Failed to exchange Gmail refresh token", exc.detail or str(exc))
    if isinstance(exc, GmailApiError):
        return ApiError(502, failure, exc.detail)
    if isinstance(exc, httpx.TransportError):
        return ApiError(502, failure, str(exc))

    logger.exception(failure)
    return ApiError(500, failure, str(exc))


def _get_verification_token() -> str:
    return os.getenv("PUBSUB_VERIFICATION_TOKEN", "").strip()


def _as_optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


# ---------------------------------------------------------------------------
# Pub/Sub webhook
# ---------------------------------------------------------------------------

@router.post("/pubsub/webhook", status_code=204)
async def pubsub_webhook(
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Receive a Gmail push from Pub/Sub.

    Always 204. Valid notifications are handed to the dispatcher and
    processed after this response has been sent.
    """
    expected_token = _get_verification_token()
    if expected_token:
        provided = request.query_params.get("token", "")
        if not hmac.compare_digest(provided.encode(), expected_token.encode()):
            logger.warning("Dropping Gmail push with missing or invalid verification token")
            return Response(status_code=204)

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Dropping Gmail push with a non-JSON body")
        return Response(status_code=204)

    try:
        envelope, notification = decode_push_envelope(payload)
    except MalformedPushError as exc:
        logger.error(f"Failed to decode Gmail push: {exc}")
        return Response(status_code=204)

    logger.info(
        "Gmail push received subscription=%s messageId=%s publishTime=%s emailAddress=%s historyId=%s",
        envelope.subscription,
        envelope.message.message_id,
        envelope.message.publish_time,
        notification.email_address,
        notification.history_id,
    )

    # Acknowledged from here on; processing continues after the response
    dispatcher.submit(notification, store)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Token submission
# ---------------------------------------------------------------------------

@router.post("/token", status_code=204)
async def save_token(
    request: Request,
    email: str = Depends(get_current_user_email),
    store: CredentialStore = Depends(get_credential_store),
):
    """Persist the caller's Gmail refresh token. Requires authentication."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    token = body.get("token") if isinstance(body, dict) else None
    if not token or not isinstance(token, str):
        raise ApiError(400, "Request body must include token string")

    try:
        store.put(email, token)
    except Exception as exc:
        logger.exception(f"Failed to save Gmail token for {email}")
        raise ApiError(500, "Failed to save Gmail token", str(exc))

    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Recent messages
# ---------------------------------------------------------------------------

@router.post("/messages/recent", response_model=RecentMessagesResponse)
async def list_recent_messages(
    email: str = Depends(get_current_user_email),
    store: CredentialStore = Depends(get_credential_store),
):
    """
    Return headers and snippets of the caller's five most recent messages.

    The per-message fetches run concurrently; a message that fails to load
    shows up with "(failed to load)" placeholders instead of failing the call.
    """
    try:
        async with gmail_client.create_http_client() as http_client:
            access_token = await mint_access_token(store, email, http_client)
            client = GmailClient(http_client, access_token)

            listing = await client.list_messages(_RECENT_MESSAGE_LIMIT)
            message_ids = [m.get("id") for m in listing.get("messages") or [] if m.get("id")]

            summaries = await asyncio.gather(
                *(fetch_message_summary(client, message_id) for message_id in message_ids)
            )
    except Exception as exc:
        raise _to_api_error(exc, "Failed to list Gmail messages")

    emails = [summary.as_record() for summary in summaries]
    return RecentMessagesResponse(emails=emails, count=len(emails))


# ---------------------------------------------------------------------------
# Watch lifecycle
# ---------------------------------------------------------------------------

@router.post("/watch/start", response_model=WatchStartResponse)
async def start_watch(
    email: str = Depends(get_current_user_email),
    store: CredentialStore = Depends(get_credential_store),
):
    """Ask Gmail to publish INBOX changes for the caller to GMAIL_PUBSUB_TOPIC."""
    topic = os.getenv("GMAIL_PUBSUB_TOPIC", "").strip()
    if not topic:
        raise ApiError(500, "Missing GMAIL_PUBSUB_TOPIC", "Set GMAIL_PUBSUB_TOPIC in backend/.env")

    try:
        async with gmail_client.create_http_client() as http_client:
            access_token = await mint_access_token(store, email, http_client)
            watch = await GmailClient(http_client, access_token).watch(topic, _WATCH_LABEL_IDS)
    except Exception as exc:
        raise _to_api_error(exc, "Failed to start Gmail watch")

    logger.info(f"Gmail watch started for {email} expiration={watch.get('expiration')}")
    return WatchStartResponse(
        email=email,
        topic=topic,
        history_id=_as_optional_str(watch.get("historyId")),
        expiration=_as_optional_str(watch.get("expiration")),
    )


@router.post("/watch/stop", response_model=WatchStopResponse)
async def stop_watch(
    email: str = Depends(get_current_user_email),
    store: CredentialStore = Depends(get_credential_store),
):
    """Stop push notifications for the caller's mailbox."""
    try:
        async with gmail_client.create_http_client() as http_client:
            access_token = await mint_access_token(store, email, http_client)
            await GmailClient(http_client, access_token).stop()
    except Exception as exc:
        raise _to_api_error(exc, "Failed to stop Gmail watch")

    logger.info(f"Gmail watch stopped for {email}")
    return WatchStopResponse(email=email, stopped=True)
