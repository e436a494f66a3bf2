"""
Gmail push-notification pipeline.

Flow for one Pub/Sub delivery::

    Received -> Acknowledged -> ReconciliationStarted -> Completed | Failed

The router acknowledges (204) before any of the work below happens, then
hands the decoded notification to ``NotificationDispatcher.submit``. From
that point on nothing is reported back to Pub/Sub: every failure ends as a
log line and the notification is dropped. There is no retry and no
dead-letter queue.

Concurrent runs for the same mailbox are allowed. Two overlapping runs log
the same message twice, which is harmless because nothing is persisted.

Environment variables
---------------------
GMAIL_SYNC_MAX_INFLIGHT   Max notifications processed at once (default: 8).
"""

import asyncio
import json
import logging
import os
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from app.models.gmail import GmailPushNotification, NormalizedMessage, PubSubPushEnvelope
from app.services import gmail_client
from app.services.gmail_client import GmailApiError, GmailClient
from app.services.gmail_credentials import (
    CredentialNotFoundError,
    StoredAccessTokenError,
    mint_access_token,
)
from app.services.google_oauth import CredentialExchangeError, OAuthConfigError
from app.services.history_sync import reconcile
from app.services.message_decoder import decode_base64url, fetch_and_decode
from app.services.token_store import CredentialStore

logger = logging.getLogger(__name__)

_DEFAULT_MAX_INFLIGHT = 8

MessageSink = Callable[[str, NormalizedMessage], None]


class MalformedPushError(Exception):
    """The push body could not be turned into a GmailPushNotification."""


# ---------------------------------------------------------------------------
# Envelope decoding
# ---------------------------------------------------------------------------

def decode_push_envelope(payload: Any) -> tuple[PubSubPushEnvelope, GmailPushNotification]:
    """
    Unwrap a Pub/Sub push body into the Gmail notification it carries.

    ``message.data`` is base64 of a JSON object; both the standard and the
    URL-safe alphabet are accepted.

    Raises:
        MalformedPushError: missing data, bad base64, non-JSON or non-object payload.
    """
    if not isinstance(payload, dict):
        raise MalformedPushError("Push body is not a JSON object")

    try:
        envelope = PubSubPushEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPushError(f"Invalid push envelope: {exc.error_count()} error(s)") from exc

    data = envelope.message.data if envelope.message else None
    if not data:
        raise MalformedPushError("Push message has no data")

    try:
        decoded = json.loads(decode_base64url(data))
    except ValueError as exc:
        raise MalformedPushError(f"Push data is not base64-encoded JSON: {exc}") from exc

    if not isinstance(decoded, dict):
        raise MalformedPushError("Push data is not a JSON object")

    try:
        notification = GmailPushNotification.model_validate(decoded)
    except ValidationError as exc:
        raise MalformedPushError(f"Invalid Gmail notification: {exc.error_count()} error(s)") from exc

    return envelope, notification


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------

def log_new_message(account: str, message: NormalizedMessage) -> None:
    """Default sink: one log line per newly received message."""
    logger.info(
        "New Gmail message received email=%s message_id=%s from=%s subject=%s date=%s body=%r",
        account,
        message.id,
        message.sender,
        message.subject,
        message.date,
        message.body,
    )


# ---------------------------------------------------------------------------
# Reconciliation run
# ---------------------------------------------------------------------------

async def _sync_mailbox(
    notification: GmailPushNotification,
    store: CredentialStore,
    sink: MessageSink,
    http_client: httpx.AsyncClient,
) -> None:
    account = notification.email_address
    history_id = notification.history_id

    access_token = await mint_access_token(store, account, http_client)
    client = GmailClient(http_client, access_token)

    result = await reconcile(client, account, history_id)
    if not result.message_ids:
        logger.info(
            f"No new messages for {account} since historyId={result.start_history_id}"
        )
        return

    for message_id in result.message_ids:
        try:
            message = await fetch_and_decode(client, message_id)
        except GmailApiError as exc:
            logger.error(
                "Failed to fetch new Gmail message email=%s message_id=%s status=%s detail=%s",
                account,
                message_id,
                exc.status_code,
                exc.detail,
            )
            continue
        except Exception:
            logger.exception(
                f"Failed to decode Gmail message email={account} message_id={message_id}"
            )
            continue

        sink(account, message)


async def process_push_notification(
    notification: GmailPushNotification,
    store: CredentialStore,
    sink: MessageSink = log_new_message,
    http_client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Reconcile one acknowledged notification. Never raises.

    Args:
        notification: Decoded push payload.
        store:        Credential store used to resolve the refresh token.
        sink:         Receives ``(account, NormalizedMessage)`` for each new message.
        http_client:  Optional client; a fresh one is created and closed otherwise.
    """
    account = notification.email_address
    if not account or not notification.history_id:
        logger.info("Ignoring Gmail push without emailAddress or historyId")
        return

    try:
        if http_client is not None:
            await _sync_mailbox(notification, store, sink, http_client)
        else:
            async with gmail_client.create_http_client() as client:
                await _sync_mailbox(notification, store, sink, client)
    except CredentialNotFoundError:
        logger.warning(f"No saved Gmail token for {account}; dropping push")
    except StoredAccessTokenError:
        logger.warning(
            f"Saved Gmail token for {account} is an access token; need refresh token"
        )
    except OAuthConfigError as exc:
        logger.error(f"Cannot sync {account}: {exc}")
    except CredentialExchangeError as exc:
        logger.error(f"Token exchange failed for {account}: {exc} ({exc.detail})")
    except GmailApiError:
        # Already logged with request context by reconcile()
        pass
    except Exception:
        logger.exception(f"Unexpected error while syncing Gmail push for {account}")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def _max_inflight_from_env() -> int:
    raw = os.getenv("GMAIL_SYNC_MAX_INFLIGHT", "").strip()
    if not raw:
        return _DEFAULT_MAX_INFLIGHT
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            f"GMAIL_SYNC_MAX_INFLIGHT must be an integer, got {raw!r}; "
            f"using {_DEFAULT_MAX_INFLIGHT}"
        )
        return _DEFAULT_MAX_INFLIGHT
    return max(1, value)


class NotificationDispatcher:
    """
    Bounded pool for acknowledged notifications.

    ``submit`` is the point where processing detaches from the request: it
    schedules a task and returns immediately. At most ``max_inflight`` runs
    execute at once; the rest wait on the semaphore. Callers never see the
    outcome, but ``drain`` lets tests and shutdown wait for in-flight work.
    """

    def __init__(self, max_inflight: Optional[int] = None, sink: MessageSink = log_new_message):
        if max_inflight is None:
            max_inflight = _max_inflight_from_env()
        self.max_inflight = max(1, max_inflight)
        self.sink = sink
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _run(self, notification: GmailPushNotification, store: CredentialStore) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_inflight)
        async with self._semaphore:
            await process_push_notification(notification, store, sink=self.sink)

    def submit(self, notification: GmailPushNotification, store: CredentialStore) -> asyncio.Task:
        """Schedule processing of ``notification``; must be called from a running loop."""
        task = asyncio.create_task(self._run(notification, store))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every submitted notification has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
