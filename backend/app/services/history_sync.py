"""
History reconciliation: notification cursor -> newly added message ids.

A Gmail push only says "mailbox X changed at historyId N". To find out what
changed, page through users.history.list and collect every ``messagesAdded``
entry.

history.list returns changes *after* ``startHistoryId``, while the
notification names the point *at* which the change happened, so the run
starts one before the notified cursor. Cursors can exceed 2**53; they are
handled as Python ints (arbitrary precision) and passed around as strings.

A failing page aborts the whole run. Nothing partial is returned and nothing
is retried here.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from app.services.gmail_client import GmailApiError, GmailClient

logger = logging.getLogger(__name__)

_NUMERIC_CURSOR = re.compile(r"[0-9]+")


@dataclass
class HistorySyncResult:
    start_history_id: str
    latest_history_id: Optional[str]
    message_ids: list[str] = field(default_factory=list)
    pages_fetched: int = 0


def compute_start_history_id(history_id: str) -> str:
    """
    Return the cursor to pass as ``startHistoryId``.

    ``N - 1`` for numeric cursors greater than 1; the input unchanged for 0,
    1 and anything that is not a plain decimal integer.
    """
    if not _NUMERIC_CURSOR.fullmatch(history_id):
        logger.warning(f"History id {history_id!r} is not numeric; using it unchanged")
        return history_id

    value = int(history_id)
    if value > 1:
        return str(value - 1)
    return history_id


def extract_added_message_ids(records: list[dict[str, Any]]) -> list[str]:
    """
    Flatten ``messagesAdded`` across history records into distinct message ids.

    A message can show up in several records; the first occurrence wins so
    the result keeps arrival order.
    """
    seen: dict[str, None] = {}
    for record in records:
        for added in record.get("messagesAdded") or []:
            message = added.get("message") or {}
            message_id = message.get("id")
            if message_id:
                seen.setdefault(message_id, None)
    return list(seen)


async def reconcile(client: GmailClient, account: str, history_id: str) -> HistorySyncResult:
    """
    Page through the change log from the notification cursor.

    Args:
        client:     Gmail client authorised for ``account``.
        account:    Mailbox address (used for log context only).
        history_id: Cursor from the push notification.

    Returns:
        HistorySyncResult with de-duplicated message ids in first-seen order.
        An empty ``message_ids`` list is normal (label or flag changes).

    Raises:
        GmailApiError: the first non-2xx page; the run is abandoned.
    """
    start_history_id = compute_start_history_id(history_id)
    result = HistorySyncResult(
        start_history_id=start_history_id,
        latest_history_id=history_id,
    )

    records: list[dict[str, Any]] = []
    page_token: Optional[str] = None

    while True:
        try:
            page = await client.list_history(start_history_id, page_token)
        except GmailApiError as exc:
            logger.error(
                "Gmail history.list failed email=%s startHistoryId=%s status=%s detail=%s",
                account,
                start_history_id,
                exc.status_code,
                exc.detail,
            )
            raise

        result.pages_fetched += 1
        records.extend(page.get("history") or [])

        if page.get("historyId") is not None:
            result.latest_history_id = str(page["historyId"])

        page_token = page.get("nextPageToken")
        if not page_token:
            break

    result.message_ids = extract_added_message_ids(records)

    logger.info(
        "History sync finished email=%s startHistoryId=%s latestHistoryId=%s pages=%d new_messages=%d",
        account,
        start_history_id,
        result.latest_history_id,
        result.pages_fetched,
        len(result.message_ids),
    )
    return result
