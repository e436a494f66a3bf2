"""
Gmail message fetch and decode.

Turns a Gmail message resource into a NormalizedMessage:

* headers (From / Subject / Date) are looked up case-insensitively; a missing
  header becomes "(none)".
* the body is the first ``text/plain`` part with inline data, found by a
  depth-first walk of the MIME tree. Without one the provider snippet is
  used, and without a snippet the literal "(no body)".

Gmail encodes part bodies as base64url without padding. A part that does not
decode is treated as having no body so a usable sibling can still be found.
"""

import base64
import binascii
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from app.models.gmail import MessageHeader, MessagePart, NormalizedMessage
from app.services.gmail_client import GmailApiError, GmailClient

logger = logging.getLogger(__name__)

NO_BODY = "(no body)"
MISSING_HEADER = "(none)"
FAILED_TO_LOAD = "(failed to load)"

SUMMARY_HEADERS = ["Subject", "From", "Date"]


def decode_base64url(data: str) -> str:
    """
    Decode base64url (padding optional) to text.

    Bytes that are not valid UTF-8 (e.g. a latin-1 body) become U+FFFD
    instead of failing, so the rest of the text survives.

    Raises:
        ValueError: invalid characters or impossible length.
    """
    standard = data.replace("-", "+").replace("_", "/")
    padded = standard + "=" * (-len(standard) % 4)
    raw = base64.b64decode(padded, validate=True)
    return raw.decode("utf-8", errors="replace")


def extract_plain_text_body(part: Optional[MessagePart]) -> Optional[str]:
    """Depth-first search for the first non-empty decoded ``text/plain`` body."""
    if part is None:
        return None

    if part.mime_type == "text/plain" and part.body and part.body.data:
        try:
            return decode_base64url(part.body.data)
        except (binascii.Error, ValueError):
            logger.debug("Skipping text/plain part that failed to decode")
            return None

    for child in part.parts:
        nested = extract_plain_text_body(child)
        if nested:
            return nested

    return None


def pick_header(headers: Optional[list[MessageHeader]], name: str) -> str:
    wanted = name.lower()
    for header in headers or []:
        if header.name and header.name.lower() == wanted:
            return header.value if header.value is not None else MISSING_HEADER
    return MISSING_HEADER


def _root_part(payload: dict[str, Any]) -> MessagePart:
    root = MessagePart.model_validate(payload or {})
    if root.mime_type is None:
        # Older fixtures omit mimeType on the payload itself
        root.mime_type = "multipart/mixed" if root.parts else "text/plain"
    return root


def normalize_full_message(message_id: str, message: dict[str, Any]) -> NormalizedMessage:
    """Build a NormalizedMessage from a ``format=full`` message resource."""
    root = _root_part(message.get("payload") or {})
    body = extract_plain_text_body(root) or message.get("snippet") or NO_BODY

    return NormalizedMessage(
        id=message.get("id") or message_id,
        sender=pick_header(root.headers, "From"),
        subject=pick_header(root.headers, "Subject"),
        date=pick_header(root.headers, "Date"),
        body=body,
    )


async def fetch_and_decode(client: GmailClient, message_id: str) -> NormalizedMessage:
    """
    Fetch one message with ``format=full`` and decode it.

    Raises:
        GmailApiError: the fetch failed. Callers decide whether to skip.
    """
    message = await client.get_message(message_id, fmt="full")
    return normalize_full_message(message_id, message)


def _failed_summary(message_id: str) -> NormalizedMessage:
    return NormalizedMessage(
        id=message_id,
        sender=FAILED_TO_LOAD,
        subject=FAILED_TO_LOAD,
        date=FAILED_TO_LOAD,
        snippet="",
    )


async def fetch_message_summary(client: GmailClient, message_id: str) -> NormalizedMessage:
    """
    Fetch headers and snippet for the listing endpoint.

    A failed fetch yields a placeholder record instead of an error so one
    bad message does not sink the whole batch.
    """
    try:
        message = await client.get_message(
            message_id, fmt="metadata", metadata_headers=SUMMARY_HEADERS
        )
        root = _root_part(message.get("payload") or {})
    except GmailApiError as exc:
        logger.warning(
            f"Failed to load Gmail message {message_id}: status={exc.status_code}"
        )
        return _failed_summary(message_id)
    except httpx.TransportError as exc:
        logger.warning(f"Failed to load Gmail message {message_id}: {exc!r}")
        return _failed_summary(message_id)
    except ValidationError as exc:
        logger.warning(
            f"Failed to load Gmail message {message_id}: malformed payload "
            f"({exc.error_count()} error(s))"
        )
        return _failed_summary(message_id)

    return NormalizedMessage(
        id=message_id,
        sender=pick_header(root.headers, "From"),
        subject=pick_header(root.headers, "Subject"),
        date=pick_header(root.headers, "Date"),
        snippet=message.get("snippet") or "",
    )
