"""
Pydantic models for the Gmail push-notification pipeline.

Models:
  PubSubMessage / PubSubPushEnvelope  — outer Pub/Sub push body
  GmailPushNotification               — decoded inner payload (emailAddress, historyId)
  MessagePartBody / MessagePart       — one node of a Gmail MIME part tree
  MessageHeader                       — a single name/value header
  NormalizedMessage                   — flattened result of decoding one message
  RecentMessagesResponse              — on-demand listing response body
  WatchStartResponse / WatchStopResponse
  ErrorResponse                       — {error, detail} body for caller-facing failures

Provider JSON uses camelCase keys; fields are snake_case here with aliases so
that both spellings are accepted on input and the provider spelling is used
on output (FastAPI serializes response models by alias).
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Pub/Sub push envelope
# ---------------------------------------------------------------------------

class PubSubMessage(BaseModel):
    """The ``message`` object inside a Pub/Sub push request."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data: Optional[str] = None          # base64-encoded JSON (GmailPushNotification)
    message_id: Optional[str] = Field(None, alias="messageId")
    publish_time: Optional[str] = Field(None, alias="publishTime")
    attributes: dict[str, str] = {}


class PubSubPushEnvelope(BaseModel):
    """
    Outer body of a Pub/Sub push delivery.

    Only the fields the pipeline reads are modelled; everything else is
    ignored.
    """
    model_config = ConfigDict(extra="ignore")

    message: Optional[PubSubMessage] = None
    subscription: Optional[str] = None


class GmailPushNotification(BaseModel):
    """
    Inner payload of a Gmail push: the account and the change cursor.

    Gmail sends ``historyId`` as a JSON number that can exceed 2**53, so it is
    kept as a string. Python parses JSON integers with arbitrary precision,
    which makes ``str(value)`` lossless.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email_address: Optional[str] = Field(None, alias="emailAddress")
    history_id: Optional[str] = Field(None, alias="historyId")

    @field_validator("history_id", mode="before")
    @classmethod
    def _history_id_as_string(cls, value: Any) -> Any:
        # bool is an int subclass; True/False are not cursors
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# ---------------------------------------------------------------------------
# Gmail message payload
# ---------------------------------------------------------------------------

class MessagePartBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data: Optional[str] = None          # base64url, no padding
    size: Optional[int] = None
    attachment_id: Optional[str] = Field(None, alias="attachmentId")


class MessageHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    value: Optional[str] = None


class MessagePart(BaseModel):
    """
    One node of a Gmail MIME tree.

    The message ``payload`` itself is the root node; ``parts`` holds the
    ordered children of multipart nodes.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    mime_type: Optional[str] = Field(None, alias="mimeType")
    filename: Optional[str] = None
    headers: list[MessageHeader] = []
    body: Optional[MessagePartBody] = None
    parts: list["MessagePart"] = []


MessagePart.model_rebuild()


class NormalizedMessage(BaseModel):
    """
    Flattened representation of one Gmail message.

    The push pipeline fills ``body``; the on-demand listing fills ``snippet``.
    Unset fields are left out of the serialized record.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    sender: str = Field(alias="from")
    subject: str
    date: str
    body: Optional[str] = None
    snippet: Optional[str] = None

    def as_record(self) -> dict[str, Any]:
        """Return the provider-style dict (``from`` key, unset fields dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class RecentMessagesResponse(BaseModel):
    emails: list[dict[str, Any]]
    count: int


class WatchStartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    topic: str
    history_id: Optional[str] = Field(None, alias="historyId")
    expiration: Optional[str] = None


class WatchStopResponse(BaseModel):
    email: str
    stopped: bool = True


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None
