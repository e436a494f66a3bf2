"""
Shared fixtures for the Gmail backend tests.

All Google traffic goes through ``FakeGoogle.handler`` mounted on an
``httpx.MockTransport``; no test talks to the network.
"""

import base64
import os
from typing import Any, Optional
from urllib.parse import parse_qs

import httpx
import pytest

# Ensure env vars are set before importing anything that triggers app imports
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

from app.services.google_oauth import GOOGLE_TOKEN_URL
from app.services.token_store import normalize_account


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def b64url(text: str) -> str:
    """Encode text the way Gmail encodes part bodies (URL-safe, no padding)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode().rstrip("=")


def text_part(text: str, mime_type: str = "text/plain") -> dict:
    return {"mimeType": mime_type, "body": {"data": b64url(text)}}


def multipart(*parts: dict, mime_type: str = "multipart/alternative") -> dict:
    return {"mimeType": mime_type, "body": {"size": 0}, "parts": list(parts)}


def full_message(
    message_id: str,
    payload: dict,
    headers: Optional[list[dict]] = None,
    snippet: Optional[str] = None,
) -> dict:
    payload = dict(payload)
    payload["headers"] = headers if headers is not None else [
        {"name": "From", "value": "Alice <alice@example.com>"},
        {"name": "Subject", "value": "Hi there"},
        {"name": "Date", "value": "Mon, 6 Jan 2025 10:00:00 +0000"},
    ]
    message = {"id": message_id, "threadId": f"t-{message_id}", "payload": payload}
    if snippet is not None:
        message["snippet"] = snippet
    return message


class InMemoryCredentialStore:
    """Dict-backed stand-in for FileCredentialStore."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.tokens: dict[str, str] = {}
        for account, credential in (initial or {}).items():
            self.put(account, credential)

    def get(self, account: str) -> Optional[str]:
        return self.tokens.get(normalize_account(account))

    def put(self, account: str, credential: str) -> None:
        self.tokens[normalize_account(account)] = credential.strip()


def _respond(canned: Any) -> httpx.Response:
    """A dict means 200 + JSON; a (status, body) tuple sets the status too."""
    if isinstance(canned, tuple):
        status, body = canned
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)
    return httpx.Response(200, json=canned)


class FakeGoogle:
    """
    Scriptable OAuth + Gmail backend.

    Attributes hold the canned response per endpoint; ``requests`` records
    every request in arrival order.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token: Any = {"access_token": "b-xyz", "expires_in": 3599, "token_type": "Bearer"}
        self.history_pages: list[Any] = [{"historyId": "100"}]
        self.messages: dict[str, Any] = {}
        self.message_list: Any = {"messages": []}
        self.watch: Any = {"historyId": "4242", "expiration": "1767225600000"}
        self.stop: Any = (204, None)

    # -- request views --------------------------------------------------

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == GOOGLE_TOKEN_URL]

    @property
    def history_requests(self) -> list[httpx.Request]:
        return self.requests_to("/history")

    def token_form(self, index: int = 0) -> dict[str, str]:
        form = parse_qs(self.token_requests[index].content.decode())
        return {key: values[0] for key, values in form.items()}

    # -- transport ------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if str(request.url) == GOOGLE_TOKEN_URL:
            return _respond(self.token)

        path = request.url.path
        if path.endswith("/history"):
            index = len(self.history_requests) - 1
            return _respond(self.history_pages[index])
        if path.endswith("/messages"):
            return _respond(self.message_list)
        if "/messages/" in path:
            message_id = path.rsplit("/", 1)[-1]
            if message_id not in self.messages:
                return _respond((404, {"error": {"code": 404, "message": "Not Found"}}))
            canned = self.messages[message_id]
            if isinstance(canned, Exception):
                raise canned
            return _respond(canned)
        if path.endswith("/watch"):
            return _respond(self.watch)
        if path.endswith("/stop"):
            return _respond(self.stop)

        return httpx.Response(500, json={"error": f"unexpected request {request.url}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def gmail_env(monkeypatch):
    """OAuth client configured; optional Gmail settings unset unless a test sets them."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.delenv("GMAIL_PUBSUB_TOPIC", raising=False)
    monkeypatch.delenv("PUBSUB_VERIFICATION_TOKEN", raising=False)
    monkeypatch.delenv("GMAIL_SYNC_MAX_INFLIGHT", raising=False)


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore({"a@b.com": "r-abc"})
