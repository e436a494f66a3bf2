"""
Thin async client for the Gmail REST API.

Every call is a single round trip authorised with a bearer access token.
Non-2xx responses raise ``GmailApiError`` carrying the provider's error
object so caller-facing endpoints can pass it through as ``detail``.

No retries and no timeout overrides: the httpx defaults apply.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"


def create_http_client() -> httpx.AsyncClient:
    """Build the AsyncClient used for all outbound Google calls."""
    return httpx.AsyncClient()


class GmailApiError(Exception):
    """A Gmail API call returned a non-success status."""

    def __init__(self, operation: str, status_code: int, detail: Optional[Any] = None):
        super().__init__(f"Gmail {operation} failed with status {status_code}")
        self.operation = operation
        self.status_code = status_code
        self.detail = detail


def _error_detail(response: httpx.Response) -> Optional[Any]:
    """Return the provider ``error`` object, or the whole body when it has none."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("error") is not None:
        return payload["error"]
    return payload


class GmailClient:
    def __init__(self, http_client: httpx.AsyncClient, access_token: str):
        self._http = http_client
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Any] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self._http.request(
            method,
            f"{GMAIL_API_BASE}{path}",
            params=params,
            json=json,
            headers=self._headers,
        )
        if response.is_error:
            raise GmailApiError(operation, response.status_code, _error_detail(response))

        try:
            payload = response.json()
        except ValueError:
            # users.stop answers with an empty body
            return {}
        return payload if isinstance(payload, dict) else {}

    async def list_history(
        self, start_history_id: str, page_token: Optional[str] = None
    ) -> dict[str, Any]:
        """Fetch one page of users.history.list."""
        params = {"startHistoryId": start_history_id}
        if page_token:
            params["pageToken"] = page_token
        return await self._request("history.list", "GET", "/history", params=params)

    async def get_message(
        self,
        message_id: str,
        fmt: str = "full",
        metadata_headers: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        params: list[tuple[str, str]] = [("format", fmt)]
        for header in metadata_headers or []:
            params.append(("metadataHeaders", header))
        return await self._request("messages.get", "GET", f"/messages/{message_id}", params=params)

    async def list_messages(self, max_results: int) -> dict[str, Any]:
        return await self._request(
            "messages.list", "GET", "/messages", params={"maxResults": max_results}
        )

    async def watch(self, topic_name: str, label_ids: list[str]) -> dict[str, Any]:
        return await self._request(
            "watch",
            "POST",
            "/watch",
            json={
                "topicName": topic_name,
                "labelIds": label_ids,
                "labelFilterBehavior": "INCLUDE",
            },
        )

    async def stop(self) -> dict[str, Any]:
        return await self._request("stop", "POST", "/stop")
