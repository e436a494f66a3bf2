"""
Message decoding tests: base64url, MIME walk, header lookup, fetch helpers.
"""

import base64

import httpx
import pytest

from app.models.gmail import MessageHeader, MessagePart
from app.services.gmail_client import GmailApiError, GmailClient
from app.services.message_decoder import (
    decode_base64url,
    extract_plain_text_body,
    fetch_and_decode,
    fetch_message_summary,
    normalize_full_message,
    pick_header,
)
from conftest import b64url, full_message, multipart, text_part


class TestDecodeBase64Url:

    @pytest.mark.parametrize("text", ["", "a", "ab", "abc", "abcd", "Hello, world!"])
    def test_unpadded_round_trip_for_every_length_mod_4(self, text):
        encoded = base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")
        assert decode_base64url(encoded) == text

    def test_url_safe_alphabet(self):
        # bytes chosen so the standard encoding contains both '+' and '/'
        text = "subjects?>>>~~~"
        standard = base64.b64encode(text.encode()).decode()
        assert "+" in standard or "/" in standard
        assert decode_base64url(b64url(text)) == text

    def test_accepts_standard_padded_input(self):
        assert decode_base64url(base64.b64encode(b"Hello").decode()) == "Hello"

    def test_unicode_text(self):
        assert decode_base64url(b64url("Grüße 👋")) == "Grüße 👋"

    def test_non_utf8_bytes_are_replaced_not_rejected(self):
        encoded = base64.urlsafe_b64encode("Café au lait".encode("latin-1")).decode().rstrip("=")
        assert decode_base64url(encoded) == "Caf\ufffd au lait"

    @pytest.mark.parametrize("bad", ["!!!!", "abcde", "a"])
    def test_invalid_input_raises_value_error(self, bad):
        with pytest.raises(ValueError):
            decode_base64url(bad)


class TestExtractPlainTextBody:

    def _part(self, raw: dict) -> MessagePart:
        return MessagePart.model_validate(raw)

    def test_plain_text_root(self):
        assert extract_plain_text_body(self._part(text_part("Hello"))) == "Hello"

    def test_prefers_plain_over_html_sibling(self):
        part = multipart(text_part("<p>Hi</p>", "text/html"), text_part("Hi"))
        assert extract_plain_text_body(self._part(part)) == "Hi"

    def test_deeply_nested_plain_text_leaf(self):
        part = multipart(
            text_part("<b>x</b>", "text/html"),
            multipart(
                multipart(
                    multipart(text_part("deep body"), mime_type="multipart/alternative"),
                    mime_type="multipart/related",
                ),
                mime_type="multipart/mixed",
            ),
            mime_type="multipart/mixed",
        )
        assert extract_plain_text_body(self._part(part)) == "deep body"

    def test_first_plain_text_part_wins(self):
        part = multipart(text_part("first"), text_part("second"))
        assert extract_plain_text_body(self._part(part)) == "first"

    def test_corrupt_part_falls_back_to_sibling(self):
        corrupt = {"mimeType": "text/plain", "body": {"data": "!!!not-base64!!!"}}
        part = multipart(corrupt, text_part("usable"))
        assert extract_plain_text_body(self._part(part)) == "usable"

    def test_empty_decoded_body_keeps_searching(self):
        empty = {"mimeType": "text/plain", "body": {"data": ""}}
        part = multipart(empty, text_part("later"))
        assert extract_plain_text_body(self._part(part)) == "later"

    def test_plain_text_without_inline_data_is_skipped(self):
        attachment = {"mimeType": "text/plain", "filename": "notes.txt", "body": {"attachmentId": "att-1", "size": 10}}
        assert extract_plain_text_body(self._part(multipart(attachment))) is None

    def test_mime_type_must_match_exactly(self):
        part = multipart(text_part("nope", "text/plain; charset=utf-8"), text_part("html", "text/html"))
        assert extract_plain_text_body(self._part(part)) is None

    def test_none_part(self):
        assert extract_plain_text_body(None) is None


class TestPickHeader:

    def test_case_insensitive(self):
        headers = [MessageHeader(name="SUBJECT", value="Quarterly numbers")]
        assert pick_header(headers, "Subject") == "Quarterly numbers"

    def test_missing_header_placeholder(self):
        assert pick_header([MessageHeader(name="From", value="x")], "Subject") == "(none)"
        assert pick_header(None, "Subject") == "(none)"

    def test_empty_value_is_kept(self):
        assert pick_header([MessageHeader(name="Subject", value="")], "Subject") == ""


class TestNormalizeFullMessage:

    def test_body_from_nested_plain_text(self):
        message = full_message("m1", multipart(text_part("<i>x</i>", "text/html"), text_part("Body")))
        normalized = normalize_full_message("m1", message)

        assert normalized.as_record() == {
            "id": "m1",
            "from": "Alice <alice@example.com>",
            "subject": "Hi there",
            "date": "Mon, 6 Jan 2025 10:00:00 +0000",
            "body": "Body",
        }

    def test_snippet_when_no_plain_text_anywhere(self):
        message = full_message("m2", multipart(text_part("<p>only html</p>", "text/html")), snippet="only html")
        assert normalize_full_message("m2", message).body == "only html"

    def test_no_body_placeholder_without_snippet(self):
        message = full_message("m3", multipart(text_part("<p>only html</p>", "text/html")))
        assert normalize_full_message("m3", message).body == "(no body)"

    def test_single_part_payload_without_mime_type(self):
        message = {"id": "m4", "payload": {"body": {"data": b64url("bare body")}}}
        normalized = normalize_full_message("m4", message)

        assert normalized.body == "bare body"
        assert normalized.subject == "(none)"

    def test_latin1_plain_text_body_is_kept_over_snippet(self):
        latin1 = base64.urlsafe_b64encode("Café au lait".encode("latin-1")).decode().rstrip("=")
        part = {"mimeType": "text/plain", "body": {"data": latin1}}
        message = full_message("m7", multipart(part), snippet="snip")

        body = normalize_full_message("m7", message).body

        assert body == "Caf\ufffd au lait"

    def test_html_only_single_part_payload_uses_snippet(self):
        message = full_message("m5", text_part("<p>hi</p>", "text/html"), snippet="hi")
        assert normalize_full_message("m5", message).body == "hi"

    def test_missing_payload(self):
        normalized = normalize_full_message("m6", {"id": "m6"})
        assert normalized.body == "(no body)"
        assert normalized.sender == "(none)"


class TestFetchHelpers:

    @pytest.mark.asyncio
    async def test_fetch_and_decode_requests_full_format(self, fake_google):
        fake_google.messages["msg1"] = full_message("msg1", text_part("Hello"))

        async with fake_google.client() as http:
            message = await fetch_and_decode(GmailClient(http, "b-xyz"), "msg1")

        assert message.body == "Hello"
        request = fake_google.requests_to("/messages/msg1")[0]
        assert request.url.params["format"] == "full"

    @pytest.mark.asyncio
    async def test_fetch_and_decode_raises_on_upstream_error(self, fake_google):
        async with fake_google.client() as http:
            with pytest.raises(GmailApiError) as exc_info:
                await fetch_and_decode(GmailClient(http, "b-xyz"), "missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_summary_requests_metadata_headers(self, fake_google):
        fake_google.messages["m1"] = {
            "id": "m1",
            "snippet": "See you soon",
            "payload": {"headers": [
                {"name": "Subject", "value": "Lunch"},
                {"name": "From", "value": "bob@example.com"},
                {"name": "Date", "value": "Tue, 7 Jan 2025 12:00:00 +0000"},
            ]},
        }

        async with fake_google.client() as http:
            summary = await fetch_message_summary(GmailClient(http, "b-xyz"), "m1")

        assert summary.as_record() == {
            "id": "m1",
            "from": "bob@example.com",
            "subject": "Lunch",
            "date": "Tue, 7 Jan 2025 12:00:00 +0000",
            "snippet": "See you soon",
        }
        params = fake_google.requests_to("/messages/m1")[0].url.params
        assert params["format"] == "metadata"
        assert params.get_list("metadataHeaders") == ["Subject", "From", "Date"]

    @pytest.mark.asyncio
    async def test_summary_failure_becomes_placeholder(self, fake_google):
        async with fake_google.client() as http:
            summary = await fetch_message_summary(GmailClient(http, "b-xyz"), "gone")

        assert summary.as_record() == {
            "id": "gone",
            "from": "(failed to load)",
            "subject": "(failed to load)",
            "date": "(failed to load)",
            "snippet": "",
        }

    @pytest.mark.asyncio
    async def test_summary_transport_error_becomes_placeholder(self, fake_google):
        fake_google.messages["flaky"] = httpx.ConnectError("connection reset")

        async with fake_google.client() as http:
            summary = await fetch_message_summary(GmailClient(http, "b-xyz"), "flaky")

        assert summary.sender == "(failed to load)"
        assert summary.snippet == ""

    @pytest.mark.asyncio
    async def test_summary_malformed_payload_becomes_placeholder(self, fake_google):
        fake_google.messages["odd"] = {"id": "odd", "payload": {"headers": "not-a-list"}}

        async with fake_google.client() as http:
            summary = await fetch_message_summary(GmailClient(http, "b-xyz"), "odd")

        assert summary.subject == "(failed to load)"
