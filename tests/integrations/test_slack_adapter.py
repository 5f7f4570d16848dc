"""
Unit Tests for the Slack Source Adapter

The Slack WebClient is replaced by a MagicMock through client_factory.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import hashlib
import hmac
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from slack_sdk.errors import SlackApiError

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
)
from threadrouter.integrations.slack import SlackSourceAdapter, parse_permalink, parse_thread_ref
from threadrouter.models.records import DiscussionStatus

CREDENTIALS = {"bot_token": "xoxb-test"}
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeSlackResponse(dict):
    """dict-like stand-in for SlackResponse carrying an HTTP status."""

    def __init__(self, data, status_code=200):
        super().__init__(data)
        self.status_code = status_code


def slack_error(code, status_code=200):
    return SlackApiError(code, FakeSlackResponse({"ok": False, "error": code}, status_code))


def sign(body: bytes, secret: str, timestamp: int) -> str:
    base = f"v0:{timestamp}:".encode() + body
    return "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()


def event_payload(**event_overrides):
    event = {
        "type": "message",
        "channel": "C123",
        "user": "U1",
        "text": "Checkout button is misaligned <@U2>\nmore details",
        "ts": "1704110400.000100",
        "channel_type": "channel",
    }
    event.update(event_overrides)
    return {
        "type": "event_callback",
        "team_id": "T1",
        "event_id": "Ev1",
        "event": event,
    }


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def adapter(client):
    return SlackSourceAdapter(client_factory=lambda token: client)


# Verification


def test_valid_signature_is_accepted(adapter):
    body = b'{"type":"event_callback"}'
    ts = int(NOW.timestamp())
    headers = {
        "x-slack-signature": sign(body, "secret", ts),
        "x-slack-request-timestamp": str(ts),
    }

    adapter.verify_request(headers, body, "secret", now=NOW)


def test_tampered_body_is_rejected(adapter):
    ts = int(NOW.timestamp())
    headers = {
        "X-Slack-Signature": sign(b"original", "secret", ts),
        "X-Slack-Request-Timestamp": str(ts),
    }

    with pytest.raises(SignatureVerificationError):
        adapter.verify_request(headers, b"tampered", "secret", now=NOW)


def test_stale_timestamp_is_rejected(adapter):
    body = b"{}"
    ts = int(NOW.timestamp()) - 301
    headers = {
        "X-Slack-Signature": sign(body, "secret", ts),
        "X-Slack-Request-Timestamp": str(ts),
    }

    with pytest.raises(SignatureVerificationError):
        adapter.verify_request(headers, body, "secret", now=NOW)


def test_url_verification_challenge(adapter):
    assert adapter.challenge_response({"type": "url_verification", "challenge": "abc"}) == {
        "challenge": "abc"
    }
    assert adapter.challenge_response(event_payload()) is None


def test_retry_delivery_header(adapter):
    assert adapter.is_retry_delivery({"X-Slack-Retry-Num": "1"})
    assert adapter.is_retry_delivery({"x-slack-retry-num": "2"})
    assert not adapter.is_retry_delivery({})


# Parsing


def test_parse_top_level_message(adapter):
    parsed = adapter.parse_incoming(event_payload())

    assert parsed.platform == "slack"
    assert parsed.workspace_id == "T1"
    assert parsed.source_thread_id == "C123:1704110400.000100"
    assert parsed.author_handle == "U1"
    assert parsed.title == "Checkout button is misaligned"
    assert parsed.participants == ["U1", "U2"]
    assert parsed.metadata["event_id"] == "Ev1"
    assert "channel=C123" in parsed.source_url


def test_parse_converts_emoji_shortcodes(adapter):
    parsed = adapter.parse_incoming(event_payload(text=":fire: Checkout is down :custom_logo:"))

    assert parsed.content == "🔥 Checkout is down :custom_logo:"
    assert parsed.title == "🔥 Checkout is down :custom_logo:"


def test_parse_reply_uses_thread_root(adapter):
    parsed = adapter.parse_incoming(event_payload(thread_ts="1704100000.000001"))

    assert parsed.source_thread_id == "C123:1704100000.000001"


@pytest.mark.parametrize(
    "payload",
    [
        event_payload(bot_id="B1"),
        event_payload(subtype="message_changed"),
        event_payload(type="reaction_added"),
        {"type": "app_rate_limited"},
    ],
)
def test_non_human_events_are_ignored(adapter, payload):
    with pytest.raises(IgnoredEvent):
        adapter.parse_incoming(payload)


def test_missing_fields_are_rejected(adapter):
    with pytest.raises(AdapterError):
        adapter.parse_incoming(event_payload(text="  "))

    payload = event_payload()
    del payload["team_id"]
    with pytest.raises(AdapterError):
        adapter.parse_incoming(payload)


# Outbound calls


@pytest.mark.asyncio
async def test_fetch_thread_follows_pagination(adapter, client):
    client.conversations_replies.side_effect = [
        {
            "messages": [
                {"ts": "1704110400.000100", "user": "U1", "text": "root"},
                {"ts": "1704110500.000100", "user": "U2", "text": "reply 1"},
            ],
            "has_more": True,
            "response_metadata": {"next_cursor": "cur2"},
        },
        {
            "messages": [{"ts": "1704110600.000100", "user": "U1", "text": "reply 2"}],
            "has_more": False,
        },
    ]

    thread = await adapter.fetch_thread("C123:1704110400.000100", CREDENTIALS)

    assert thread.root_message.content == "root"
    assert [r.content for r in thread.replies] == ["reply 1", "reply 2"]
    assert thread.participants == ["U1", "U2"]
    second_call = client.conversations_replies.call_args_list[1]
    assert second_call.kwargs["cursor"] == "cur2"
    assert second_call.kwargs["channel"] == "C123"


@pytest.mark.asyncio
async def test_fetch_thread_maps_permanent_errors(adapter, client):
    client.conversations_replies.side_effect = slack_error("channel_not_found", 404)

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("C123:1.0", CREDENTIALS)

    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_fetch_thread_rate_limit_is_retryable(adapter, client):
    client.conversations_replies.side_effect = slack_error("ratelimited", 429)

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("C123:1.0", CREDENTIALS)

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_fetch_empty_thread(adapter, client):
    client.conversations_replies.return_value = {"messages": [], "has_more": False}

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("C123:1.0", CREDENTIALS)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_missing_bot_token(adapter):
    with pytest.raises(AdapterError, match="bot_token"):
        await adapter.fetch_thread("C123:1.0", {})


@pytest.mark.asyncio
async def test_post_reply_in_thread(adapter, client):
    await adapter.post_reply("C123:1.0", "✅ done", CREDENTIALS)

    client.chat_postMessage.assert_called_once_with(
        channel="C123", thread_ts="1.0", text="✅ done", unfurl_links=False
    )


@pytest.mark.asyncio
async def test_update_status_adds_reaction(adapter, client):
    await adapter.update_status("C123:1.0", DiscussionStatus.COMPLETED, CREDENTIALS)

    client.reactions_add.assert_called_once_with(
        channel="C123", timestamp="1.0", name="white_check_mark"
    )


@pytest.mark.asyncio
async def test_update_status_ignores_already_reacted(adapter, client):
    client.reactions_add.side_effect = slack_error("already_reacted")

    await adapter.update_status("C123:1.0", DiscussionStatus.PROCESSING, CREDENTIALS)


@pytest.mark.asyncio
async def test_lookup_user_email(adapter, client):
    client.users_info.return_value = {"user": {"profile": {"email": "alice@example.com"}}}

    assert await adapter.lookup_user_email("U1", CREDENTIALS) == "alice@example.com"

    client.users_info.side_effect = slack_error("user_not_found")
    assert await adapter.lookup_user_email("U1", CREDENTIALS) is None


@pytest.mark.asyncio
async def test_validate_credentials(adapter, client):
    client.auth_test.return_value = {"team": "Acme"}

    result = await adapter.validate_credentials({"bot_token": "bad-prefix"})

    assert result.valid
    assert result.warnings

    empty = await adapter.validate_credentials({})
    assert not empty.valid


# Thread references


def test_parse_thread_ref():
    ref = parse_thread_ref("C123:1704110400.000100")
    assert (ref.channel_id, ref.thread_ts) == ("C123", "1704110400.000100")
    assert str(ref) == "C123:1704110400.000100"

    with pytest.raises(ValueError):
        parse_thread_ref("no-separator")


def test_parse_permalink():
    ref = parse_permalink("https://acme.slack.com/archives/C123ABC/p1704110400000100")

    assert ref.channel_id == "C123ABC"
    assert ref.thread_ts == "1704110400.000100"
