"""
Unit Tests for the Figma Source Adapter

HTTP goes through a mocked requests.Session.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import json
import pytest
import requests
from datetime import datetime, timezone
from unittest.mock import MagicMock

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
)
from threadrouter.integrations.figma import FigmaSourceAdapter, split_thread_ref
from threadrouter.models.records import DiscussionStatus

CREDENTIALS = {"api_token": "figd_test"}
NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.content = json.dumps(body).encode() if body is not None else b""
    resp.json.return_value = body if body is not None else {}
    resp.text = json.dumps(body) if body is not None else ""
    return resp


def comment_webhook(**overrides):
    payload = {
        "event_type": "FILE_COMMENT",
        "passcode": "pass",
        "timestamp": "2024-03-01T09:00:00Z",
        "webhook_id": "hook1",
        "file_key": "FILE1",
        "file_name": "Checkout redesign",
        "comment_id": "c1",
        "comment": [{"text": "Button contrast too low, "}, {"mention": "u2"}, {"text": " can you fix?"}],
        "mentions": [{"id": "u2", "handle": "bob"}],
        "triggered_by": {"id": "u1", "handle": "alice", "email": "alice@example.com"},
        "created_at": "2024-03-01T08:59:58Z",
    }
    payload.update(overrides)
    return payload


COMMENTS = {
    "comments": [
        {"id": "c1", "message": "Root comment", "user": {"id": "u1", "handle": "alice"}, "created_at": "2024-03-01T08:00:00Z"},
        {"id": "c3", "message": "Second reply", "user": {"id": "u1", "handle": "alice"}, "created_at": "2024-03-01T08:10:00Z", "parent_id": "c1"},
        {"id": "c2", "message": "First reply", "user": {"id": "u2", "handle": "bob"}, "created_at": "2024-03-01T08:05:00Z", "parent_id": "c1"},
        {"id": "c9", "message": "Other thread", "user": {"id": "u3", "handle": "carol"}, "created_at": "2024-03-01T07:00:00Z"},
    ]
}


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def adapter(session):
    return FigmaSourceAdapter(session=session)


# Verification


def test_valid_passcode_is_accepted(adapter):
    body = json.dumps(comment_webhook()).encode()

    adapter.verify_request({}, body, "pass", now=NOW)


def test_wrong_passcode_is_rejected(adapter):
    body = json.dumps(comment_webhook(passcode="nope")).encode()

    with pytest.raises(SignatureVerificationError):
        adapter.verify_request({}, body, "pass", now=NOW)


def test_stale_webhook_is_rejected(adapter):
    body = json.dumps(comment_webhook(timestamp="2024-03-01T08:00:00Z")).encode()

    with pytest.raises(SignatureVerificationError):
        adapter.verify_request({}, body, "pass", now=NOW)


def test_non_json_body_is_rejected(adapter):
    with pytest.raises(SignatureVerificationError):
        adapter.verify_request({}, b"not json", "pass", now=NOW)


# Parsing


def test_parse_file_comment(adapter):
    parsed = adapter.parse_incoming(comment_webhook())

    assert parsed.platform == "figma"
    assert parsed.workspace_id == "hook1"
    assert parsed.source_thread_id == "FILE1:c1"
    assert parsed.source_url == "https://www.figma.com/file/FILE1?comment=c1"
    assert parsed.content == "Button contrast too low, @bob can you fix?"
    assert parsed.author_handle == "alice"
    assert parsed.participants == ["alice", "bob"]
    assert parsed.metadata["participant_emails"] == {"alice": "alice@example.com"}


def test_parse_without_author_email(adapter):
    parsed = adapter.parse_incoming(comment_webhook(triggered_by={"id": "u1", "handle": "alice"}))

    assert parsed.metadata["participant_emails"] == {}


def test_ping_is_ignored(adapter):
    with pytest.raises(IgnoredEvent):
        adapter.parse_incoming({"event_type": "PING", "webhook_id": "hook1"})


def test_comment_without_text_is_rejected(adapter):
    with pytest.raises(AdapterError):
        adapter.parse_incoming(comment_webhook(comment=[]))


def test_split_thread_ref():
    assert split_thread_ref("FILE1:c1") == ("FILE1", "c1")
    assert split_thread_ref("FILE1") == ("FILE1", None)
    with pytest.raises(AdapterError):
        split_thread_ref(":c1")


# Outbound calls


@pytest.mark.asyncio
async def test_fetch_thread_orders_replies(adapter, session):
    session.request.return_value = response(body=COMMENTS)

    thread = await adapter.fetch_thread("FILE1:c1", CREDENTIALS)

    assert thread.root_message.content == "Root comment"
    assert [r.content for r in thread.replies] == ["First reply", "Second reply"]
    assert thread.participants == ["alice", "bob"]

    args, kwargs = session.request.call_args
    assert args == ("GET", "https://api.figma.com/v1/files/FILE1/comments")
    assert kwargs["headers"]["X-Figma-Token"] == "figd_test"


@pytest.mark.asyncio
async def test_fetch_thread_from_reply_uses_parent(adapter, session):
    session.request.return_value = response(body=COMMENTS)

    thread = await adapter.fetch_thread("FILE1:c2", CREDENTIALS)

    assert thread.id == "c1"


@pytest.mark.asyncio
async def test_fetch_thread_missing_comment(adapter, session):
    session.request.return_value = response(body=COMMENTS)

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("FILE1:nope", CREDENTIALS)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_server_errors_are_retryable(adapter, session):
    session.request.return_value = response(502, {"err": "bad gateway"})

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("FILE1:c1", CREDENTIALS)

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_forbidden_is_permanent(adapter, session):
    session.request.return_value = response(403, {"err": "Invalid token"})

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("FILE1:c1", CREDENTIALS)

    assert exc_info.value.retryable is False
    assert "Invalid token" in str(exc_info.value)


@pytest.mark.asyncio
async def test_network_errors_are_retryable(adapter, session):
    session.request.side_effect = requests.ConnectionError("reset")

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_thread("FILE1:c1", CREDENTIALS)

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_post_reply_targets_root_comment(adapter, session):
    session.request.side_effect = [response(body=COMMENTS), response(body={"id": "c10"})]

    await adapter.post_reply("FILE1:c2", "✅ Task created", CREDENTIALS)

    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.figma.com/v1/files/FILE1/comments")
    assert kwargs["json"] == {"message": "✅ Task created", "comment_id": "c1"}


@pytest.mark.asyncio
async def test_update_status_posts_reaction(adapter, session):
    session.request.return_value = response()

    await adapter.update_status("FILE1:c1", DiscussionStatus.COMPLETED, CREDENTIALS)

    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.figma.com/v1/files/FILE1/comments/c1/reactions")
    assert kwargs["json"] == {"emoji": ":white_check_mark:"}


@pytest.mark.asyncio
async def test_validate_credentials(adapter, session):
    session.request.return_value = response(body={"handle": "alice"})

    result = await adapter.validate_credentials({"api_token": "old-style"})

    assert result.valid
    assert result.warnings
    assert not (await adapter.validate_credentials({})).valid
