"""
Notion Source Adapter

Responsibilities:
- comment.created webhook verification (X-Notion-Signature) and parsing
- comments.list: Fetch the triggering comment and its discussion
- comments.create: Replies in the same discussion
- users.retrieve: Email lookup for mention resolution

Notion webhooks only carry IDs, so the comment text is fetched once the
owning input (and its token) is known. Only comments containing the input's
trigger keyword start processing.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from notion_client import APIResponseError, Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
    SourceAdapter,
)
from threadrouter.integrations.notion.client import (
    PLATFORM,
    _normalize_id,
    wrap_notion_error,
)
from threadrouter.models.thread import (
    DiscussionThread,
    ParsedDiscussion,
    ThreadMessage,
    ValidationResult,
)
from threadrouter.utils.emoji import to_notion_rich_text
from threadrouter.utils.helpers import extract_title
from threadrouter.utils.webhook_security import (
    get_header,
    is_fresh,
    parse_iso_timestamp,
    verify_notion_signature,
)

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_KEYWORD = "@threadrouter"

NOTION_ERRORS = (APIResponseError, HTTPResponseError, RequestTimeoutError)


def _is_handshake(payload: Dict[str, Any]) -> bool:
    # Sent once when the subscription is created, before any secret exists
    return payload.get("type") == "url_verification" or (
        "verification_token" in payload and "type" not in payload
    )


def _plain_text(rich_text: List[Dict[str, Any]]) -> str:
    return "".join(item.get("plain_text", "") for item in rich_text or []).strip()


def _mentioned_users(rich_text: List[Dict[str, Any]]) -> List[str]:
    users = []
    for item in rich_text or []:
        mention = item.get("mention") or {}
        if item.get("type") == "mention" and mention.get("type") == "user":
            user_id = (mention.get("user") or {}).get("id")
            if user_id and user_id not in users:
                users.append(user_id)
    return users


def _parse_datetime(value: Optional[str]) -> datetime:
    ts = parse_iso_timestamp(value) if value else None
    if ts is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def split_thread_ref(thread_ref: str) -> tuple[str, str]:
    """'pageId:discussionId' -> (pageId, discussionId)."""
    page_id, _, discussion_id = thread_ref.partition(":")
    if not page_id or not discussion_id:
        raise AdapterError(f"Invalid Notion thread reference: {thread_ref}", PLATFORM)
    return page_id, discussion_id


class NotionSourceAdapter(SourceAdapter):
    """Notion page comment source."""

    platform = PLATFORM

    def __init__(
        self,
        client_factory: Callable[[str], Client] = lambda token: Client(auth=token),
        tolerance_seconds: int = 300,
    ):
        self._client_factory = client_factory
        self.tolerance_seconds = tolerance_seconds

    def _client(self, credentials: Mapping[str, str]) -> Client:
        token = credentials.get("api_token")
        if not token:
            raise AdapterError("Notion api_token is not configured", PLATFORM)
        return self._client_factory(token)

    # Webhook handling

    def verify_request(self, headers, body, secret, now=None) -> None:
        """
        Notion signs the raw body with the subscription's verification token.
        The timestamp is checked when present; the handshake is unsigned.
        """
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise SignatureVerificationError("Notion webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise SignatureVerificationError("Notion webhook body is not an object")

        if _is_handshake(payload):
            return

        if not verify_notion_signature(get_header(headers, "X-Notion-Signature"), body, secret):
            raise SignatureVerificationError("Invalid Notion webhook signature")

        if payload.get("timestamp"):
            ts = parse_iso_timestamp(payload["timestamp"])
            if ts is None or not is_fresh(ts, now, self.tolerance_seconds):
                raise SignatureVerificationError(
                    "Notion webhook timestamp outside replay window"
                )

    def challenge_response(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if _is_handshake(payload):
            logger.info("Received Notion webhook verification token")
            return {"verification_token": payload.get("verification_token", "")}
        return None

    def parse_incoming(self, payload: Dict[str, Any]) -> ParsedDiscussion:
        """
        Parse a comment.created webhook.

        The body has no comment text; content, title and participants are
        filled in by complete_incoming.

        Raises:
            IgnoredEvent: Any event other than comment.created
            AdapterError: Missing workspace, comment or page IDs
        """
        event_type = payload.get("type")
        if event_type != "comment.created":
            raise IgnoredEvent(f"Unsupported Notion event: {event_type}")

        data = payload.get("data") or {}
        parent = data.get("parent") or {}
        workspace_id = payload.get("workspace_id")
        comment_id = data.get("id") or (payload.get("entity") or {}).get("id")
        page_id = data.get("page_id") or parent.get("page_id") or parent.get("block_id")
        discussion_id = data.get("discussion_id") or ""

        if not workspace_id:
            raise AdapterError("No workspace_id found in Notion payload", PLATFORM)
        if not comment_id:
            raise AdapterError("No comment ID found in Notion payload", PLATFORM)
        if not page_id:
            raise AdapterError("No page or block ID found in Notion payload", PLATFORM)

        authors = payload.get("authors") or []
        author = authors[0].get("id", "") if authors else ""

        return ParsedDiscussion(
            platform=PLATFORM,
            workspace_id=workspace_id,
            source_thread_id=f"{page_id}:{discussion_id}",
            source_url=f"https://notion.so/{_normalize_id(page_id)}",
            author_handle=author,
            title="Notion Comment",
            content="",
            participants=[author] if author else [],
            timestamp=_parse_datetime(payload.get("timestamp")),
            metadata={
                "page_id": page_id,
                "comment_id": comment_id,
                "discussion_id": discussion_id or None,
            },
        )

    async def complete_incoming(self, parsed, input_) -> ParsedDiscussion:
        """
        Fetch the triggering comment and check it for the trigger keyword.

        The keyword comes from the input's settings ("trigger_keyword") and
        matches case-insensitively anywhere in the comment.

        Raises:
            IgnoredEvent: The comment does not contain the trigger keyword
            AdapterError: The comment could not be fetched
        """
        page_id = parsed.metadata["page_id"]
        comment_id = parsed.metadata["comment_id"]

        comments = await self._list_comments(page_id, input_.credentials)
        comment = next((c for c in comments if c.get("id") == comment_id), None)
        if comment is None:
            raise AdapterError(
                f"Notion comment {comment_id} not found on {page_id}",
                PLATFORM,
                status_code=404,
            )

        text = _plain_text(comment.get("rich_text"))
        keyword = input_.settings.get("trigger_keyword") or DEFAULT_TRIGGER_KEYWORD
        if keyword.lower() not in text.lower():
            raise IgnoredEvent(f"Comment does not contain trigger keyword {keyword}")

        discussion_id = comment.get("discussion_id") or parsed.metadata.get("discussion_id")
        if not discussion_id:
            raise AdapterError("No discussion ID found for Notion comment", PLATFORM)

        author = (comment.get("created_by") or {}).get("id") or parsed.author_handle
        participants = [author]
        participants.extend(u for u in _mentioned_users(comment.get("rich_text")) if u != author)

        title_text = re.sub(re.escape(keyword), "", text, flags=re.IGNORECASE)
        return parsed.model_copy(
            update={
                "source_thread_id": f"{page_id}:{discussion_id}",
                "author_handle": author,
                "title": extract_title(title_text, fallback="Notion Comment"),
                "content": text,
                "participants": participants,
                "timestamp": _parse_datetime(comment.get("created_time")),
                "metadata": {**parsed.metadata, "discussion_id": discussion_id},
            }
        )

    # Outbound calls

    async def _list_comments(
        self, block_id: str, credentials: Mapping[str, str]
    ) -> List[Dict[str, Any]]:
        client = self._client(credentials)
        comments: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        try:
            while True:
                kwargs = {"block_id": block_id}
                if cursor:
                    kwargs["start_cursor"] = cursor
                result = await asyncio.to_thread(client.comments.list, **kwargs)
                comments.extend(result.get("results", []))
                cursor = result.get("next_cursor")
                if not result.get("has_more") or not cursor:
                    break
        except NOTION_ERRORS as e:
            raise wrap_notion_error(e, "comments.list")
        return comments

    async def fetch_thread(self, thread_ref, credentials) -> DiscussionThread:
        """Comments of one discussion, oldest first; the first is the root."""
        page_id, discussion_id = split_thread_ref(thread_ref)
        comments = [
            c
            for c in await self._list_comments(page_id, credentials)
            if c.get("discussion_id") == discussion_id
        ]
        if not comments:
            raise AdapterError(
                "No comments found in discussion", PLATFORM, status_code=404
            )

        comments.sort(key=lambda c: c.get("created_time") or "")
        root, *replies = [self._to_thread_message(c) for c in comments]

        participants: List[str] = []
        for msg in [root, *replies]:
            if msg.author_handle not in participants:
                participants.append(msg.author_handle)

        return DiscussionThread(
            id=discussion_id,
            root_message=root,
            replies=replies,
            participants=participants,
            metadata={
                "page_id": page_id,
                "discussion_id": discussion_id,
                "message_count": len(comments),
            },
        )

    async def post_reply(self, thread_ref, text, credentials) -> None:
        _, discussion_id = split_thread_ref(thread_ref)
        client = self._client(credentials)
        try:
            await asyncio.to_thread(
                client.comments.create,
                discussion_id=discussion_id,
                rich_text=to_notion_rich_text(text),
            )
        except NOTION_ERRORS as e:
            raise wrap_notion_error(e, "comments.create")

    async def lookup_user_email(self, user_id, credentials) -> Optional[str]:
        client = self._client(credentials)
        try:
            user = await asyncio.to_thread(client.users.retrieve, user_id=user_id)
        except NOTION_ERRORS as e:
            logger.warning(f"Could not look up Notion user {user_id}: {e}")
            return None
        return (user.get("person") or {}).get("email")

    async def validate_credentials(self, credentials) -> ValidationResult:
        token = credentials.get("api_token", "")
        if not token.strip():
            return ValidationResult(valid=False, errors=["Notion api_token is required"])

        try:
            await asyncio.to_thread(self._client(credentials).users.me)
        except NOTION_ERRORS as e:
            return ValidationResult(valid=False, errors=[f"Notion token check failed: {e}"])
        return ValidationResult(valid=True)

    def _to_thread_message(self, comment: Dict[str, Any]) -> ThreadMessage:
        return ThreadMessage(
            id=comment["id"],
            author_handle=(comment.get("created_by") or {}).get("id") or "unknown",
            content=_plain_text(comment.get("rich_text")),
            timestamp=_parse_datetime(comment.get("created_time")),
        )
