"""
Figma Source Adapter

Responsibilities:
- Webhooks V2 FILE_COMMENT verification (shared passcode) and parsing
- GET /v1/files/:key/comments: Rebuild the comment thread
- POST /v1/files/:key/comments: Threaded replies
- POST /v1/files/:key/comments/:id/reactions: Status indicators
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import requests
from pydantic import ValidationError

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
    SourceAdapter,
    status_is_retryable,
)
from threadrouter.integrations.figma.models import (
    FigmaComment,
    FigmaWebhookPayload,
)
from threadrouter.models.records import DiscussionStatus
from threadrouter.models.thread import (
    DiscussionThread,
    ParsedDiscussion,
    ThreadMessage,
    ValidationResult,
)
from threadrouter.utils.helpers import extract_title
from threadrouter.utils.webhook_security import (
    is_fresh,
    parse_iso_timestamp,
    verify_shared_passcode,
)

logger = logging.getLogger(__name__)

PLATFORM = "figma"
FIGMA_API_BASE = "https://api.figma.com/v1"
REQUEST_TIMEOUT = 30

STATUS_EMOJI = {
    DiscussionStatus.PENDING: ":eyes:",
    DiscussionStatus.PROCESSING: ":hourglass:",
    DiscussionStatus.COMPLETED: ":white_check_mark:",
    DiscussionStatus.FAILED: ":x:",
}


def _parse_datetime(value: Optional[str]) -> datetime:
    ts = parse_iso_timestamp(value) if value else None
    if ts is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def split_thread_ref(thread_ref: str) -> tuple[str, Optional[str]]:
    """'fileKey:commentId' -> (fileKey, commentId); commentId may be absent."""
    file_key, _, comment_id = thread_ref.partition(":")
    if not file_key:
        raise AdapterError(f"Invalid Figma thread reference: {thread_ref}", PLATFORM)
    return file_key, comment_id or None


class FigmaSourceAdapter(SourceAdapter):
    """Figma file comment source."""

    platform = PLATFORM

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        tolerance_seconds: int = 300,
    ):
        self.session = session or requests.Session()
        self.tolerance_seconds = tolerance_seconds

    def _headers(self, credentials: Mapping[str, str]) -> Dict[str, str]:
        token = credentials.get("api_token")
        if not token:
            raise AdapterError("Figma api_token is not configured", PLATFORM)
        return {"X-Figma-Token": token, "Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        credentials: Mapping[str, str],
        **kwargs,
    ) -> Dict[str, Any]:
        url = f"{FIGMA_API_BASE}{path}"
        headers = self._headers(credentials)
        try:
            response = await asyncio.to_thread(
                self.session.request,
                method,
                url,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.error(f"Figma {method} {path} failed: {e}")
            raise AdapterError(f"Figma request failed: {e}", PLATFORM, retryable=True)

        if not response.ok:
            try:
                detail = response.json().get("err") or response.text
            except ValueError:
                detail = response.text
            raise AdapterError(
                f"Figma API error {response.status_code}: {detail}",
                PLATFORM,
                status_code=response.status_code,
                retryable=status_is_retryable(response.status_code),
            )

        if not response.content:
            return {}
        return response.json()

    # Webhook handling

    def verify_request(self, headers, body, secret, now=None) -> None:
        """
        Figma V2 webhooks carry the configured passcode and an ISO timestamp
        in the JSON body rather than a signature header.
        """
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise SignatureVerificationError("Figma webhook body is not valid JSON")

        if not isinstance(payload, dict) or not verify_shared_passcode(
            payload.get("passcode"), secret
        ):
            raise SignatureVerificationError("Invalid Figma webhook passcode")

        ts = parse_iso_timestamp(payload.get("timestamp") or "")
        if ts is None or not is_fresh(ts, now, self.tolerance_seconds):
            raise SignatureVerificationError("Figma webhook timestamp outside replay window")

    def parse_incoming(self, payload: Dict[str, Any]) -> ParsedDiscussion:
        """
        Parse a FILE_COMMENT webhook.

        Raises:
            IgnoredEvent: PING and other non-comment events
            AdapterError: Malformed payload
        """
        try:
            event = FigmaWebhookPayload.model_validate(payload)
        except ValidationError as e:
            raise AdapterError(f"Malformed Figma payload: {e}", PLATFORM)

        if event.event_type != "FILE_COMMENT":
            raise IgnoredEvent(f"Unsupported Figma event: {event.event_type}")

        if not event.webhook_id:
            raise AdapterError("No webhook_id found in Figma payload", PLATFORM)
        if not event.file_key or not event.comment_id:
            raise AdapterError("No file_key or comment_id found in Figma payload", PLATFORM)
        if event.triggered_by is None:
            raise AdapterError("No triggered_by user found in Figma payload", PLATFORM)

        handles = {m.id: m.handle for m in event.mentions}
        parts: List[str] = []
        for fragment in event.comment:
            if fragment.text:
                parts.append(fragment.text)
            elif fragment.mention:
                parts.append(f"@{handles.get(fragment.mention, fragment.mention)}")
        content = "".join(parts).strip()
        if not content:
            raise AdapterError("No comment text found in Figma payload", PLATFORM)

        author = event.triggered_by.handle or event.triggered_by.id
        participants = [author]
        participants.extend(h for h in handles.values() if h and h not in participants)

        return ParsedDiscussion(
            platform=PLATFORM,
            workspace_id=event.webhook_id,
            source_thread_id=f"{event.file_key}:{event.comment_id}",
            source_url=f"https://www.figma.com/file/{event.file_key}?comment={event.comment_id}",
            author_handle=author,
            title=extract_title(content, fallback=event.file_name or "Figma Comment"),
            content=content,
            participants=participants,
            timestamp=_parse_datetime(event.created_at or event.timestamp),
            metadata={
                "file_key": event.file_key,
                "file_name": event.file_name,
                "comment_id": event.comment_id,
                "participant_emails": (
                    {author: event.triggered_by.email} if event.triggered_by.email else {}
                ),
            },
        )

    # Outbound calls

    async def fetch_thread(self, thread_ref, credentials) -> DiscussionThread:
        """
        Rebuild a comment thread from the file's comment list.

        When the referenced comment is itself a reply, the thread is rooted
        at its parent.
        """
        file_key, comment_id = split_thread_ref(thread_ref)
        data = await self._request("GET", f"/files/{file_key}/comments", credentials)

        comments = [FigmaComment.model_validate(c) for c in data.get("comments", [])]
        by_id = {c.id: c for c in comments}

        if comment_id:
            root = by_id.get(comment_id)
            if root is not None and root.parent_id:
                root = by_id.get(root.parent_id)
        else:
            roots = [c for c in comments if not c.parent_id]
            root = max(roots, key=lambda c: c.created_at) if roots else None

        if root is None:
            raise AdapterError(
                f"Comment not found in file {file_key}", PLATFORM, status_code=404
            )

        replies = sorted(
            (c for c in comments if c.parent_id == root.id),
            key=lambda c: _parse_datetime(c.created_at),
        )

        participants: List[str] = []
        for c in [root, *replies]:
            if c.user.handle not in participants:
                participants.append(c.user.handle)

        return DiscussionThread(
            id=root.id,
            root_message=self._to_thread_message(root),
            replies=[self._to_thread_message(c) for c in replies],
            participants=participants,
            metadata={
                "file_key": file_key,
                "resolved": root.resolved_at is not None,
                "created_at": root.created_at,
            },
        )

    async def post_reply(self, thread_ref, text, credentials) -> None:
        file_key, comment_id = split_thread_ref(thread_ref)
        if not comment_id:
            raise AdapterError("Cannot reply without a comment ID", PLATFORM)

        # Replies must target the root comment
        data = await self._request("GET", f"/files/{file_key}/comments", credentials)
        for c in data.get("comments", []):
            if c.get("id") == comment_id and c.get("parent_id"):
                comment_id = c["parent_id"]
                break

        await self._request(
            "POST",
            f"/files/{file_key}/comments",
            credentials,
            json={"message": text, "comment_id": comment_id},
        )

    async def update_status(self, thread_ref, status, credentials) -> None:
        emoji = STATUS_EMOJI.get(status)
        file_key, comment_id = split_thread_ref(thread_ref)
        if not emoji or not comment_id:
            return
        await self._request(
            "POST",
            f"/files/{file_key}/comments/{comment_id}/reactions",
            credentials,
            json={"emoji": emoji},
        )

    async def validate_credentials(self, credentials) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        token = credentials.get("api_token", "")
        if not token.strip():
            return ValidationResult(valid=False, errors=["Figma api_token is required"])

        if not token.startswith("figd_"):
            warnings.append('Figma personal access tokens usually start with "figd_"')

        try:
            me = await self._request("GET", "/me", credentials)
            logger.info(f"Figma token valid for {me.get('handle')}")
        except AdapterError as e:
            errors.append(f"Figma token check failed: {e}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def _to_thread_message(self, comment: FigmaComment) -> ThreadMessage:
        return ThreadMessage(
            id=comment.id,
            author_handle=comment.user.handle or comment.user.id,
            content=comment.message,
            timestamp=_parse_datetime(comment.created_at),
        )
