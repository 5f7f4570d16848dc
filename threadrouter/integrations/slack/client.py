"""
Slack Source Adapter

Responsibilities:
- Events API webhook verification and parsing
- conversations.replies: Fetch the full thread
- chat.postMessage: Threaded acknowledgment replies
- reactions.add: Status indicators on the root message
- users.info: Email lookup for mention resolution
"""

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from pydantic import ValidationError
from typing import Any, Callable, Dict, List, Mapping, Optional
from datetime import datetime, timezone
import asyncio
import logging

from threadrouter.integrations.base import (
    AdapterError,
    IgnoredEvent,
    SignatureVerificationError,
    SourceAdapter,
    status_is_retryable,
)
from threadrouter.integrations.slack.models import SlackEventPayload
from threadrouter.integrations.slack.parser import (
    parse_thread_ref,
    strip_mentions,
    extract_mentions,
)
from threadrouter.models.records import DiscussionStatus
from threadrouter.models.thread import (
    DiscussionThread,
    ParsedDiscussion,
    ThreadMessage,
    ValidationResult,
)
from threadrouter.utils.emoji import convert_slack_emojis
from threadrouter.utils.helpers import extract_title
from threadrouter.utils.webhook_security import get_header, verify_slack_signature

logger = logging.getLogger(__name__)

PLATFORM = "slack"

# Slack error codes that will not succeed on retry
PERMANENT_ERRORS = {
    "invalid_auth",
    "not_authed",
    "account_inactive",
    "token_revoked",
    "missing_scope",
    "channel_not_found",
    "thread_not_found",
    "not_in_channel",
    "is_archived",
}

STATUS_EMOJI = {
    DiscussionStatus.PENDING: "eyes",
    DiscussionStatus.PROCESSING: "hourglass_flowing_sand",
    DiscussionStatus.COMPLETED: "white_check_mark",
    DiscussionStatus.FAILED: "x",
}


def _to_datetime(ts: str) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


class SlackSourceAdapter(SourceAdapter):
    """Slack Events API source."""

    platform = PLATFORM

    def __init__(
        self,
        client_factory: Callable[[str], WebClient] = lambda token: WebClient(token=token),
        tolerance_seconds: int = 300,
    ):
        self._client_factory = client_factory
        self.tolerance_seconds = tolerance_seconds

    def _client(self, credentials: Mapping[str, str]) -> WebClient:
        token = credentials.get("bot_token")
        if not token:
            raise AdapterError("Slack bot_token is not configured", PLATFORM)
        return self._client_factory(token)

    def _wrap_api_error(self, e: SlackApiError, action: str) -> AdapterError:
        error_code = e.response.get("error", "unknown_error") if e.response else "unknown_error"
        status_code = getattr(e.response, "status_code", None)
        retryable = error_code not in PERMANENT_ERRORS and (
            error_code == "ratelimited" or status_is_retryable(status_code)
        )
        logger.error(f"Slack API error during {action}: {error_code}")
        return AdapterError(
            f"Slack API error during {action}: {error_code}",
            PLATFORM,
            status_code=status_code,
            retryable=retryable,
        )

    # Webhook handling

    def verify_request(self, headers, body, secret, now=None) -> None:
        signature = get_header(headers, "X-Slack-Signature") or ""
        timestamp = get_header(headers, "X-Slack-Request-Timestamp") or ""
        if not verify_slack_signature(
            signature, timestamp, body, secret, now, self.tolerance_seconds
        ):
            raise SignatureVerificationError("Invalid Slack signature or stale timestamp")

    def challenge_response(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if payload.get("type") == "url_verification":
            return {"challenge": payload.get("challenge", "")}
        return None

    def is_retry_delivery(self, headers) -> bool:
        # Slack resends events it considers unacknowledged within 3 seconds
        return get_header(headers, "X-Slack-Retry-Num") is not None

    def parse_incoming(self, payload: Dict[str, Any]) -> ParsedDiscussion:
        """
        Parse a Slack event_callback payload.

        Only human-authored message and app_mention events are processed.
        Edits, deletes and bot messages (including our own replies) are
        acknowledged and ignored.

        Raises:
            IgnoredEvent: Valid event that needs no processing
            AdapterError: Malformed payload
        """
        try:
            envelope = SlackEventPayload.model_validate(payload)
        except ValidationError as e:
            raise AdapterError(f"Malformed Slack payload: {e}", PLATFORM)

        if envelope.type != "event_callback":
            raise IgnoredEvent(f"Unsupported payload type: {envelope.type}")

        event = envelope.event
        if event is None:
            raise AdapterError("No event found in Slack payload", PLATFORM)

        if event.type not in ("message", "app_mention"):
            raise IgnoredEvent(f"Unsupported event type: {event.type}")

        if event.subtype:
            raise IgnoredEvent(f"Message subtype not supported: {event.subtype}")

        if event.bot_id:
            raise IgnoredEvent("Message posted by a bot")

        if not envelope.team_id:
            raise AdapterError("No team_id found in Slack payload", PLATFORM)
        if not event.channel:
            raise AdapterError("No channel ID found in event", PLATFORM)
        if not event.user:
            raise AdapterError("No user ID found in event", PLATFORM)
        if not event.ts:
            raise AdapterError("No message timestamp found in event", PLATFORM)
        if not event.text or not event.text.strip():
            raise AdapterError("No message text found in event", PLATFORM)

        thread_ts = event.thread_ts or event.ts
        source_url = (
            f"https://slack.com/app_redirect?team={envelope.team_id}"
            f"&channel={event.channel}&message_ts={event.ts}"
        )

        participants = [event.user]
        participants.extend(u for u in extract_mentions(event.text) if u != event.user)

        return ParsedDiscussion(
            platform=PLATFORM,
            workspace_id=envelope.team_id,
            source_thread_id=f"{event.channel}:{thread_ts}",
            source_url=source_url,
            author_handle=event.user,
            title=extract_title(
                convert_slack_emojis(strip_mentions(event.text)), fallback="Slack Message"
            ),
            content=convert_slack_emojis(event.text),
            participants=participants,
            timestamp=_to_datetime(event.ts),
            metadata={
                "channel_id": event.channel,
                "message_ts": event.ts,
                "thread_ts": event.thread_ts,
                "channel_type": event.channel_type,
                "event_id": envelope.event_id,
            },
        )

    # Outbound calls

    async def fetch_thread(self, thread_ref, credentials) -> DiscussionThread:
        """
        Fetch all messages in a thread via conversations.replies.

        The first message returned is the root; the rest are replies in
        chronological order. Follows pagination cursors.
        """
        try:
            ref = parse_thread_ref(thread_ref)
        except ValueError as e:
            raise AdapterError(str(e), PLATFORM)

        client = self._client(credentials)
        raw_messages: List[Dict[str, Any]] = []
        cursor = None

        try:
            while True:
                params = {"channel": ref.channel_id, "ts": ref.thread_ts, "limit": 200}
                if cursor:
                    params["cursor"] = cursor
                result = await asyncio.to_thread(client.conversations_replies, **params)
                raw_messages.extend(result.get("messages", []))
                cursor = (result.get("response_metadata") or {}).get("next_cursor")
                if not result.get("has_more") or not cursor:
                    break
        except SlackApiError as e:
            raise self._wrap_api_error(e, "conversations.replies")
        except AdapterError:
            raise
        except Exception as e:
            logger.error(f"Error fetching Slack thread {thread_ref}: {e}")
            raise AdapterError(
                f"Failed to fetch Slack thread: {e}", PLATFORM, retryable=True
            )

        if not raw_messages:
            raise AdapterError(
                "No messages found in thread", PLATFORM, status_code=404
            )

        root, *replies = [self._to_thread_message(m) for m in raw_messages]

        participants: List[str] = []
        for msg in [root, *replies]:
            if msg.author_handle not in participants:
                participants.append(msg.author_handle)

        logger.debug(f"Fetched {len(raw_messages)} messages from thread {ref}")

        return DiscussionThread(
            id=ref.thread_ts,
            root_message=root,
            replies=replies,
            participants=participants,
            metadata={
                "channel_id": ref.channel_id,
                "thread_ts": ref.thread_ts,
                "message_count": len(raw_messages),
            },
        )

    async def post_reply(self, thread_ref, text, credentials) -> None:
        try:
            ref = parse_thread_ref(thread_ref)
        except ValueError as e:
            raise AdapterError(str(e), PLATFORM)

        client = self._client(credentials)
        try:
            await asyncio.to_thread(
                client.chat_postMessage,
                channel=ref.channel_id,
                thread_ts=ref.thread_ts,
                text=text,
                unfurl_links=False,
            )
        except SlackApiError as e:
            raise self._wrap_api_error(e, "chat.postMessage")
        except Exception as e:
            raise AdapterError(
                f"Failed to post Slack reply: {e}", PLATFORM, retryable=True
            )

    async def update_status(self, thread_ref, status, credentials) -> None:
        emoji = STATUS_EMOJI.get(status)
        if not emoji:
            return

        ref = parse_thread_ref(thread_ref)
        client = self._client(credentials)
        try:
            await asyncio.to_thread(
                client.reactions_add,
                channel=ref.channel_id,
                timestamp=ref.thread_ts,
                name=emoji,
            )
        except SlackApiError as e:
            if e.response.get("error") == "already_reacted":
                return
            raise self._wrap_api_error(e, "reactions.add")

    async def lookup_user_email(self, user_id, credentials) -> Optional[str]:
        client = self._client(credentials)
        try:
            result = await asyncio.to_thread(client.users_info, user=user_id)
        except SlackApiError as e:
            logger.warning(
                f"Could not look up Slack user {user_id}: {e.response.get('error')}"
            )
            return None
        profile = (result.get("user") or {}).get("profile") or {}
        return profile.get("email")

    async def validate_credentials(self, credentials) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        token = credentials.get("bot_token", "")
        if not token.strip():
            errors.append("Slack bot_token is required")
            return ValidationResult(valid=False, errors=errors)

        if not token.startswith(("xoxb-", "xoxp-")):
            warnings.append(
                'Slack token should start with "xoxb-" (bot token) or "xoxp-" (user token)'
            )

        try:
            result = await asyncio.to_thread(self._client(credentials).auth_test)
            logger.info(f"Slack token valid for team {result.get('team')}")
        except SlackApiError as e:
            errors.append(f"Slack auth.test failed: {e.response.get('error')}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def _to_thread_message(self, msg: Dict[str, Any]) -> ThreadMessage:
        return ThreadMessage(
            id=msg["ts"],
            author_handle=msg.get("user") or msg.get("bot_id") or "unknown",
            content=convert_slack_emojis(msg.get("text", "")),
            timestamp=_to_datetime(msg["ts"]),
            attachments=msg.get("files", []) or msg.get("attachments", []),
        )
