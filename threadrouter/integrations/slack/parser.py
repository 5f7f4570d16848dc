"""
Slack Reference Parser

Thread references are "{channel_id}:{thread_ts}". Slack permalinks are also
accepted so operators can paste a link when reprocessing by hand.
"""

import re
from dataclasses import dataclass

MENTION_PATTERN = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]*)?>")


@dataclass
class ThreadRef:
    """Parsed Slack thread reference."""

    channel_id: str
    thread_ts: str

    def __str__(self) -> str:
        return f"{self.channel_id}:{self.thread_ts}"


def parse_thread_ref(thread_ref: str) -> ThreadRef:
    """
    Parse a thread reference into channel and timestamp.

    Examples:
        C123ABC456:1234567890.123456
        https://myworkspace.slack.com/archives/C123ABC456/p1234567890123456

    Raises:
        ValueError: If the reference format is invalid
    """
    if thread_ref.startswith("https://"):
        return parse_permalink(thread_ref)

    channel_id, sep, thread_ts = thread_ref.partition(":")
    if not sep or not channel_id or not thread_ts:
        raise ValueError(
            f'Invalid Slack thread reference, expected "channel:thread_ts": {thread_ref}'
        )
    return ThreadRef(channel_id=channel_id, thread_ts=thread_ts)


def parse_permalink(permalink: str) -> ThreadRef:
    """
    Parse a Slack permalink.

    https://{workspace}.slack.com/archives/{channel_id}/p{timestamp}
    -> p1234567890123456 becomes 1234567890.123456
    """
    pattern = r"https://([^.]+)\.slack\.com/archives/([A-Z0-9]+)/p(\d+)"
    match = re.match(pattern, permalink)

    if not match:
        raise ValueError(f"Invalid Slack permalink format: {permalink}")

    _, channel_id, ts_raw = match.groups()

    # Slack uses 10 digits before decimal, 6 after
    thread_ts = f"{ts_raw[:10]}.{ts_raw[10:]}"

    return ThreadRef(channel_id=channel_id, thread_ts=thread_ts)


def extract_mentions(text: str) -> list[str]:
    """User IDs mentioned as <@U123> in message text, in order, deduplicated."""
    seen = []
    for user_id in MENTION_PATTERN.findall(text or ""):
        if user_id not in seen:
            seen.append(user_id)
    return seen


def strip_mentions(text: str) -> str:
    return MENTION_PATTERN.sub("", text or "").strip()
