"""
Webhook Signature Verification

Constant-time HMAC / shared-secret checks with a replay window.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


def is_fresh(
    timestamp: float,
    now: Optional[datetime] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Whether a unix timestamp lies within tolerance of now (both directions)."""
    current = (now or datetime.now(timezone.utc)).timestamp()
    return abs(current - timestamp) <= tolerance_seconds


def verify_slack_signature(
    signature: str,
    timestamp: str,
    body: bytes,
    secret: str,
    now: Optional[datetime] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """
    Verify a Slack request signature.

    Slack signs "v0:{timestamp}:{raw body}" with HMAC-SHA256 and sends
    "v0=<hex digest>" in X-Slack-Signature.
    """
    if not signature or not timestamp or not secret:
        logger.warning("Missing Slack signature, timestamp or signing secret")
        return False

    if not signature.startswith("v0="):
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False

    if not is_fresh(ts, now, tolerance_seconds):
        logger.warning(f"Slack request timestamp outside replay window: {timestamp}")
        return False

    base_string = b"v0:" + timestamp.encode("utf-8") + b":" + body
    expected = "v0=" + hmac.new(
        secret.encode("utf-8"), base_string, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_notion_signature(signature: Optional[str], body: bytes, secret: str) -> bool:
    """
    Verify a Notion webhook signature.

    Notion sends the hex HMAC-SHA256 of the raw body in X-Notion-Signature,
    prefixed with "sha256=" (older integrations used "v1=" or no prefix).
    """
    if not signature or not secret:
        logger.warning("Missing Notion signature or webhook secret")
        return False

    for prefix in ("sha256=", "v1="):
        if signature.startswith(prefix):
            signature = signature[len(prefix):]
            break

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def verify_shared_passcode(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison of a shared passcode."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def parse_iso_timestamp(value: str) -> Optional[float]:
    """Unix timestamp of an ISO-8601 string, or None if unparseable."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
