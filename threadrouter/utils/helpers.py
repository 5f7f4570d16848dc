"""
Shared Utility Functions

Common helper functions used across multiple modules.
"""

import hashlib
import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_topic(topic: Optional[str]) -> Optional[str]:
    """Lower-case, trimmed topic label; blank labels become None."""
    if topic is None:
        return None
    normalized = topic.strip().lower()
    return normalized or None


def is_email(value: Optional[str]) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value.strip()))


def extract_title(text: str, fallback: str = "Discussion", max_length: int = 50) -> str:
    """
    Title from message text: first non-empty line, truncated with an ellipsis.
    """
    if not text:
        return fallback

    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return fallback

    if len(first_line) > max_length:
        return first_line[: max_length - 3] + "..."

    return first_line


def truncate(text: Optional[str], limit: int = 2000) -> str:
    """Truncate text to a platform field limit."""
    if not text:
        return ""
    return text if len(text) <= limit else text[: limit - 1] + "…"


def content_hash(*parts: str) -> str:
    """SHA-256 hex digest of the given parts joined by a separator."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()
