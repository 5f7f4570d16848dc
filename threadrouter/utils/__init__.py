"""
Utility package exports
"""

from threadrouter.utils.helpers import (
    normalize_topic,
    is_email,
    extract_title,
    truncate,
    content_hash,
)

__all__ = [
    "normalize_topic",
    "is_email",
    "extract_title",
    "truncate",
    "content_hash",
]
