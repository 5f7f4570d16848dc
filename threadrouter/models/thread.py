"""
Discussion Thread Models

Platform-agnostic shapes produced by source adapters, regardless of where the
discussion happened (Slack, Figma, ...).
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any


class ThreadMessage(BaseModel):
    """A single message in a discussion thread."""

    id: str
    author_handle: str
    content: str
    timestamp: datetime
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class DiscussionThread(BaseModel):
    """Complete discussion thread: root message plus replies in order."""

    id: str
    root_message: ThreadMessage
    replies: List[ThreadMessage] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def message_count(self) -> int:
        return len(self.replies) + 1

    @property
    def messages(self) -> List[ThreadMessage]:
        return [self.root_message, *self.replies]


class ParsedDiscussion(BaseModel):
    """Standardized output of SourceAdapter.parse_incoming()."""

    platform: str
    workspace_id: str
    source_thread_id: str  # Adapter-specific thread reference, e.g. "C123:1706.12"
    source_url: str
    author_handle: str
    title: str
    content: str
    participants: List[str] = Field(default_factory=list)
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """Result of credential / configuration validation."""

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class DestinationUser(BaseModel):
    """A user in a destination platform's directory."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
