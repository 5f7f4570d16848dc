"""
Figma Data Models

Webhooks V2 FILE_COMMENT payloads and REST comment objects.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class FigmaUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    handle: str = ""
    email: Optional[str] = None


class FigmaCommentFragment(BaseModel):
    """One fragment of a webhook comment: either text or a mention."""

    text: Optional[str] = None
    mention: Optional[str] = None


class FigmaWebhookPayload(BaseModel):
    """FILE_COMMENT (or PING) webhook body."""

    model_config = ConfigDict(extra="allow")

    event_type: str
    passcode: Optional[str] = None
    timestamp: Optional[str] = None
    webhook_id: Optional[str] = None
    file_key: Optional[str] = None
    file_name: Optional[str] = None
    comment_id: Optional[str] = None
    comment: List[FigmaCommentFragment] = Field(default_factory=list)
    mentions: List[FigmaUser] = Field(default_factory=list)
    triggered_by: Optional[FigmaUser] = None
    created_at: Optional[str] = None


class FigmaComment(BaseModel):
    """Comment object returned by GET /v1/files/:key/comments."""

    model_config = ConfigDict(extra="allow")

    id: str
    message: str = ""
    user: FigmaUser
    created_at: str
    parent_id: Optional[str] = None
    resolved_at: Optional[str] = None
