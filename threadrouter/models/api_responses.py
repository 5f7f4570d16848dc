"""
API Response Models

Pydantic models for consistent API response structures.
"""

from pydantic import BaseModel, Field
from typing import Optional, List

from threadrouter.models.records import Discussion, Job


class WebhookAck(BaseModel):
    """Minimal acknowledgment returned to webhook callers."""

    ok: bool = Field(True, description="Whether the event was accepted")
    discussion_id: Optional[str] = Field(None, description="Created discussion ID")
    job_id: Optional[str] = Field(None, description="Created job ID")
    ignored: Optional[str] = Field(
        None, description="Reason the event was acknowledged without processing"
    )


class ReprocessResponse(BaseModel):
    """Response for a manual reprocess request."""

    discussion_id: str
    job_id: str
    status: str = Field(..., description="Status of the new job")


class DiscussionDetailResponse(BaseModel):
    """Discussion with its processing jobs, newest first."""

    discussion: Discussion
    jobs: List[Job] = Field(default_factory=list)
