"""
Slack Data Models

Minimal shapes of the Slack Events API payloads this service consumes.
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional


class SlackEvent(BaseModel):
    """Inner event of an event_callback payload."""

    model_config = ConfigDict(extra="allow")

    type: str
    channel: Optional[str] = None
    user: Optional[str] = None
    text: Optional[str] = None
    ts: Optional[str] = None
    thread_ts: Optional[str] = None
    subtype: Optional[str] = None
    bot_id: Optional[str] = None
    channel_type: Optional[str] = None


class SlackEventPayload(BaseModel):
    """Outer Slack Events API envelope."""

    model_config = ConfigDict(extra="allow")

    type: str
    team_id: Optional[str] = None
    api_app_id: Optional[str] = None
    event_id: Optional[str] = None
    event_time: Optional[int] = None
    event: Optional[SlackEvent] = None
