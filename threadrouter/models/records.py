"""
Configuration and Processing Records

Flow / Input / Output / UserMapping are owned by the external admin layer and
read by the core. Discussion and Job are written by the ingress and the
processor.
"""

from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from threadrouter.models.tasks import AISummary, DetectedTask
from threadrouter.models.thread import DiscussionThread


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Flow configuration


class AISettings(BaseModel):
    """Classifier settings for a flow."""

    enabled: bool = True
    summary_prompt: Optional[str] = None
    task_prompt: Optional[str] = None
    max_tasks: Optional[int] = None
    model: Optional[str] = None  # Overrides settings.openai_model


class Flow(BaseModel):
    """A named routing configuration bundling inputs and outputs."""

    id: str = Field(default_factory=lambda: _new_id("flow"))
    name: str
    enabled: bool = True
    accepted_topics: List[str] = Field(default_factory=list)
    ai: AISettings = Field(default_factory=AISettings)


class Input(BaseModel):
    """A configured binding to one source platform workspace."""

    id: str = Field(default_factory=lambda: _new_id("input"))
    flow_id: str
    platform: str
    workspace_id: str  # Slack team_id, Figma webhook_id
    name: Optional[str] = None
    credentials: Dict[str, str] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True


class NotionFieldRule(BaseModel):
    """Maps one AI task field onto a Notion database property."""

    property: str
    property_type: str = "rich_text"
    value_map: Dict[str, str] = Field(default_factory=dict)


class NotionOutputSettings(BaseModel):
    platform: Literal["notion"] = "notion"
    database_id: str
    field_mapping: Dict[str, NotionFieldRule] = Field(default_factory=dict)


class GitHubOutputSettings(BaseModel):
    platform: Literal["github"] = "github"
    repo_owner: str
    repo_name: str
    labels: List[str] = Field(default_factory=list)
    # AI field -> AI value -> label, e.g. {"priority": {"urgent": "P0"}}
    label_map: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    assign_resolved_user: bool = True


OutputSettings = Annotated[
    Union[NotionOutputSettings, GitHubOutputSettings],
    Field(discriminator="platform"),
]


class Output(BaseModel):
    """A configured binding to one sink, with an accepted-topic filter."""

    id: str = Field(default_factory=lambda: _new_id("output"))
    flow_id: str
    name: str
    credentials: Dict[str, str] = Field(default_factory=dict)
    # Empty = no topic filter; only the default output receives tasks without one
    accepted_topics: List[str] = Field(default_factory=list)
    is_default: bool = False
    active: bool = True
    settings: OutputSettings

    @property
    def platform(self) -> str:
        return self.settings.platform


class LoadedFlow(BaseModel):
    """A flow resolved for one input, with its usable outputs."""

    flow: Flow
    input: Input
    outputs: List[Output]

    @property
    def default_output(self) -> Output:
        return next(o for o in self.outputs if o.is_default)


# Processing records


class DiscussionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStage(str, Enum):
    INGESTION = "ingestion"
    JOB_CREATION = "job_creation"
    THREAD_BUILDING = "thread_building"
    AI_ANALYSIS = "ai_analysis"
    TASK_DELIVERY = "task_delivery"
    NOTIFICATION = "notification"
    COMPLETION = "completion"


STAGE_ORDER: List[JobStage] = list(JobStage)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


ACTIVE_JOB_STATUSES = {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRYING}


class Discussion(BaseModel):
    """Durable record of one ingested conversation."""

    id: str = Field(default_factory=lambda: _new_id("disc"))
    flow_id: str
    input_id: str
    platform: str
    workspace_id: str
    source_thread_id: str
    source_url: str
    title: str
    content: str
    author_handle: str
    participants: List[str] = Field(default_factory=list)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    thread: Optional[DiscussionThread] = None
    status: DiscussionStatus = DiscussionStatus.PENDING
    summary: Optional[AISummary] = None
    detected_tasks: List[DetectedTask] = Field(default_factory=list)
    task_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class DeliveryRecord(BaseModel):
    """Outcome of delivering one detected task to one output."""

    task_index: int
    title: str
    output_id: str
    output_name: Optional[str] = None
    confidence: float = 0.0
    status: DeliveryStatus
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error: Optional[str] = None


class Job(BaseModel):
    """One processing attempt of a discussion, tracked through stages."""

    id: str = Field(default_factory=lambda: _new_id("job"))
    discussion_id: str
    stage: JobStage = JobStage.JOB_CREATION
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    error: Optional[str] = None
    deliveries: List[DeliveryRecord] = Field(default_factory=list)
    task_ids: List[str] = Field(default_factory=list)
    partial: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


# User mappings


class MappingType(str, Enum):
    MANUAL = "manual"
    AUTO_MATCHED = "auto-matched"
    DISCOVERED_UNMAPPED = "discovered-unmapped"


class UserMapping(BaseModel):
    """Workspace-scoped source user -> destination user association."""

    id: str = Field(default_factory=lambda: _new_id("map"))
    source_platform: str
    source_workspace_id: str
    source_user_id: str
    source_user_email: Optional[str] = None
    destination_platform: str
    destination_user_id: Optional[str] = None
    confidence: float = 0.0
    mapping_type: MappingType = MappingType.MANUAL
    created_at: datetime = Field(default_factory=utcnow)
