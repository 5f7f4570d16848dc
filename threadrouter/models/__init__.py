# Shared data models
from threadrouter.models.thread import (
    ThreadMessage,
    DiscussionThread,
    ParsedDiscussion,
    ValidationResult,
    DestinationUser,
)
from threadrouter.models.tasks import (
    DetectedTask,
    AISummary,
    AnalysisResult,
    TaskDetectionOutput,
)
from threadrouter.models.records import (
    Flow,
    Input,
    Output,
    LoadedFlow,
    Discussion,
    DiscussionStatus,
    Job,
    JobStage,
    JobStatus,
    DeliveryRecord,
    DeliveryStatus,
    UserMapping,
    MappingType,
)

__all__ = [
    "ThreadMessage",
    "DiscussionThread",
    "ParsedDiscussion",
    "ValidationResult",
    "DestinationUser",
    "DetectedTask",
    "AISummary",
    "AnalysisResult",
    "TaskDetectionOutput",
    "Flow",
    "Input",
    "Output",
    "LoadedFlow",
    "Discussion",
    "DiscussionStatus",
    "Job",
    "JobStage",
    "JobStatus",
    "DeliveryRecord",
    "DeliveryStatus",
    "UserMapping",
    "MappingType",
]
