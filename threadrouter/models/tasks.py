"""
AI Task Models

Structured output of the task classifier. Optional fields stay None when the
model is not confident; nothing downstream fills them with guesses.
"""

from pydantic import BaseModel, Field
from enum import Enum
from typing import List, Optional


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskType(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    QUESTION = "question"
    IMPROVEMENT = "improvement"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class DetectedTask(BaseModel):
    """One actionable item extracted from a discussion."""

    title: str = Field(..., description="Short, imperative task title")
    description: str = Field(..., description="What needs to be done and why")
    topic: Optional[str] = Field(
        None,
        description="Topic label chosen from the allowed topics, or null if unsure",
    )
    priority: Optional[TaskPriority] = Field(
        None, description="Priority, or null if not clearly stated"
    )
    type: Optional[TaskType] = Field(
        None, description="Task type, or null if not clearly stated"
    )
    assignee: Optional[str] = Field(
        None,
        description="Source user ID or email of the person asked to do this, or null",
    )
    action_items: Optional[List[str]] = Field(
        None, description="Concrete steps for this task only"
    )
    due_date: Optional[str] = Field(
        None, description="ISO date if a deadline was explicitly mentioned"
    )
    tags: Optional[List[str]] = None


class AISummary(BaseModel):
    """AI summary of the whole discussion."""

    summary: str = Field(..., description="2-3 sentence summary")
    key_points: List[str] = Field(default_factory=list)
    sentiment: Optional[Sentiment] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class TaskDetectionOutput(BaseModel):
    """Structured LLM response: summary plus detected tasks."""

    summary: AISummary
    tasks: List[DetectedTask] = Field(default_factory=list)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class AnalysisResult(BaseModel):
    """Complete analysis of a thread as consumed by the processor."""

    summary: AISummary
    tasks: List[DetectedTask] = Field(default_factory=list)
    processing_time: float = 0.0
    cached: bool = False

    @property
    def is_multi_task(self) -> bool:
        return len(self.tasks) > 1
