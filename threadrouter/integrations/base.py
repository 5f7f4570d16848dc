"""
Adapter Contracts

Every source platform implements SourceAdapter, every destination implements
SinkAdapter. Network side effects live only in adapters; the processor,
router and resolver only see these interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from threadrouter.models.records import DiscussionStatus, Input, Output
from threadrouter.models.tasks import AISummary, DetectedTask
from threadrouter.models.thread import (
    DestinationUser,
    DiscussionThread,
    ParsedDiscussion,
    ValidationResult,
)


# Custom Exceptions


class AdapterError(Exception):
    """
    Raised by adapters for platform failures.

    retryable=True marks transient failures (5xx, 429, network); everything
    else (bad credentials, missing resources, malformed input) is permanent.
    """

    def __init__(
        self,
        message: str,
        platform: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code
        self.retryable = retryable


class IgnoredEvent(Exception):
    """Raised by parse_incoming or complete_incoming for events that need no processing."""

    retryable = False

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SignatureVerificationError(Exception):
    """Raised when a webhook signature or timestamp is invalid."""

    retryable = False


def status_is_retryable(status_code: Optional[int]) -> bool:
    return status_code is not None and (status_code >= 500 or status_code == 429)


@dataclass
class CreatedTask:
    """Identifiers of a task created in a destination."""

    external_id: str
    external_url: str


@dataclass
class SinkContext:
    """
    Per-delivery context handed to SinkAdapter.create_task().

    assignee_id is already resolved for the sink's platform (or None);
    mentions maps source participant handles to destination user IDs for the
    participants that could be resolved.
    """

    discussion_id: str
    source_platform: str
    source_url: str
    thread: DiscussionThread
    summary: Optional[AISummary] = None
    assignee_id: Optional[str] = None
    mentions: Dict[str, str] = field(default_factory=dict)
    output: Optional[Output] = None


class SourceAdapter(ABC):
    """Contract for platforms discussions are ingested from."""

    platform: str = ""

    @abstractmethod
    def verify_request(
        self,
        headers: Mapping[str, str],
        body: bytes,
        secret: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Raise SignatureVerificationError unless the request is authentic and fresh."""

    @abstractmethod
    def parse_incoming(self, payload: Dict[str, Any]) -> ParsedDiscussion:
        """Turn a webhook payload into a ParsedDiscussion."""

    @abstractmethod
    async def fetch_thread(
        self, thread_ref: str, credentials: Mapping[str, str]
    ) -> DiscussionThread:
        """Fetch the full thread (root message plus replies)."""

    @abstractmethod
    async def post_reply(
        self, thread_ref: str, text: str, credentials: Mapping[str, str]
    ) -> None:
        """Post a reply into the thread. Raises AdapterError on failure."""

    @abstractmethod
    async def validate_credentials(
        self, credentials: Mapping[str, str]
    ) -> ValidationResult:
        """Check that the credentials are usable."""

    def challenge_response(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Response for platform handshake requests, or None for regular events."""
        return None

    def is_retry_delivery(self, headers: Mapping[str, str]) -> bool:
        """Whether the platform is redelivering an event it already sent."""
        return False

    async def complete_incoming(
        self, parsed: ParsedDiscussion, input_: Input
    ) -> ParsedDiscussion:
        """
        Fill in event details the webhook body does not carry.

        Called by ingress once the owning input is known, so the input's
        credentials and settings are available. Returns parsed unchanged by
        default.

        Raises:
            IgnoredEvent: The completed event needs no processing
            AdapterError: The details could not be fetched
        """
        return parsed

    async def update_status(
        self,
        thread_ref: str,
        status: DiscussionStatus,
        credentials: Mapping[str, str],
    ) -> None:
        """Reflect processing status on the source thread. No-op by default."""
        return None

    async def lookup_user_email(
        self, user_id: str, credentials: Mapping[str, str]
    ) -> Optional[str]:
        """Email of a source user, when the platform exposes it."""
        return None


class SinkAdapter(ABC):
    """Contract for destinations tasks are delivered to."""

    platform: str = ""
    # Minimum seconds between calls sharing one credential set
    min_call_interval: float = 0.0

    @abstractmethod
    async def create_task(
        self,
        task: DetectedTask,
        field_mapping: Any,
        credentials: Mapping[str, str],
        context: SinkContext,
    ) -> CreatedTask:
        """Create the task record. Raises AdapterError on failure."""

    @abstractmethod
    async def validate_credentials(
        self, credentials: Mapping[str, str]
    ) -> ValidationResult:
        """Check that the credentials are usable."""

    async def list_users(
        self, credentials: Mapping[str, str]
    ) -> List[DestinationUser]:
        """Destination user directory used for email auto-matching."""
        return []
