"""
Shared fixtures: in-memory store seeded with one flow, fake adapters and a
fake classifier, so pipeline tests run without network access.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from threadrouter.config import Settings
from threadrouter.integrations.base import (
    AdapterError,
    CreatedTask,
    IgnoredEvent,
    SignatureVerificationError,
    SinkAdapter,
    SourceAdapter,
)
from threadrouter.integrations.registry import AdapterRegistry
from threadrouter.models.records import (
    AISettings,
    Flow,
    GitHubOutputSettings,
    Input,
    NotionOutputSettings,
    Output,
)
from threadrouter.models.tasks import AISummary, AnalysisResult, DetectedTask
from threadrouter.models.thread import (
    DestinationUser,
    DiscussionThread,
    ParsedDiscussion,
    ThreadMessage,
    ValidationResult,
)
from threadrouter.services.mention_resolver import MentionResolver
from threadrouter.services.processor import Processor
from threadrouter.services.router import ConfidenceRouter
from threadrouter.services.store import InMemoryStore
from threadrouter.services.throttle import CredentialThrottle

WORKSPACE = "W1"


def make_thread(thread_id: str = "T1", participants=("U1", "U2")) -> DiscussionThread:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return DiscussionThread(
        id=thread_id,
        root_message=ThreadMessage(id="m1", author_handle="U1", content="The login button is broken", timestamp=ts),
        replies=[ThreadMessage(id="m2", author_handle="U2", content="I'll look at it", timestamp=ts)],
        participants=list(participants),
    )


class FakeSource(SourceAdapter):
    """Source adapter driven entirely by the test."""

    platform = "chat"

    def __init__(self):
        self.thread = make_thread()
        self.fetch_errors: List[Exception] = []
        self.fetch_calls = 0
        self.reply_error: Optional[Exception] = None
        self.replies: List[str] = []
        self.statuses: List[str] = []
        self.emails: Dict[str, str] = {}
        self.complete_error: Optional[Exception] = None
        self.completed_inputs: List[str] = []

    def verify_request(self, headers, body, secret, now=None):
        if headers.get("x-test-secret") != secret:
            raise SignatureVerificationError("bad secret")

    def challenge_response(self, payload):
        if payload.get("type") == "handshake":
            return {"challenge": payload["challenge"]}
        return None

    def is_retry_delivery(self, headers):
        return headers.get("x-retry") is not None

    def parse_incoming(self, payload):
        if payload.get("ignore"):
            raise IgnoredEvent("bot message")
        if "text" not in payload:
            raise AdapterError("missing text", self.platform)
        return ParsedDiscussion(
            platform=self.platform,
            workspace_id=payload.get("workspace", WORKSPACE),
            source_thread_id=payload.get("thread", "C1:1.0"),
            source_url="https://chat.example/thread/1",
            author_handle="U1",
            title=payload["text"][:50],
            content=payload["text"],
            participants=["U1"],
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    async def complete_incoming(self, parsed, input_):
        self.completed_inputs.append(input_.id)
        if self.complete_error is not None:
            raise self.complete_error
        return parsed

    async def fetch_thread(self, thread_ref, credentials):
        self.fetch_calls += 1
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return self.thread

    async def post_reply(self, thread_ref, text, credentials):
        if self.reply_error is not None:
            raise self.reply_error
        self.replies.append(text)

    async def update_status(self, thread_ref, status, credentials):
        self.statuses.append(status.value)

    async def lookup_user_email(self, user_id, credentials):
        return self.emails.get(user_id)

    async def validate_credentials(self, credentials):
        return ValidationResult(valid=True)


class FakeSink(SinkAdapter):
    """Sink adapter recording created tasks; failures are keyed by task title."""

    def __init__(self, platform: str):
        self.platform = platform
        self.created: List[dict] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.users: List[DestinationUser] = []

    async def create_task(self, task, field_mapping, credentials, context):
        errors = self.failures.get(task.title)
        if errors:
            raise errors.pop(0) if len(errors) > 1 else errors[0]
        self.created.append({"task": task, "settings": field_mapping, "context": context})
        n = len(self.created)
        return CreatedTask(external_id=f"{self.platform}-{n}", external_url=f"https://{self.platform}.example/{n}")

    async def validate_credentials(self, credentials):
        return ValidationResult(valid=True)

    async def list_users(self, credentials):
        return self.users


class FakeClassifier:
    """Returns a fixed analysis; errors queued in `errors` are raised first."""

    def __init__(self, tasks=None):
        self.tasks = tasks if tasks is not None else [
            DetectedTask(title="Fix login button", description="Button does nothing", topic="design")
        ]
        self.errors: List[Exception] = []
        self.calls: List[dict] = []

    async def classify(self, thread, accepted_topics, ai_settings=None, source_type=""):
        self.calls.append({"thread": thread, "accepted_topics": accepted_topics, "ai_settings": ai_settings})
        if self.errors:
            raise self.errors.pop(0)
        return AnalysisResult(
            summary=AISummary(summary="Login button broken", key_points=["fix button"]),
            tasks=[t.model_copy() for t in self.tasks],
        )


async def _no_sleep(delay):
    return None


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        retry_base_delay=0.0,
        job_max_attempts=3,
        delivery_max_attempts=2,
        slack_signing_secret="slack-secret",
    )


@pytest.fixture
def store():
    store = InMemoryStore()
    flow = store.add_flow(
        Flow(id="flow_1", name="Product", accepted_topics=["design", "infra"], ai=AISettings())
    )
    store.add_input(
        Input(id="input_1", flow_id=flow.id, platform="chat", workspace_id=WORKSPACE, credentials={"token": "x"})
    )
    store.add_output(
        Output(
            id="out_design",
            flow_id=flow.id,
            name="Design board",
            accepted_topics=["design"],
            credentials={"api_token": "n1"},
            settings=NotionOutputSettings(database_id="db1"),
        )
    )
    store.add_output(
        Output(
            id="out_infra",
            flow_id=flow.id,
            name="Platform issues",
            accepted_topics=["infra", "backend"],
            credentials={"token": "g1"},
            settings=GitHubOutputSettings(repo_owner="acme", repo_name="platform"),
        )
    )
    store.add_output(
        Output(
            id="out_default",
            flow_id=flow.id,
            name="Triage",
            is_default=True,
            credentials={"api_token": "n2"},
            settings=NotionOutputSettings(database_id="db-default"),
        )
    )
    return store


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def notion_sink():
    return FakeSink("notion")


@pytest.fixture
def github_sink():
    return FakeSink("github")


@pytest.fixture
def registry(source, notion_sink, github_sink):
    registry = AdapterRegistry()
    registry.register_source(source)
    registry.register_sink(notion_sink)
    registry.register_sink(github_sink)
    return registry


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def processor(store, registry, classifier, settings):
    return Processor(
        store=store,
        registry=registry,
        classifier=classifier,
        resolver=MentionResolver(store),
        router=ConfidenceRouter(settings.routing_gap_threshold),
        throttle=CredentialThrottle(),
        settings=settings,
        sleep=_no_sleep,
    )
