"""
Unit Tests for the Notion Sink Adapter

Tests property formatting, page content and the pages.create call made
through a mocked notion_client.Client.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import pytest
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

from notion_client.errors import HTTPResponseError, RequestTimeoutError

from threadrouter.integrations.base import AdapterError, SinkContext
from threadrouter.integrations.notion import (
    NotionSinkAdapter,
    build_task_blocks,
    build_task_properties,
    format_notion_property,
)
from threadrouter.models.records import GitHubOutputSettings, NotionFieldRule, NotionOutputSettings
from threadrouter.models.tasks import AISummary, DetectedTask, TaskPriority
from threadrouter.models.thread import DiscussionThread, ThreadMessage

CREDENTIALS = {"api_token": "secret_test"}


@pytest.fixture
def thread():
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return DiscussionThread(
        id="1704110400.000100",
        root_message=ThreadMessage(id="m1", author_handle="U1", content="root", timestamp=ts),
        replies=[ThreadMessage(id="m2", author_handle="U2", content="reply", timestamp=ts)],
        participants=["U1", "U2"],
    )


@pytest.fixture
def context(thread):
    return SinkContext(
        discussion_id="disc_1",
        source_platform="slack",
        source_url="https://slack.com/app_redirect?channel=C1",
        thread=thread,
        summary=AISummary(summary="Checkout is broken", key_points=["fix checkout"]),
        assignee_id="notion-u2",
        mentions={"U1": "notion-u1"},
    )


@pytest.fixture
def task():
    return DetectedTask(
        title="Fix checkout",
        description="Checkout button does nothing",
        topic="design",
        priority=TaskPriority.URGENT,
        assignee="U2",
        tags=["web", "payments"],
        due_date="2024-02-01",
    )


@pytest.fixture
def client():
    client = MagicMock()
    client.pages.create.return_value = {"id": "page-123", "url": "https://www.notion.so/page-123"}
    return client


@pytest.fixture
def adapter(client):
    return NotionSinkAdapter(client_factory=lambda token: client)


# Property formatting


@pytest.mark.parametrize(
    "value, property_type, expected",
    [
        ("Task", "title", {"title": [{"text": {"content": "Task"}}]}),
        ("3", "number", {"number": 3.0}),
        ("abc", "number", {"number": 0}),
        ("High", "select", {"select": {"name": "High"}}),
        ("Done", "status", {"status": {"name": "Done"}}),
        (["a", "b"], "multi_select", {"multi_select": [{"name": "a"}, {"name": "b"}]}),
        ("solo", "multi_select", {"multi_select": [{"name": "solo"}]}),
        (date(2024, 2, 1), "date", {"date": {"start": "2024-02-01"}}),
        ("2024-02-01", "date", {"date": {"start": "2024-02-01"}}),
        (1, "checkbox", {"checkbox": True}),
        ("https://x.io", "url", {"url": "https://x.io"}),
        ("a@b.co", "email", {"email": "a@b.co"}),
        ("user-1", "people", {"people": [{"object": "user", "id": "user-1"}]}),
        ("text", "formula", {"rich_text": [{"text": {"content": "text"}}]}),
    ],
)
def test_format_notion_property(value, property_type, expected):
    assert format_notion_property(value, property_type) == expected


def test_people_without_ids_is_skipped():
    assert format_notion_property([None], "people") is None


def test_long_text_is_truncated():
    formatted = format_notion_property("x" * 5000, "rich_text")

    assert len(formatted["rich_text"][0]["text"]["content"]) == 2000


# Properties and blocks


def test_build_task_properties_applies_mapping(task):
    mapping = {
        "priority": NotionFieldRule(property="Priority", property_type="select", value_map={"urgent": "P0"}),
        "tags": NotionFieldRule(property="Tags", property_type="multi_select"),
        "due_date": NotionFieldRule(property="Due", property_type="date"),
        "assignee": NotionFieldRule(property="Owner", property_type="people"),
        "topic": NotionFieldRule(property="Area", property_type="rich_text"),
    }

    properties = build_task_properties(task, mapping, assignee_id="notion-u2")

    assert properties["Name"] == {"title": [{"text": {"content": "Fix checkout"}}]}
    assert properties["Priority"] == {"select": {"name": "P0"}}
    assert properties["Tags"] == {"multi_select": [{"name": "web"}, {"name": "payments"}]}
    assert properties["Due"] == {"date": {"start": "2024-02-01"}}
    assert properties["Owner"] == {"people": [{"object": "user", "id": "notion-u2"}]}
    assert properties["Area"] == {"rich_text": [{"text": {"content": "design"}}]}


def test_unresolved_assignee_is_not_set(task):
    mapping = {"assignee": NotionFieldRule(property="Owner", property_type="people")}

    properties = build_task_properties(task, mapping, assignee_id=None)

    assert "Owner" not in properties


def test_unmapped_and_missing_fields_are_skipped():
    task = DetectedTask(title="T", description="d")
    mapping = {"priority": NotionFieldRule(property="Priority", property_type="select")}

    assert build_task_properties(task, mapping) == {
        "Name": {"title": [{"text": {"content": "T"}}]}
    }


def test_blocks_render_resolved_and_unresolved_participants(task, context):
    blocks = build_task_blocks(task, context)

    paragraph = next(
        b for b in blocks
        if b["type"] == "paragraph"
        and b["paragraph"]["rich_text"][0]["text"]["content"].startswith("👥")
    )
    rich_text = paragraph["paragraph"]["rich_text"]
    assert rich_text[1] == {"type": "mention", "mention": {"type": "user", "user": {"id": "notion-u1"}}}
    assert rich_text[3]["text"]["content"] == "@U2"


def test_blocks_include_summary_and_link(task, context):
    blocks = build_task_blocks(task, context)
    types = [b["type"] for b in blocks]

    assert blocks[0]["type"] == "callout"
    assert "AI Summary: Checkout is broken" in blocks[0]["callout"]["rich_text"][0]["text"]["content"]
    assert "to_do" in types
    link = blocks[-1]["paragraph"]["rich_text"][1]
    assert link["text"]["link"] == {"url": context.source_url}
    assert link["text"]["content"] == "View Discussion in Slack"


# Adapter


@pytest.mark.asyncio
async def test_create_task_calls_pages_create(adapter, client, task, context):
    settings = NotionOutputSettings(database_id="aaaa-bbbb-cccc")

    created = await adapter.create_task(task, settings, CREDENTIALS, context)

    assert created.external_id == "page-123"
    assert created.external_url == "https://www.notion.so/page-123"
    kwargs = client.pages.create.call_args.kwargs
    assert kwargs["parent"] == {"database_id": "aaaabbbbcccc"}
    assert kwargs["properties"]["Name"]["title"][0]["text"]["content"] == "Fix checkout"
    assert kwargs["children"]


@pytest.mark.asyncio
async def test_create_task_rejects_foreign_settings(adapter, task, context):
    with pytest.raises(AdapterError):
        await adapter.create_task(
            task, GitHubOutputSettings(repo_owner="a", repo_name="b"), CREDENTIALS, context
        )


@pytest.mark.asyncio
async def test_create_task_timeout_is_retryable(adapter, client, task, context):
    client.pages.create.side_effect = RequestTimeoutError()

    with pytest.raises(AdapterError) as exc_info:
        await adapter.create_task(task, NotionOutputSettings(database_id="db"), CREDENTIALS, context)

    assert exc_info.value.retryable is True


@pytest.mark.parametrize("status, retryable", [(429, True), (502, True), (400, False), (404, False)])
def test_http_errors_map_to_retryability(adapter, status, retryable):
    error = MagicMock(spec=HTTPResponseError)
    error.status = status
    error.code = "error"

    wrapped = adapter._wrap_error(error, "pages.create")

    assert wrapped.status_code == status
    assert wrapped.retryable is retryable


@pytest.mark.asyncio
async def test_list_users_returns_people_with_email(adapter, client):
    client.users.list.side_effect = [
        {
            "results": [
                {"id": "u1", "type": "person", "name": "Alice", "person": {"email": "alice@example.com"}},
                {"id": "b1", "type": "bot", "name": "Integration"},
            ],
            "has_more": True,
            "next_cursor": "next",
        },
        {"results": [{"id": "u2", "type": "person", "person": {}}], "has_more": False},
    ]

    users = await adapter.list_users(CREDENTIALS)

    assert [(u.id, u.email) for u in users] == [("u1", "alice@example.com"), ("u2", None)]
    assert client.users.list.call_args_list[1].kwargs == {"start_cursor": "next"}


@pytest.mark.asyncio
async def test_validate_credentials(adapter, client):
    result = await adapter.validate_credentials({"api_token": "weird"})

    assert result.valid
    assert result.warnings
    client.users.me.assert_called_once()
