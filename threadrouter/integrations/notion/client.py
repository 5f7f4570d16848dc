"""
Notion Sink Adapter

Creates one database page per task. Notion allows roughly three requests
per second per integration, which the processor enforces through
min_call_interval.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from notion_client import APIResponseError, Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError

from threadrouter.integrations.base import (
    AdapterError,
    CreatedTask,
    SinkAdapter,
    status_is_retryable,
)
from threadrouter.integrations.notion.blocks import (
    build_task_blocks,
    build_task_properties,
)
from threadrouter.models.records import NotionOutputSettings
from threadrouter.models.thread import DestinationUser, ValidationResult

logger = logging.getLogger(__name__)

PLATFORM = "notion"


def _normalize_id(notion_id: str) -> str:
    return notion_id.replace("-", "")


def wrap_notion_error(e: Exception, action: str) -> AdapterError:
    """Map a notion-client error onto AdapterError (timeouts, 5xx and 429 are retryable)."""
    if isinstance(e, RequestTimeoutError):
        return AdapterError(f"Notion {action} timed out", PLATFORM, retryable=True)
    if isinstance(e, HTTPResponseError):
        status = getattr(e, "status", None)
        code = getattr(e, "code", None)
        logger.error(f"Notion API error during {action}: {status} {code}")
        return AdapterError(
            f"Notion API error during {action}: {e}",
            PLATFORM,
            status_code=status,
            retryable=status_is_retryable(status),
        )
    return AdapterError(f"Notion {action} failed: {e}", PLATFORM, retryable=True)


class NotionSinkAdapter(SinkAdapter):
    """Notion database sink."""

    platform = PLATFORM
    min_call_interval = 0.35

    def __init__(self, client_factory: Callable[[str], Client] = lambda token: Client(auth=token)):
        self._client_factory = client_factory

    def _client(self, credentials) -> Client:
        token = credentials.get("api_token")
        if not token:
            raise AdapterError("Notion api_token is not configured", PLATFORM)
        return self._client_factory(token)

    def _wrap_error(self, e: Exception, action: str) -> AdapterError:
        return wrap_notion_error(e, action)

    async def create_task(self, task, field_mapping, credentials, context) -> CreatedTask:
        """
        Create a page in the output's database.

        Args:
            task: Task to create
            field_mapping: The output's NotionOutputSettings
            credentials: Output credentials with api_token
            context: Thread, summary and resolved users

        Raises:
            AdapterError: Notion API failure (5xx/429 retryable)
        """
        if not isinstance(field_mapping, NotionOutputSettings):
            raise AdapterError("Notion output requires Notion settings", PLATFORM)

        client = self._client(credentials)
        properties = build_task_properties(task, field_mapping.field_mapping, context.assignee_id)
        children = build_task_blocks(task, context)

        try:
            page = await asyncio.to_thread(
                client.pages.create,
                parent={"database_id": _normalize_id(field_mapping.database_id)},
                properties=properties,
                children=children,
            )
        except (APIResponseError, HTTPResponseError, RequestTimeoutError) as e:
            raise self._wrap_error(e, "pages.create")

        page_id = page["id"]
        url = page.get("url") or f"https://notion.so/{_normalize_id(page_id)}"
        logger.info(f"Created Notion page {page_id} for task: {task.title}")
        return CreatedTask(external_id=page_id, external_url=url)

    async def list_users(self, credentials) -> List[DestinationUser]:
        client = self._client(credentials)
        users: List[DestinationUser] = []
        cursor: Optional[str] = None

        try:
            while True:
                kwargs = {"start_cursor": cursor} if cursor else {}
                result = await asyncio.to_thread(client.users.list, **kwargs)
                for user in result.get("results", []):
                    if user.get("type") != "person":
                        continue
                    users.append(
                        DestinationUser(
                            id=user["id"],
                            email=(user.get("person") or {}).get("email"),
                            name=user.get("name"),
                        )
                    )
                cursor = result.get("next_cursor")
                if not result.get("has_more") or not cursor:
                    break
        except (APIResponseError, HTTPResponseError, RequestTimeoutError) as e:
            raise self._wrap_error(e, "users.list")

        return users

    async def validate_credentials(self, credentials) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        token = credentials.get("api_token", "")
        if not token.strip():
            return ValidationResult(valid=False, errors=["Notion api_token is required"])

        if not token.startswith(("secret_", "ntn_")):
            warnings.append('Notion tokens usually start with "secret_" or "ntn_"')

        try:
            await asyncio.to_thread(self._client(credentials).users.me)
        except (APIResponseError, HTTPResponseError, RequestTimeoutError) as e:
            errors.append(f"Notion token check failed: {e}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
