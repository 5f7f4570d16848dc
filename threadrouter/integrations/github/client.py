"""
GitHub Sink Adapter

Responsibilities:
- Issue creation with labels derived from task fields
- Assignment of the resolved GitHub user
- Issue body with summary, action items and a link back to the discussion
"""

import asyncio
import logging
from typing import Callable, List

from github import Github
from github.GithubException import (
    BadCredentialsException,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from threadrouter.integrations.base import (
    AdapterError,
    CreatedTask,
    SinkAdapter,
    SinkContext,
    status_is_retryable,
)
from threadrouter.models.records import GitHubOutputSettings
from threadrouter.models.tasks import DetectedTask
from threadrouter.models.thread import DestinationUser, ValidationResult

logger = logging.getLogger(__name__)

PLATFORM = "github"


def build_labels(task: DetectedTask, settings: GitHubOutputSettings) -> List[str]:
    """Static labels plus label_map lookups for priority, type, topic and tags."""
    labels = list(settings.labels)

    values = {
        "priority": [task.priority.value] if task.priority else [],
        "type": [task.type.value] if task.type else [],
        "topic": [task.topic] if task.topic else [],
        "tags": task.tags or [],
    }
    for field_name, field_values in values.items():
        mapping = settings.label_map.get(field_name, {})
        for value in field_values:
            label = mapping.get(value) or mapping.get(value.lower())
            if label and label not in labels:
                labels.append(label)

    return labels


def build_issue_body(task: DetectedTask, context: SinkContext) -> str:
    """
    Markdown issue body.

    Participants resolved to GitHub logins are @-mentioned; everyone else is
    rendered as plain text so nobody unrelated gets pinged.
    """
    body_parts = [task.description]

    if task.action_items:
        items = "\n".join(f"- [ ] {item}" for item in task.action_items)
        body_parts.append(f"## Action Items\n\n{items}")

    if context.summary and context.summary.summary:
        body_parts.append(f"## Discussion Summary\n\n{context.summary.summary}")

    metadata_parts = [f"**Source**: {context.source_platform}"]
    if context.source_url:
        metadata_parts.append(f"**Discussion**: {context.source_url}")

    participants = []
    for handle in context.thread.participants:
        login = context.mentions.get(handle)
        participants.append(f"@{login}" if login else f"`{handle}`")
    if participants:
        metadata_parts.append(f"**Participants**: {', '.join(participants)}")

    if task.priority:
        metadata_parts.append(f"**Priority**: {task.priority.value}")
    if task.due_date:
        metadata_parts.append(f"**Due**: {task.due_date}")

    body_parts.append("## Metadata\n\n" + "\n".join(metadata_parts))
    body_parts.append(
        "---\n\n"
        "🤖 *This issue was created automatically from a team discussion.*"
    )

    return "\n\n".join(body_parts)


class GitHubSinkAdapter(SinkAdapter):
    """GitHub issues sink."""

    platform = PLATFORM
    min_call_interval = 1.0

    def __init__(self, client_factory: Callable[[str], Github] = lambda token: Github(token)):
        self._client_factory = client_factory

    def _client(self, credentials) -> Github:
        token = credentials.get("token")
        if not token:
            raise AdapterError("GitHub token is not configured", PLATFORM)
        return self._client_factory(token)

    def _wrap_error(self, e: GithubException, action: str) -> AdapterError:
        if isinstance(e, RateLimitExceededException):
            retryable = True
        elif isinstance(e, (BadCredentialsException, UnknownObjectException)):
            retryable = False
        else:
            retryable = status_is_retryable(e.status)
        logger.error(f"GitHub API error during {action}: {e.status} {e.data}")
        return AdapterError(
            f"GitHub API error during {action}: {e.status}",
            PLATFORM,
            status_code=e.status,
            retryable=retryable,
        )

    def _create_issue(self, credentials, settings: GitHubOutputSettings, task, context):
        repo = self._client(credentials).get_repo(f"{settings.repo_owner}/{settings.repo_name}")

        labels = build_labels(task, settings)
        if labels:
            # Only apply labels that exist in the repository
            existing = {label.name for label in repo.get_labels()}
            missing = [label for label in labels if label not in existing]
            if missing:
                logger.info(f"Skipping labels not present in {repo.full_name}: {missing}")
            labels = [label for label in labels if label in existing]

        assignees = []
        if settings.assign_resolved_user and context.assignee_id:
            assignees.append(context.assignee_id)

        return repo.create_issue(
            title=task.title[:256],
            body=build_issue_body(task, context),
            labels=labels,
            assignees=assignees,
        )

    async def create_task(self, task, field_mapping, credentials, context) -> CreatedTask:
        """
        Open an issue in the configured repository.

        Args:
            task: Task to create
            field_mapping: The output's GitHubOutputSettings
            credentials: Output credentials with token
            context: Thread, summary and resolved users

        Raises:
            AdapterError: GitHub API failure (rate limit and 5xx retryable)
        """
        if not isinstance(field_mapping, GitHubOutputSettings):
            raise AdapterError("GitHub output requires GitHub settings", PLATFORM)

        try:
            issue = await asyncio.to_thread(
                self._create_issue, credentials, field_mapping, task, context
            )
        except GithubException as e:
            raise self._wrap_error(e, "create_issue")

        logger.info(f"Created GitHub issue #{issue.number}: {issue.html_url}")
        return CreatedTask(external_id=str(issue.number), external_url=issue.html_url)

    async def list_users(self, credentials) -> List[DestinationUser]:
        """Members of the token owner's organizations that expose a public email."""
        def _list():
            client = self._client(credentials)
            users = []
            for org in client.get_user().get_orgs():
                for member in org.get_members():
                    if member.email:
                        users.append(
                            DestinationUser(id=member.login, email=member.email, name=member.name)
                        )
            return users

        try:
            return await asyncio.to_thread(_list)
        except GithubException as e:
            raise self._wrap_error(e, "list_users")

    async def validate_credentials(self, credentials) -> ValidationResult:
        errors: List[str] = []

        token = credentials.get("token", "")
        if not token.strip():
            return ValidationResult(valid=False, errors=["GitHub token is required"])

        try:
            login = await asyncio.to_thread(lambda: self._client(credentials).get_user().login)
            logger.info(f"GitHub token valid for {login}")
        except GithubException as e:
            errors.append(f"GitHub token check failed: {e.status}")

        return ValidationResult(valid=not errors, errors=errors)
