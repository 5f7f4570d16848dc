# GitHub integration module
from threadrouter.integrations.github.client import (
    GitHubSinkAdapter,
    build_issue_body,
    build_labels,
)

__all__ = ["GitHubSinkAdapter", "build_issue_body", "build_labels"]
