"""
Adapter Registry

Name-keyed table of source and sink adapters. Supporting a new platform means
registering one adapter here; the processor looks adapters up by the
platform string stored on inputs and outputs.
"""

import logging
from typing import Dict, List, Optional

from threadrouter.config import Settings, get_settings
from threadrouter.integrations.base import SinkAdapter, SourceAdapter

logger = logging.getLogger(__name__)


class UnknownPlatformError(LookupError):
    """Raised when no adapter is registered for a platform."""

    retryable = False


class AdapterRegistry:
    """Registry of source and sink adapters keyed by platform type."""

    def __init__(self):
        self._sources: Dict[str, SourceAdapter] = {}
        self._sinks: Dict[str, SinkAdapter] = {}

    def register_source(self, adapter: SourceAdapter) -> None:
        if not adapter.platform:
            raise ValueError("Source adapter must declare a platform")
        self._sources[adapter.platform] = adapter
        logger.debug(f"Registered source adapter: {adapter.platform}")

    def register_sink(self, adapter: SinkAdapter) -> None:
        if not adapter.platform:
            raise ValueError("Sink adapter must declare a platform")
        self._sinks[adapter.platform] = adapter
        logger.debug(f"Registered sink adapter: {adapter.platform}")

    def get_source(self, platform: str) -> SourceAdapter:
        try:
            return self._sources[platform]
        except KeyError:
            raise UnknownPlatformError(f"No source adapter for platform '{platform}'")

    def get_sink(self, platform: str) -> SinkAdapter:
        try:
            return self._sinks[platform]
        except KeyError:
            raise UnknownPlatformError(f"No sink adapter for platform '{platform}'")

    def has_source(self, platform: str) -> bool:
        return platform in self._sources

    @property
    def source_platforms(self) -> List[str]:
        return sorted(self._sources)

    @property
    def sink_platforms(self) -> List[str]:
        return sorted(self._sinks)


def build_default_registry(settings: Optional[Settings] = None) -> AdapterRegistry:
    """
    Registry with every built-in adapter.

    Args:
        settings: Source adapters take their replay window from
            webhook_tolerance_seconds (defaults to get_settings())
    """
    from threadrouter.integrations.slack import SlackSourceAdapter
    from threadrouter.integrations.figma import FigmaSourceAdapter
    from threadrouter.integrations.notion import NotionSinkAdapter, NotionSourceAdapter
    from threadrouter.integrations.github import GitHubSinkAdapter

    settings = settings or get_settings()
    tolerance = settings.webhook_tolerance_seconds

    registry = AdapterRegistry()
    registry.register_source(SlackSourceAdapter(tolerance_seconds=tolerance))
    registry.register_source(FigmaSourceAdapter(tolerance_seconds=tolerance))
    registry.register_source(NotionSourceAdapter(tolerance_seconds=tolerance))
    registry.register_sink(NotionSinkAdapter())
    registry.register_sink(GitHubSinkAdapter())
    return registry
