"""
Runtime container.

Wires the store, adapters, classifier and processor once per process.
Routes receive it through FastAPI's dependency injection, so tests can
override get_runtime with a container built from fakes.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from threadrouter.ai_core.classification import AnalysisCache, TaskClassifier
from threadrouter.config import Settings, get_settings
from threadrouter.integrations.registry import AdapterRegistry, build_default_registry
from threadrouter.services.mention_resolver import MentionResolver
from threadrouter.services.processor import Processor
from threadrouter.services.router import ConfidenceRouter
from threadrouter.services.runner import JobRunner
from threadrouter.services.store import InMemoryStore, Store
from threadrouter.services.throttle import CredentialThrottle

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: Store
    registry: AdapterRegistry
    processor: Processor
    runner: JobRunner

    def secret_for(self, platform: str) -> str:
        """Webhook verification secret of a source platform."""
        secrets = {
            "slack": self.settings.slack_signing_secret,
            "figma": self.settings.figma_webhook_passcode,
            "notion": self.settings.notion_webhook_secret,
        }
        return secrets.get(platform, "")


def build_runtime(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    registry: Optional[AdapterRegistry] = None,
    classifier: Optional[TaskClassifier] = None,
) -> Runtime:
    settings = settings or get_settings()

    if store is None:
        if settings.flows_file:
            store = InMemoryStore.from_yaml(settings.flows_file)
        else:
            logger.warning("No flows_file configured; starting with an empty store")
            store = InMemoryStore()

    registry = registry or build_default_registry(settings)
    classifier = classifier or TaskClassifier(
        cache=AnalysisCache(
            ttl_seconds=settings.ai_cache_ttl_seconds,
            max_entries=settings.ai_cache_max_entries,
        ),
        settings=settings,
    )

    processor = Processor(
        store=store,
        registry=registry,
        classifier=classifier,
        resolver=MentionResolver(store, persist_unmapped=settings.persist_unmapped_mentions),
        router=ConfidenceRouter(settings.routing_gap_threshold),
        throttle=CredentialThrottle(),
        settings=settings,
    )

    return Runtime(
        settings=settings,
        store=store,
        registry=registry,
        processor=processor,
        runner=JobRunner(processor),
    )


@lru_cache
def get_runtime() -> Runtime:
    return build_runtime()
