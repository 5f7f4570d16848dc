"""
Per-credential call throttle.

Destinations such as Notion rate-limit per integration token. Calls sharing a
credential set are serialized and spaced by a fixed interval; calls with
different credentials do not wait on each other.
"""

import asyncio
import hashlib
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping

logger = logging.getLogger(__name__)


def credential_fingerprint(platform: str, credentials: Mapping[str, str]) -> str:
    """Stable, non-reversible key for a credential set."""
    payload = json.dumps(dict(credentials), sort_keys=True)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{platform}:{digest}"


class CredentialThrottle:
    """Serializes calls per credential key with a minimum spacing."""

    def __init__(self, clock=time.monotonic):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_call: Dict[str, float] = {}
        self._clock = clock

    @asynccontextmanager
    async def slot(self, key: str, min_interval: float) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            last = self._last_call.get(key)
            if last is not None and min_interval > 0:
                wait = min_interval - (self._clock() - last)
                if wait > 0:
                    logger.debug(f"Throttling {key} for {wait:.2f}s")
                    await asyncio.sleep(wait)
            try:
                yield
            finally:
                self._last_call[key] = self._clock()
