"""
Analysis cache.

TTL cache of classifier results keyed by a hash of the thread content and
the classification settings. Owned by whoever constructs the classifier.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from threadrouter.models.tasks import AnalysisResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000


@dataclass
class _Entry:
    result: AnalysisResult
    expires_at: float


class AnalysisCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[AnalysisResult]:
        """Cached result marked cached=True, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.result.model_copy(update={"cached": True}, deep=True)

    def set(self, key: str, result: AnalysisResult) -> None:
        """Store a result, purging expired entries and evicting the oldest beyond max_entries."""
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                # Dicts keep insertion order, so the first key is the oldest write
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[key] = _Entry(
                result=result.model_copy(deep=True),
                expires_at=now + self.ttl_seconds,
            )

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        with self._lock:
            removed = self._purge_expired(self._clock())
        if removed:
            logger.debug(f"Removed {removed} expired analysis cache entries")
        return removed

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}
