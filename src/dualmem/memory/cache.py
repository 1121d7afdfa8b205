"""Result cache shared by the engine.

Entries are valid for ``ttl`` seconds after they were stored. Cleanup drops
entries older than ``max_age`` or hit fewer than ``min_hits`` times, and
trimming keeps only the most-hit entries once the cache grows past a ceiling.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from dualmem.memory.models import MemoryQuery

logger = logging.getLogger(__name__)

DEFAULT_TTL = 10 * 60
DEFAULT_MAX_AGE = 30 * 60


def cache_key(query: MemoryQuery) -> str:
    """Deterministic key for a query: type, text, context, embedding prefix, limit."""
    context = json.dumps(query.context, sort_keys=True, default=str) if query.context else ""
    embedding = ",".join(str(v) for v in query.embedding[:5]) if query.embedding else ""
    raw = f"{query.type}:{query.query}:{context}:{embedding}:{query.limit or 10}"
    return hashlib.sha256(raw.encode()).hexdigest()


@dataclass
class CacheEntry:
    result: Any
    timestamp: float
    hits: int = 1


class ResultCache:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_age: float = DEFAULT_MAX_AGE,
        min_hits: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_age = max_age
        self.min_hits = min_hits
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> CacheEntry | None:
        """Return a still-valid entry and count the hit, or None."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.timestamp >= self.ttl:
            return None
        entry.hits += 1
        return entry

    def put(self, key: str, result: Any) -> None:
        self._entries[key] = CacheEntry(result=result, timestamp=self._clock())

    def entry(self, key: str) -> CacheEntry | None:
        """Raw lookup without validity check or hit counting."""
        return self._entries.get(key)

    def cleanup(self) -> int:
        now = self._clock()
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.timestamp > self.max_age or entry.hits < self.min_hits
        ]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Cache cleanup removed %d entries", len(stale))
        return len(stale)

    def trim(self, ceiling: int = 1000, keep: int = 500) -> int:
        """Keep the ``keep`` most-hit entries when the cache exceeds ``ceiling``."""
        if len(self._entries) <= ceiling:
            return 0
        ranked = sorted(self._entries.items(), key=lambda item: item[1].hits, reverse=True)
        removed = len(ranked) - keep
        self._entries = dict(ranked[:keep])
        logger.info("Cache trimmed to %d entries (%d removed)", keep, removed)
        return removed

    def clear(self) -> None:
        self._entries.clear()
