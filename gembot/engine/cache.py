"""
gembot.engine.cache — In-Memory Settings Cache with a Bounded TTL
==================================================================

Settings are read on every credit and transfer (daily caps, tip limits), so
readers keep them in memory.  The cache is an explicit object handed to
:class:`~gembot.services.settings_service.SettingsStore` — tests build
their own isolated instance, and nothing lives in module globals.

Staleness rules:
  * An entry older than ``ttl_seconds`` (never more than 300 s) is a miss.
  * ``invalidate(key)`` drops an entry immediately; the store calls it right
    after every write so the writer never reads its own stale value.
  * Every invalidation bumps the key's generation.  A reader takes
    ``generation(key)`` before loading from the database and hands it back
    to ``put``; a load that raced with a write is then discarded instead of
    caching the old value for a full TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gembot.config import MAX_SETTINGS_CACHE_TTL

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    value: Any
    loaded_at: float


class SettingsCache:
    """Thread-safe TTL cache keyed by setting key.

    ``None`` values are cached too, so a missing setting does not hit the
    database on every read.

    Usage:
        cache = SettingsCache(ttl_seconds=300)
        gen = cache.generation("limits.tip.daily_max")
        entry = cache.lookup("limits.tip.daily_max")
        if entry is None:
            cache.put("limits.tip.daily_max", load_from_db(), generation=gen)
    """

    def __init__(
        self,
        ttl_seconds: float = MAX_SETTINGS_CACHE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = min(ttl_seconds, MAX_SETTINGS_CACHE_TTL)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the fresh entry for *key*, or ``None`` on a miss/expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now - entry.loaded_at >= self.ttl_seconds:
                if entry is not None:
                    del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry

    def generation(self, key: str) -> tuple[int, int]:
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def put(self, key: str, value: Any, *, generation: tuple[int, int] | None = None) -> bool:
        """Cache *value*; dropped if *key* was invalidated since *generation*."""
        with self._lock:
            current = (self._epoch, self._generations.get(key, 0))
            if generation is not None and generation != current:
                logger.debug("Discarding stale load of setting %s", key)
                return False
            self._entries[key] = CacheEntry(value=value, loaded_at=self._clock())
            return True

    def invalidate(self, key: str) -> None:
        """Drop *key* immediately."""
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug("Settings cache invalidated: %s", key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._epoch += 1
        logger.info("Settings cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None
