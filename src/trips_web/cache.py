# src/trips_web/cache.py

# In-process expiring key/value cache for session records, privilege tokens
# and the trip index. Entries are evicted lazily on read and in bulk by
# purge_expired, which the lifespan janitor calls periodically.

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# (value, expires_at); expires_at is None for entries that never expire
_Entry = Tuple[Any, Optional[float]]


class EphemeralCache:
    def __init__(
        self,
        default_ttl: float,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return None
        return self._clock() + ttl

    def _is_expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and now >= expires_at

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._expiry(ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def get(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._is_expired(expires_at, now):
                del self._entries[key]
                return None
            return value

    def ttl_remaining(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires; ``None`` if missing or non-expiring."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] is None or self._is_expired(entry[1], now):
                return None
            return entry[1] - now

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            dead = [k for k, (_, exp) in self._entries.items() if self._is_expired(exp, now)]
            for k in dead:
                del self._entries[k]
        if dead:
            logger.debug("%s: purged %d expired entries", self.name, len(dead))
        return len(dead)

    def flush(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("%s: flushed %d entries", self.name, count)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for _, exp in self._entries.values() if not self._is_expired(exp, now))


async def run_janitor(caches: Tuple[EphemeralCache, ...], interval: float) -> None:
    """Purge expired entries from ``caches`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        for cache in caches:
            cache.purge_expired()
