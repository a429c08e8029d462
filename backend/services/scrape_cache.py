"""In-process TTL cache of scrape results, keyed by external handle.

Entries expire a fixed time after their own ``scraped_at``. Nothing is
persisted across restarts. The scheduled sync, manual triggers and account
linking may all hit the cache at once, so every access takes the lock.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from services.scrape_normalizer import ScrapeResult

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_key(handle: str) -> str:
    return (handle or "").strip().lstrip("@").lower()


class ScrapeCache:
    """Thread-safe map of handle -> ScrapeResult with expiry and stats."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, ScrapeResult] = {}
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expirations": 0,
            "puts": 0,
        }

    def is_fresh(self, result: ScrapeResult) -> bool:
        return self._clock() - result.scraped_at < self.ttl

    def get(self, handle: str) -> ScrapeResult | None:
        """Return the cached result, or None on a miss or an expired entry."""
        key = normalize_key(handle)
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self._stats["misses"] += 1
                return None

            if not self.is_fresh(result):
                del self._entries[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                logger.debug(f"Scrape cache EXPIRED: {key} (scraped_at={result.scraped_at.isoformat()})")
                return None

            self._stats["hits"] += 1
            logger.debug(f"Scrape cache HIT: {key}")
            return result

    def put(self, handle: str, result: ScrapeResult) -> None:
        key = normalize_key(handle)
        with self._lock:
            self._entries[key] = result
            self._stats["puts"] += 1

    def invalidate(self, handle: str) -> bool:
        """Drop one entry. Returns True if something was removed."""
        with self._lock:
            return self._entries.pop(normalize_key(handle), None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Scrape cache cleared ({count} entries)")
        return count

    def get_stats(self) -> dict:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._entries),
                "ttl_seconds": int(self.ttl.total_seconds()),
                "hit_rate": round(self._stats["hits"] / total * 100, 2) if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
