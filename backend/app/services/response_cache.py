"""
Response Cache

Process-local TTL cache for expensive read queries (dashboard aggregates,
growth metrics, credit balances). Stale reads within the TTL are acceptable;
entries are never shared across instances.

The cache is constructed explicitly and injected where needed. The app
lifespan owns the periodic sweep task.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from app.config import get_settings

logger = logging.getLogger(__name__)


class _Miss:
    """Sentinel returned by ``ResponseCache.get`` when nothing usable is cached."""

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class ResponseCache:
    """
    Keyed TTL cache.

    Usage:
        cache = ResponseCache(default_ttl=5.0)
        cached = cache.get(key)
        if cached is MISS:
            cached = await load()
            cache.set(key, cached)
    """

    def __init__(
        self,
        default_ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return MISS

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            logger.debug(f"[Cache] EXPIRED: {key}")
            return MISS

        logger.debug(f"[Cache] HIT: {key} (age: {now - entry.stored_at:.3f}s)")
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = ttl if ttl is not None and ttl > 0 else self.default_ttl
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=effective_ttl)
        logger.debug(f"[Cache] SET: {key} (ttl: {effective_ttl}s)")

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        logger.debug(f"[Cache] INVALIDATE: {key}")
        return removed

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching the regex ``pattern`` (re.search semantics)."""
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        logger.debug(f"[Cache] INVALIDATE_PATTERN: {pattern} ({len(doomed)} entries)")
        return len(doomed)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        logger.debug(f"[Cache] CLEAR: {size} entries removed")
        return size

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "keys": list(self._entries)}

    def cleanup(self) -> int:
        """Sweep expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"[Cache] CLEANUP: {len(expired)} expired entries removed")
        return len(expired)

    async def run_sweeper(self, interval: float = 30.0) -> None:
        """Sweep forever every ``interval`` seconds; cancel the task to stop."""
        logger.info(f"[Cache] Sweeper started (interval: {interval}s)")
        try:
            while True:
                await asyncio.sleep(interval)
                self.cleanup()
        except asyncio.CancelledError:
            logger.info("[Cache] Sweeper stopped")
            raise


class CacheKeys:
    """Cache key builders shared by readers and invalidators."""

    @staticmethod
    def dashboard(org_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None) -> str:
        return f"dashboard:{org_id}:{start_date or 'all'}:{end_date or 'all'}"

    @staticmethod
    def growth(org_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None) -> str:
        return f"growth:{org_id}:{start_date or 'all'}:{end_date or 'all'}"

    @staticmethod
    def escalations(
        org_id: str,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> str:
        return f"escalations:{org_id}:{status or 'all'}:{start_date or 'all'}:{end_date or 'all'}"

    @staticmethod
    def settings(org_id: str) -> str:
        return f"settings:{org_id}"

    @staticmethod
    def team_members(org_id: str) -> str:
        return f"team:{org_id}"

    @staticmethod
    def credits(org_id: str) -> str:
        return f"credits:{org_id}"

    @staticmethod
    def organization_pattern(org_id: str) -> str:
        """Regex matching every key that belongs to one organization."""
        return rf"^[a-z]+:{re.escape(org_id)}(:|$)"


# Singleton instance
_response_cache: Optional[ResponseCache] = None


def get_response_cache() -> ResponseCache:
    """Get or create the response cache instance."""
    global _response_cache
    if _response_cache is None:
        _response_cache = ResponseCache(default_ttl=get_settings().cache_default_ttl_seconds)
    return _response_cache
