"""
Read-Through Cache

Short-TTL in-process key/value store in front of read-heavy queries
(per-user order lists, pricing configuration, notification templates).

Expiry is lazy on read; cleanup() is a memory-hygiene sweep only.
Mutations that could change a cached result must invalidate it.

Every invalidation bumps a generation counter. get_or_load() only stores
a loaded value if no invalidation happened while the loader ran, so a
read that raced a mutation cannot put pre-mutation data back.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import CacheTTL


logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    written_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl


class ReadThroughCache:
    """
    Thread-safe TTL cache.

    Usage:
        orders = cache.get_or_load(CacheKeys.user_orders(uid, role), load, CacheTTL.MEDIUM)
    """

    def __init__(self, default_ttl: float = 5 * 60, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._generation = 0
        self.default_ttl = default_ttl

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expired(self._clock()):
                del self._entries[key]
                return default
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._store(key, value, ttl)

    def _store(self, key: str, value: Any, ttl: Optional[float]) -> None:
        # caller holds the lock
        self._entries[key] = CacheEntry(
            value=value,
            written_at=self._clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
        )

    def delete(self, key: str) -> bool:
        with self._lock:
            self._generation += 1
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Return the cached value, or call loader() and cache its result.

        The result is returned but not cached when an invalidation ran
        while loader() was executing.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        started_at = self.generation
        value = loader()
        with self._lock:
            if self._generation == started_at:
                self._store(key, value, ttl)
            else:
                logger.debug(f"Cache invalidated while loading '{key}', result not stored")
        return value

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix. Returns count removed."""
        with self._lock:
            self._generation += 1
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def cleanup(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            keys: List[str] = list(self._entries.keys())
        return {"size": len(keys), "keys": keys}


class CacheKeys:
    """Cache key builders for consistent naming."""

    ORDERS_PREFIX = "orders:"

    @staticmethod
    def user_orders(user_id: str, role: str) -> str:
        return f"orders:{role}:{user_id}"

    @staticmethod
    def pricing_config() -> str:
        return "pricing:config"

    @staticmethod
    def agent_pricing(agent_id: str) -> str:
        return f"pricing:agent:{agent_id}"

    @staticmethod
    def notification_templates() -> str:
        return "templates:notifications"


# Process-wide instance used by the API
cache = ReadThroughCache()


def invalidate_order_cache(target: ReadThroughCache = None) -> int:
    """
    Drop every order-list entry.

    Any order mutation can change the lists of the owner, the assignees,
    the agent and the operator, so all order lists are dropped.
    """
    return (target or cache).invalidate_prefix(CacheKeys.ORDERS_PREFIX)


class CacheSweeper:
    """Background thread that periodically runs cache.cleanup()."""

    def __init__(self, target: ReadThroughCache, interval_seconds: float):
        self.target = target
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="cache-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.target.cleanup()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}")


__all__ = [
    "ReadThroughCache",
    "CacheKeys",
    "CacheTTL",
    "CacheSweeper",
    "cache",
    "invalidate_order_cache",
]
