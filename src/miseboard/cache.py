"""
TTL cache for slow, state-independent mise queries.

The plugin registry and the remote version list of a tool do not change when
the user installs or removes something locally, yet each costs a network
round trip inside mise. Results are kept for a short TTL so flipping between
the version picker and the registry stays snappy.

Architecture:
- CacheManager: key -> CacheEntry map, TTL chosen by key prefix
- cached: method decorator keyed on prefix + call arguments
- Thread-safe operations using RLock (gateway calls run in worker threads)

A refresh (``r``) clears everything, so stale registry data never outlives
an explicit user request.
"""

import time
import threading
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass
from functools import wraps
import logging

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30.0


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheManager:
    """Thread-safe cache manager."""

    def __init__(self, ttl_config: Optional[Dict[str, float]] = None):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

        # TTL (seconds) per key prefix
        self.ttl_config = ttl_config or {
            'registry': 300.0,
            'versions': 60.0,
        }

    def _ttl_for(self, key: str) -> float:
        prefix = key.split(":", 1)[0]
        return self.ttl_config.get(prefix, DEFAULT_TTL)

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return ``(hit, value)`` so that cached falsy results still count."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or entry.is_expired(time.monotonic()):
                self._cache.pop(key, None)
                self.misses += 1
                return False, None
            self.hits += 1
            return True, entry.value

    def get(self, key: str, default: Any = None) -> Any:
        hit, value = self.lookup(key)
        return value if hit else default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._ttl_for(key) if ttl is None else ttl
        with self._lock:
            self._cache[key] = CacheEntry(value, time.monotonic() + ttl)

    def invalidate(self, prefix: Optional[str] = None) -> None:
        """Drop every entry, or only those whose key starts with ``prefix``."""
        with self._lock:
            if prefix is None:
                dropped = len(self._cache)
                self._cache.clear()
            else:
                keys = [k for k in self._cache if k.startswith(prefix)]
                for key in keys:
                    del self._cache[key]
                dropped = len(keys)
        logger.debug(f"Cache invalidated ({prefix or 'all'}): {dropped} entries dropped")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                'hits': self.hits,
                'misses': self.misses,
                'cache_size': len(self._cache),
                'hit_rate_percent': round(self.hits / total * 100, 2) if total else 0,
            }


# Global cache instance
cache_manager = CacheManager()


def cached(key_prefix: str, ttl: Optional[float] = None):
    """Cache a method's result per positional arguments.

    Usage:
        @cached(key_prefix="versions")
        def fetch_versions(self, tool): ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args):
            key = ":".join([key_prefix, *map(str, args)])
            hit, value = cache_manager.lookup(key)
            if hit:
                return value
            value = func(self, *args)
            cache_manager.set(key, value, ttl)
            return value
        return wrapper
    return decorator
