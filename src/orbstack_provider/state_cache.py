"""Machine State Cache Module.

This module provides a TTL-based, in-memory cache for machine state queries.
Hosts ask for machine state many times during a single command; the cache
keeps those repeated questions from each spawning an ``orb list`` process.

TTL: 5 seconds by default

Expiry is lazy: entries are only checked, and evicted, when read. There is
no background thread.

Thread-safety: Not thread-safe. The provider runs one operation at a time
per machine; callers embedding several controllers for the same machine in
separate threads must provide their own locking.

Example:
    >>> cache = StateCache()
    >>> cache.set("vagrant-default-a3b2c1", ControllerState.running())
    >>> cache.get("vagrant-default-a3b2c1")  # Returns the state if not expired
    >>> cache.invalidate("vagrant-default-a3b2c1")  # Remove specific entry
    >>> cache.invalidate_all()  # Clear all entries
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with capture timestamp.

    Attributes:
        value: Cached value
        timestamp: Clock reading when the entry was stored
    """

    value: Any
    timestamp: float

    def is_expired(self, now: float, ttl: float) -> bool:
        """Check if entry is strictly older than ttl."""
        return now - self.timestamp > ttl


class StateCache:
    """TTL cache for machine state lookups."""

    DEFAULT_TTL = 5  # seconds

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        """Initialize state cache.

        Args:
            ttl: Time-to-live in seconds (default: 5)
            clock: Monotonic time source, injectable for tests

        Example:
            >>> cache = StateCache()  # Use defaults
            >>> cache = StateCache(ttl=10)  # 10 second TTL
        """
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        """Get a cached value.

        Args:
            key: Cache key (machine name)

        Returns:
            Cached value if present and not expired, None otherwise.
            Expired entries are removed as a side effect.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss: '{key}'")
            return None

        now = self._clock()
        if entry.is_expired(now, self.ttl):
            logger.debug(f"Cache expired: '{key}' (age: {now - entry.timestamp:.1f}s)")
            del self._entries[key]
            return None

        logger.debug(f"Cache hit: '{key}'")
        return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store a value, overwriting any existing entry and its timestamp."""
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())
        logger.debug(f"Cache set: '{key}' (TTL: {self.ttl}s)")

    def invalidate(self, key: str) -> None:
        """Remove a single entry. No-op if the key is absent."""
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Cache invalidated: '{key}'")

    def invalidate_all(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        logger.debug("Cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


__all__ = ["CacheEntry", "StateCache"]
