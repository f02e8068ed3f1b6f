"""In-memory TTL cache for upstream reads, partitioned by session scope.

Every key starts with the requesting snapshot's ``scope_key`` (role,
vertical, date range), so data fetched for one scope can never be served to
another.  When a session's scope changes its old partition is dropped and the
next read goes back to the domain API.
"""
from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

ScopeKey = tuple[str, ...]


class CacheEntry:
    """A cached value with its expiry time."""

    def __init__(self, value: Any, expires_at: float):
        self.value = value
        self.expires_at = expires_at


class ScopedCache:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._partitions: dict[ScopeKey, dict[Hashable, CacheEntry]] = {}
        # Bumped whenever a whole scope is dropped.
        self._generations: dict[ScopeKey, int] = {}
        self._lock = Lock()

    def get(self, scope: ScopeKey, key: Hashable) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        with self._lock:
            partition = self._partitions.get(scope)
            if not partition:
                return None
            entry = partition.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del partition[key]
                return None
            return entry.value

    def generation(self, scope: ScopeKey) -> int:
        with self._lock:
            return self._generations.get(scope, 0)

    def set(
        self,
        scope: ScopeKey,
        key: Hashable,
        value: Any,
        ttl_seconds: int | None = None,
        generation: int | None = None,
    ) -> None:
        """Store *value*.  With *generation*, skip the write if *scope* was
        dropped since that generation was read."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        with self._lock:
            if generation is not None and generation != self._generations.get(scope, 0):
                return
            self._partitions.setdefault(scope, {})[key] = CacheEntry(value, self._clock() + ttl)

    def invalidate(self, scope: ScopeKey, prefix: str | None = None) -> int:
        """Drop entries of *scope*; with *prefix*, only keys whose path starts with it."""
        with self._lock:
            if prefix is None:
                self._generations[scope] = self._generations.get(scope, 0) + 1
            partition = self._partitions.get(scope)
            if not partition:
                return 0
            if prefix is None:
                removed = len(partition)
                del self._partitions[scope]
                return removed
            doomed = [k for k in partition if isinstance(k, tuple) and str(k[0]).startswith(prefix)]
            for k in doomed:
                del partition[k]
            return len(doomed)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop entries under *prefix* in every scope (after a write upstream)."""
        with self._lock:
            scopes = list(self._partitions)
        return sum(self.invalidate(scope, prefix) for scope in scopes)

    def drop_scope(self, scope: ScopeKey) -> int:
        removed = self.invalidate(scope)
        if removed:
            logger.debug("Dropped %d cached entries for scope %s", removed, scope)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(p) for p in self._partitions.values())
