"""TTL memoization for expensive, time-sensitive probe results."""

import json
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple, TypeVar

from cachetools import TLRUCache

from hostmon.config import HostmonConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """
    Derive a deterministic cache key from an operation name and its parameters.

    Parameter names are sorted, None-valued parameters are dropped and each
    remaining pair is rendered as ``name:<json value>``. Two mappings with the
    same items therefore give the same key whatever order they were built in.
    """
    parts = [
        f"{name}:{json.dumps(params[name], sort_keys=True, default=str)}"
        for name in sorted(params)
        if params[name] is not None
    ]
    return f"{prefix}:{','.join(parts)}"


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


@dataclass(slots=True, frozen=True)
class CacheStats:
    """Counters for one cache instance."""

    hits: int
    misses: int
    keys: int


class SnapshotCache:
    """
    Key/value memoizer with a per-entry time-to-live.

    An entry is visible only while ``now - inserted_at < ttl``. Failed
    producers are never cached. Concurrent misses on the same key share a
    single producer call.
    """

    def __init__(
        self,
        name: str,
        default_ttl: float,
        max_keys: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            name: Label used in log messages.
            default_ttl: Seconds an entry stays visible unless overridden.
            max_keys: Soft cap on entries; the earliest-expiring go first.
            timer: Monotonic clock in seconds, injectable for tests.
        """
        self.name = name
        self.default_ttl = default_ttl
        self.max_keys = max_keys
        self._entries: TLRUCache = TLRUCache(maxsize=max_keys, ttu=_time_to_use, timer=timer)
        self._lock = threading.Lock()
        self._inflight: dict[str, threading.Lock] = {}
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._hits += 1
        return entry

    def get(self, key: str, producer: Callable[[], T], ttl: float | None = None) -> T:
        """
        Return the live value for ``key``, calling ``producer`` on a miss.

        Exceptions raised by ``producer`` propagate and leave the cache as it was.
        """
        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                return entry.value
            key_lock = self._inflight.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                entry = self._lookup(key)
                if entry is not None:
                    return entry.value
                self._misses += 1

            try:
                value = producer()
                self.set(key, value, ttl)
            finally:
                with self._lock:
                    if self._inflight.get(key) is key_lock:
                        del self._inflight[key]

            logger.debug("cache %s: stored %s", self.name, key)
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (default TTL if omitted)."""
        with self._lock:
            self._entries[key] = _Entry(value, self.default_ttl if ttl is None else ttl)

    def delete(self, key: str) -> int:
        """Remove ``key``; returns the number of entries removed."""
        with self._lock:
            return 1 if self._entries.pop(key, None) is not None else 0

    def flush(self) -> None:
        """Drop every entry and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            self._entries.expire()
            return CacheStats(hits=self._hits, misses=self._misses, keys=len(self._entries))

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


@dataclass(slots=True)
class CacheRegistry:
    """The independently tuned caches used across hostmon."""

    metrics: SnapshotCache
    processes: SnapshotCache
    file_tags: SnapshotCache
    search_index: SnapshotCache

    @classmethod
    def from_config(
        cls,
        config: HostmonConfig,
        timer: Callable[[], float] = time.monotonic,
    ) -> "CacheRegistry":
        return cls(
            metrics=SnapshotCache("metrics", config.metrics_ttl, config.cache_max_keys, timer),
            processes=SnapshotCache("processes", config.process_ttl, config.cache_max_keys, timer),
            file_tags=SnapshotCache("file_tags", config.file_tags_ttl, 2000, timer),
            search_index=SnapshotCache("search_index", config.search_index_ttl, 500, timer),
        )

    def flush_all(self) -> None:
        for cache in (self.metrics, self.processes, self.file_tags, self.search_index):
            cache.flush()
