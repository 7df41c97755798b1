"""
Partition-scoped client registry.

Caches one provider client per (partition id, resource kind) with a fixed
time-to-live and a maximum entry count, so that partition directory lookups
and client construction happen once per partition per TTL window.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

SYSTEM_RESOURCE_KIND = "system"

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class ClientCacheEntry:
    """A cached client and its validity window."""

    cache_key: str
    client: Any
    inserted_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class PartitionClientRegistry:
    """
    TTL- and capacity-bounded cache of partition clients.

    Features:
    - Hits return the cached client with no side effects
    - Misses and expired entries call ``construct_fn`` and replace the entry
    - Capacity eviction drops expired entries first, then the oldest inserted
    - The ``system`` resource kind maps to one process-wide client

    Thread safety: lookups of live entries take no cache lock, only the short
    statistics lock. Misses serialize on a per-key lock so concurrent misses
    for the same key construct once; misses for different keys proceed in
    parallel.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        system_factory: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the registry.

        Args:
            ttl_seconds: Lifetime of a cached client
            max_entries: Maximum number of cached clients
            system_factory: Builds the process-wide system client on first use
            clock: Monotonic time source, injectable for tests
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._system_factory = system_factory
        self._clock = clock

        self._entries: OrderedDict[str, ClientCacheEntry] = OrderedDict()
        self._entries_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._system_client: Any | None = None
        self._system_lock = threading.Lock()

        self._counters = {"hits": 0, "misses": 0, "evictions": 0}
        self._counters_lock = threading.Lock()

    @staticmethod
    def make_key(partition_id: str, resource_kind: str) -> str:
        return f"{partition_id}-{resource_kind}"

    def resolve(
        self,
        partition_id: str,
        resource_kind: str,
        construct_fn: Callable[[str], Any],
    ) -> Any:
        """
        Return the client for a partition, constructing it on a miss.

        Args:
            partition_id: Tenant partition identifier
            resource_kind: Kind of client (e.g. ``cosmos_client``)
            construct_fn: Builds a client from the partition id

        Returns:
            Cached or newly constructed client

        Raises:
            ValidationError: If partition_id or resource_kind is empty
            Exception: Whatever ``construct_fn`` raises; nothing is cached then
        """
        if resource_kind == SYSTEM_RESOURCE_KIND:
            return self.system_client()
        if not partition_id:
            raise ValidationError("partition_id", "must not be empty")
        if not resource_kind:
            raise ValidationError("resource_kind", "must not be empty")

        key = self.make_key(partition_id, resource_kind)
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self._count("hits")
            return entry.client

        with self._lock_for(key):
            # Another thread may have constructed it while we waited
            entry = self._entries.get(key)
            now = self._clock()
            if entry is not None and not entry.is_expired(now):
                self._count("hits")
                return entry.client

            self._count("misses")
            if entry is not None:
                logger.debug("Client cache entry expired", extra={"cache_key": key})

            client = construct_fn(partition_id)
            now = self._clock()
            self._store(
                ClientCacheEntry(
                    cache_key=key,
                    client=client,
                    inserted_at=now,
                    expires_at=now + self.ttl_seconds,
                )
            )
            logger.debug("Constructed partition client", extra={"cache_key": key})
            return client

    def system_client(self) -> Any:
        """Return the process-wide system client, building it once."""
        if self._system_client is not None:
            return self._system_client
        with self._system_lock:
            if self._system_client is None:
                if self._system_factory is None:
                    raise ValidationError(
                        "resource_kind", "no system client is configured", SYSTEM_RESOURCE_KIND
                    )
                self._system_client = self._system_factory()
        return self._system_client

    def get_entry(self, partition_id: str, resource_kind: str) -> ClientCacheEntry | None:
        """Return the raw cache entry (expired or not) for inspection."""
        return self._entries.get(self.make_key(partition_id, resource_kind))

    def evict(self, partition_id: str, resource_kind: str) -> bool:
        """Remove a cached client. Returns True if an entry was removed."""
        key = self.make_key(partition_id, resource_kind)
        with self._entries_lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            self._count("evictions")
        return removed

    def clear(self) -> None:
        """Remove all cached partition clients (the system client is kept)."""
        with self._entries_lock:
            self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with cache metrics
        """
        with self._counters_lock:
            counters = dict(self._counters)
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            **counters,
        }

    def _count(self, counter: str) -> None:
        with self._counters_lock:
            self._counters[counter] += 1

    def _lock_for(self, key: str) -> threading.Lock:
        with self._entries_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _store(self, entry: ClientCacheEntry) -> None:
        with self._entries_lock:
            # Re-insert at the end so insertion order stays oldest-first
            self._entries.pop(entry.cache_key, None)
            self._entries[entry.cache_key] = entry
            if len(self._entries) > self.max_entries:
                self._evict_for_capacity(entry.inserted_at)

    def _evict_for_capacity(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
            self._key_locks.pop(key, None)
            self._count("evictions")

        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            self._key_locks.pop(key, None)
            self._count("evictions")
            logger.info("Evicted partition client for capacity", extra={"cache_key": key})
