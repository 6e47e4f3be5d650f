"""
Memory Cache Module

This module provides the in-memory pieces of the cache:

- ``MemoryStorageBackend``: a volatile ``StorageBackend`` (tests, ephemeral
  sessions, or when no persistent store is configured)
- ``MemoryCacheTier``: the L1 tier placed in front of a persistent store by
  ``CacheManager``, holding encoded payloads with a short TTL and a byte budget
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from reader_cache.cache.base import StorageBackend
from reader_cache.cache.eviction import EvictionCandidate, select_victims
from reader_cache.cache.metadata import CacheMetadata
from reader_cache.common import constants
from reader_cache.common.utils import now_millis

logger = logging.getLogger(__name__)


class MemoryStorageBackend(StorageBackend):
    """
    Volatile storage backend keeping one dict per namespace.

    All operations complete without suspending, so concurrent tasks on the
    event loop always observe a consistent state.
    """

    def __init__(self, name: str = "memory"):
        self._name = name
        self._namespaces: Dict[str, Dict[str, str]] = {}
        self._reads = 0
        self._writes = 0
        self._deletes = 0

    @property
    def name(self) -> str:
        return self._name

    def _box(self, namespace: str) -> Dict[str, str]:
        return self._namespaces.setdefault(namespace, {})

    async def open(self, namespace: str) -> None:
        self._box(namespace)

    async def get(self, namespace: str, key: str) -> Optional[str]:
        self._reads += 1
        return self._namespaces.get(namespace, {}).get(key)

    async def put(self, namespace: str, key: str, value: str) -> None:
        self._writes += 1
        self._box(namespace)[key] = value

    async def delete(self, namespace: str, key: str) -> bool:
        box = self._namespaces.get(namespace)
        if box is None or key not in box:
            return False
        del box[key]
        self._deletes += 1
        return True

    async def clear(self, namespace: str) -> None:
        self._box(namespace).clear()

    async def keys(self, namespace: str) -> List[str]:
        return list(self._namespaces.get(namespace, {}).keys())

    async def contains(self, namespace: str, key: str) -> bool:
        return key in self._namespaces.get(namespace, {})

    async def namespaces(self) -> List[str]:
        return [ns for ns, box in self._namespaces.items() if box]

    async def close(self) -> None:
        self._namespaces.clear()

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "namespaces": {ns: len(box) for ns, box in self._namespaces.items()},
            "reads": self._reads,
            "writes": self._writes,
            "deletes": self._deletes,
        }


@dataclass
class _TierEntry:
    payload: str
    metadata: Optional[CacheMetadata]
    size_bytes: int
    stored_at: int
    last_access: int


class MemoryCacheTier:
    """
    L1 memory tier holding encoded payloads keyed by (namespace, key).

    Callers decode a fresh value from the payload on every hit.

    Entries expire after ``ttl`` regardless of their persistent TTL, and
    when the byte budget is exceeded the tier is trimmed to ``trim_ratio``
    of it with the shared eviction routine. Pinned entries are kept.
    """

    def __init__(
        self,
        max_size_bytes: int = constants.MEMORY_TIER_MAX_SIZE,
        ttl: timedelta = constants.MEMORY_TIER_TTL,
        trim_ratio: float = constants.MEMORY_TIER_TRIM_RATIO,
        clock: Callable[[], int] = now_millis,
    ):
        self._entries: "OrderedDict[Tuple[str, str], _TierEntry]" = OrderedDict()
        self._max_size = max_size_bytes
        self._ttl_millis = int(ttl.total_seconds() * 1000)
        self._trim_ratio = trim_ratio
        self._clock = clock
        self._size = 0

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, namespace: str, key: str) -> Optional[Tuple[str, Optional[CacheMetadata]]]:
        """
        Look up an encoded payload.

        Returns:
            (payload, metadata) on a hit, None on a miss or tier expiry
        """
        entry = self._entries.get((namespace, key))
        if entry is None:
            self._misses += 1
            return None

        now = self._clock()
        if now - entry.stored_at > self._ttl_millis:
            self._drop((namespace, key))
            self._expirations += 1
            self._misses += 1
            return None

        entry.last_access = now
        self._entries.move_to_end((namespace, key))
        self._hits += 1
        return entry.payload, entry.metadata

    def put(self, namespace: str, key: str, payload: str,
            metadata: Optional[CacheMetadata], size_bytes: int) -> None:
        if size_bytes > self._max_size:
            # Would evict everything else
            self.invalidate(namespace, key)
            return
        self._drop((namespace, key))
        now = self._clock()
        self._entries[(namespace, key)] = _TierEntry(payload, metadata, size_bytes, now, now)
        self._size += size_bytes
        if self._size > self._max_size:
            self._trim()

    def update_metadata(self, namespace: str, key: str, metadata: CacheMetadata) -> None:
        entry = self._entries.get((namespace, key))
        if entry is not None:
            entry.metadata = metadata

    def invalidate(self, namespace: str, key: str) -> None:
        self._drop((namespace, key))

    def invalidate_namespace(self, namespace: str) -> int:
        doomed = [k for k in self._entries if k[0] == namespace]
        for k in doomed:
            self._drop(k)
        return len(doomed)

    def prune_expired(self) -> int:
        """Drop entries past the tier TTL or their own metadata TTL."""
        now = self._clock()
        doomed = [
            k for k, entry in self._entries.items()
            if now - entry.stored_at > self._ttl_millis
            or (entry.metadata is not None and entry.metadata.is_expired(now))
        ]
        for k in doomed:
            self._drop(k)
        self._expirations += len(doomed)
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0

    def _drop(self, tier_key: Tuple[str, str]) -> None:
        entry = self._entries.pop(tier_key, None)
        if entry is not None:
            self._size -= entry.size_bytes

    def _trim(self) -> None:
        target = int(self._max_size * self._trim_ratio)
        candidates = [
            EvictionCandidate(
                key=f"{ns}:{key}",
                size_bytes=entry.size_bytes,
                last_access=entry.last_access,
                protected=bool(entry.metadata and entry.metadata.is_pinned),
                ref=(ns, key),
            )
            for (ns, key), entry in self._entries.items()
        ]
        victims = select_victims(candidates, self._size, target)
        for victim in victims:
            self._drop(victim.ref)
        self._evictions += len(victims)
        logger.debug(f"Memory tier trimmed {len(victims)} entries, now {self._size} bytes")

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "size_bytes": self._size,
            "max_size_bytes": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_ratio": self._hits / total if total else 0,
            "evictions": self._evictions,
            "expirations": self._expirations,
        }
