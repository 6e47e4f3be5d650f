"""
Cache priorities.

A priority record governs retention during size-based eviction, separately
from TTL expiry. HIGH entries (downloaded content) are never evicted by a size
sweep; among the rest, LOW entries go before MEDIUM ones.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from reader_cache.cache.base import StorageBackend
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.common.constants import PRIORITY_NAMESPACE
from reader_cache.common.utils import now_millis

logger = logging.getLogger(__name__)


class PriorityLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def eviction_rank(self) -> int:
        """Lower ranks are evicted first."""
        return {PriorityLevel.LOW: 0, PriorityLevel.MEDIUM: 1, PriorityLevel.HIGH: 2}[self]


@dataclass
class CachePriority:
    level: PriorityLevel = PriorityLevel.MEDIUM
    last_access_millis: int = 0
    access_count: int = 0

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "lastAccessMillis": self.last_access_millis,
            "accessCount": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachePriority":
        return cls(
            level=PriorityLevel(data.get("level", PriorityLevel.MEDIUM.value)),
            last_access_millis=int(data.get("lastAccessMillis", 0)),
            access_count=int(data.get("accessCount", 0)),
        )


class PriorityRegistry:
    """
    Per-item priority records, persisted in their own namespace.

    Records are keyed by item id (e.g. a book id). Cache keys such as
    ``book_<id>`` resolve to the record of ``<id>``.
    """

    def __init__(self, storage: StorageBackend, namespace: str = PRIORITY_NAMESPACE, clock=now_millis):
        self.storage = storage
        self.namespace = namespace
        self._clock = clock
        self._priorities: Dict[str, CachePriority] = {}
        self._loaded = False

    async def load(self) -> None:
        """Load persisted records; malformed records are skipped."""
        await self.storage.open(self.namespace)
        self._priorities.clear()
        for item_id in await self.storage.keys(self.namespace):
            raw = await self.storage.get(self.namespace, item_id)
            if raw is None:
                continue
            try:
                self._priorities[item_id] = CachePriority.from_dict(json.loads(raw))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed priority record {item_id}: {e}")
        self._loaded = True
        logger.debug(f"Loaded {len(self._priorities)} priority records")

    async def update(self, item_id: str, level: PriorityLevel) -> CachePriority:
        """Create or replace the priority of an item."""
        previous = self._priorities.get(item_id)
        priority = CachePriority(
            level=level,
            last_access_millis=self._clock(),
            access_count=previous.access_count if previous else 0,
        )
        await self.storage.put(self.namespace, item_id, json.dumps(priority.to_dict()))
        self._priorities[item_id] = priority
        return priority

    async def remove(self, item_id: str) -> None:
        self._priorities.pop(item_id, None)
        await self.storage.delete(self.namespace, item_id)

    async def clear(self) -> None:
        self._priorities.clear()
        await self.storage.clear(self.namespace)

    async def touch(self, item_id: str) -> None:
        """Record an access against an existing priority record."""
        priority = self._priorities.get(item_id)
        if priority is None:
            return
        priority.access_count += 1
        priority.last_access_millis = self._clock()
        await self.storage.put(self.namespace, item_id, json.dumps(priority.to_dict()))

    def get(self, item_id: str) -> Optional[CachePriority]:
        return self._priorities.get(item_id)

    def level_for_key(self, key: str) -> Optional[PriorityLevel]:
        """Resolve the priority governing a cache key."""
        priority = self._priorities.get(key)
        if priority is None:
            priority = self._priorities.get(KeyBuilder.extract_id(key))
        return priority.level if priority else None

    def is_protected(self, key: str) -> bool:
        return self.level_for_key(key) == PriorityLevel.HIGH

    def items(self) -> Dict[str, CachePriority]:
        return dict(self._priorities)
