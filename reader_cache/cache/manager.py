"""
Cache Manager Module

This module provides the generic cache manager: a namespaced key/value cache
with TTL expiry, access statistics and pin-aware LRU eviction on top of a
``StorageBackend``.

Every payload has a metadata twin. The payload lives under ``key`` in its
namespace; the metadata record lives under ``namespace:key`` in the metadata
namespace. An optional ``MemoryCacheTier`` serves decoded values ahead of
the persistent store.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from reader_cache.cache.base import StorageBackend
from reader_cache.cache.eviction import EvictionCandidate, select_victims
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.maintenance import MaintenanceTask
from reader_cache.cache.memory import MemoryCacheTier
from reader_cache.cache.metadata import CacheEntry, CacheMetadata, ttl_to_millis
from reader_cache.cache.metrics import CacheMetrics
from reader_cache.cache.priority import PriorityLevel, PriorityRegistry
from reader_cache.common import constants
from reader_cache.common.exceptions import SerializationError, StorageError
from reader_cache.common.logger import (
    log_cache_eviction, log_cache_expired, log_cache_hit, log_cache_miss, log_cache_write
)
from reader_cache.common.serialization import ValueType, content_hash, decode_value, encode_value
from reader_cache.common.utils import now_millis

# Setup logging
logger = logging.getLogger(__name__)


class CacheManager:
    """
    Generic namespaced cache with metadata tracking.

    Read paths degrade to a miss (``None``, ``0``, ``[]``) on storage
    failures; ``put``, ``remove`` and ``clear_namespace`` raise
    ``StorageError`` so callers can detect failed writes.

    Features:
    - TTL expiry driven by metadata, without eager deletion on read
    - Access count and last access time tracking
    - Size budgets enforced least-recently-accessed first, skipping pinned
      and high priority entries
    - Optional L1 memory tier
    - Optional periodic maintenance task owned by the instance
    """

    def __init__(
        self,
        storage: StorageBackend,
        memory_tier: Optional[MemoryCacheTier] = None,
        priority_registry: Optional[PriorityRegistry] = None,
        metrics: Optional[CacheMetrics] = None,
        clock: Callable[[], int] = now_millis,
        metadata_namespace: str = constants.METADATA_NAMESPACE,
        maintenance_interval: Optional[timedelta] = None,
        size_limits: Optional[Dict[str, int]] = None,
        name: str = "cache_manager",
    ):
        """
        Initialize the cache manager.

        Args:
            storage: Persistent store for payloads and metadata
            memory_tier: Optional L1 tier for decoded values
            priority_registry: Optional priority records consulted by eviction
            metrics: Metrics collector (a private one is created if omitted)
            clock: Returns the current time in epoch milliseconds
            metadata_namespace: Namespace holding metadata records
            maintenance_interval: Run ``run_maintenance`` on this interval
                after ``initialize()``; None disables the task
            size_limits: Byte budgets per namespace applied by maintenance
            name: Name of this manager, used in logs
        """
        self.storage = storage
        self.memory_tier = memory_tier
        self.priority_registry = priority_registry
        self.metrics = metrics or CacheMetrics()
        self.metadata_namespace = metadata_namespace
        self.size_limits = dict(size_limits or {})
        self.name = name
        self._clock = clock
        self._maintenance = (
            MaintenanceTask(name, maintenance_interval, self.run_maintenance)
            if maintenance_interval else None
        )
        self._initialized = False
        self.last_sweep_failures = 0

    def now(self) -> int:
        return self._clock()

    async def initialize(self) -> None:
        """Open the metadata namespace and start the maintenance task."""
        if self._initialized:
            return
        await self.storage.open(self.metadata_namespace)
        if self._maintenance is not None:
            self._maintenance.start()
        self._initialized = True
        logger.info(f"{self.name} initialized on {self.storage.name} storage")

    async def dispose(self) -> None:
        """Stop the maintenance task and drop the memory tier."""
        if self._maintenance is not None:
            await self._maintenance.stop()
        if self.memory_tier is not None:
            self.memory_tier.clear()
        self._initialized = False
        logger.info(f"{self.name} disposed")

    @property
    def maintenance_running(self) -> bool:
        return self._maintenance is not None and self._maintenance.running

    # Metadata records

    async def _read_metadata(self, key: str, namespace: str) -> Optional[CacheMetadata]:
        """Load metadata; malformed records are logged and treated as absent."""
        raw = await self.storage.get(self.metadata_namespace, KeyBuilder.metadata_key(namespace, key))
        if raw is None:
            return None
        try:
            return CacheMetadata.from_json(raw)
        except SerializationError as e:
            logger.warning(f"Ignoring malformed metadata for {namespace}/{key}: {e}")
            return None

    async def _write_metadata(self, metadata: CacheMetadata) -> None:
        await self.storage.put(self.metadata_namespace, metadata.storage_key, metadata.to_json())

    async def _namespace_metadata_keys(self, namespace: str) -> List[str]:
        prefix = KeyBuilder.metadata_prefix(namespace)
        keys = await self.storage.keys(self.metadata_namespace)
        return [k for k in keys if k.startswith(prefix)]

    async def _namespace_metadata(self, namespace: str) -> Tuple[List[CacheMetadata], int]:
        """All parseable metadata of a namespace, plus the count of bad records."""
        metadata_keys = await self._namespace_metadata_keys(namespace)
        raw_records = await self.storage.get_many(self.metadata_namespace, metadata_keys)
        records, failures = [], 0
        for metadata_key, raw in raw_records.items():
            if raw is None:
                continue
            try:
                records.append(CacheMetadata.from_json(raw))
            except SerializationError as e:
                failures += 1
                logger.warning(f"Skipping malformed metadata {metadata_key}: {e}")
        return records, failures

    async def _touch(self, metadata: CacheMetadata) -> CacheMetadata:
        updated = metadata.record_access(self.now())
        try:
            await self._write_metadata(updated)
        except StorageError as e:
            logger.warning(f"Failed to update access stats for {metadata.storage_key}: {e}")
        if self.memory_tier is not None:
            self.memory_tier.update_metadata(metadata.namespace, metadata.original_key, updated)
        return updated

    # Core operations

    async def put(
        self,
        key: str,
        data: Any,
        namespace: str,
        ttl: Optional[timedelta] = constants.DEFAULT_TTL,
        language: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        source: str = "network",
        value_type: Optional[ValueType] = None,
    ) -> CacheMetadata:
        """
        Store a value and its metadata.

        Args:
            key: Key inside the namespace
            data: Value to store
            namespace: Namespace to store into
            ttl: Lifetime of the entry; None means it never expires
            language: Content language code
            properties: Extra values kept on the metadata record
            source: Provenance tag
            value_type: Codec to use; inferred from ``data`` when omitted

        Returns:
            The metadata record written

        Raises:
            StorageError: If the payload could not be written
        """
        payload, used_type = encode_value(data, value_type)
        now = self.now()

        try:
            previous = await self._read_metadata(key, namespace)
        except StorageError:
            previous = None

        metadata = CacheMetadata(
            original_key=key,
            namespace=namespace,
            created_at_millis=now,
            ttl_millis=ttl_to_millis(ttl),
            size_bytes=len(payload.encode("utf-8")),
            language=language,
            source=source,
            content_hash=content_hash(data),
            access_count=0,
            last_access_millis=now,
            properties=properties,
            value_type=used_type.value,
            is_pinned=previous.is_pinned if previous else False,
        )

        await self.storage.put(namespace, key, payload)

        try:
            await self._write_metadata(metadata)
        except StorageError as e:
            # Payload is readable through the no-metadata path
            logger.error(f"Metadata write failed for {namespace}/{key}: {e}")

        if self.memory_tier is not None:
            self.memory_tier.put(namespace, key, payload, metadata, metadata.size_bytes)

        self.metrics.record_write()
        log_cache_write(key, namespace, metadata.size_bytes)
        return metadata

    async def get(
        self,
        key: str,
        namespace: str,
        update_access_stats: bool = True,
        value_type: Optional[ValueType] = None,
        allow_expired: bool = False,
    ) -> Any:
        """
        Read a value.

        Args:
            key: Key inside the namespace
            namespace: Namespace to read from
            update_access_stats: Bump access count and last access time on a hit
            value_type: Codec to decode with; defaults to the recorded one
            allow_expired: Return expired entries instead of treating them as misses

        Returns:
            The value, or None on a miss or an expired entry
        """
        entry = await self.get_with_metadata(
            key, namespace, update_access_stats, value_type, allow_expired
        )
        return entry.data if entry is not None else None

    async def get_with_metadata(
        self,
        key: str,
        namespace: str,
        update_access_stats: bool = True,
        value_type: Optional[ValueType] = None,
        allow_expired: bool = False,
    ) -> Optional[CacheEntry]:
        """
        Read a value together with its metadata.

        Same miss and expiry semantics as ``get``. Entries stored without a
        metadata record are returned with ``metadata=None``.
        """
        try:
            tier_entry = self._get_from_memory_tier(key, namespace, value_type)
            if tier_entry is not None:
                value, metadata = tier_entry
                if update_access_stats and metadata is not None:
                    metadata = await self._touch(metadata)
                self.metrics.record_hit()
                log_cache_hit(key, namespace, "memory")
                return CacheEntry(value, metadata)

            metadata = await self._read_metadata(key, namespace)
            payload = await self.storage.get(namespace, key)

            if payload is None:
                if metadata is not None:
                    logger.warning(f"Metadata without payload for {namespace}/{key}, removing it")
                    await self._delete_metadata_quietly(key, namespace)
                self.metrics.record_miss()
                log_cache_miss(key, namespace, "absent")
                return None

            if metadata is None:
                logger.warning(f"Payload without metadata for {namespace}/{key}, serving it without TTL")
                self.metrics.record_hit()
                return CacheEntry(decode_value(payload, value_type or ValueType.ANY), None)

            now = self.now()
            if metadata.is_expired(now) and not allow_expired:
                self.metrics.record_miss()
                log_cache_expired(key, namespace, metadata.age_millis(now))
                return None

            decode_type = value_type or ValueType.parse(metadata.value_type) or ValueType.ANY
            value = decode_value(payload, decode_type)

            if update_access_stats:
                metadata = await self._touch(metadata)

            if self.memory_tier is not None and not metadata.is_expired(now):
                if value_type is None or value_type.value == metadata.value_type:
                    self.memory_tier.put(namespace, key, payload, metadata, metadata.size_bytes)

            self.metrics.record_hit()
            log_cache_hit(key, namespace, self.storage.name)
            return CacheEntry(value, metadata)
        except StorageError as e:
            logger.error(f"Read of {namespace}/{key} failed, treating as miss: {e}")
            self.metrics.record_error()
            return None

    def _get_from_memory_tier(
        self,
        key: str,
        namespace: str,
        value_type: Optional[ValueType],
    ) -> Optional[Tuple[Any, Optional[CacheMetadata]]]:
        if self.memory_tier is None:
            return None
        hit = self.memory_tier.get(namespace, key)
        if hit is None:
            return None
        payload, metadata = hit
        if metadata is None:
            return None
        if value_type is not None and value_type.value != metadata.value_type:
            return None
        if metadata.is_expired(self.now()):
            # Persistent read decides between expired and allowed-expired
            self.memory_tier.invalidate(namespace, key)
            return None
        return decode_value(payload, ValueType.parse(metadata.value_type) or ValueType.ANY), metadata

    async def _delete_metadata_quietly(self, key: str, namespace: str) -> None:
        try:
            await self.storage.delete(self.metadata_namespace, KeyBuilder.metadata_key(namespace, key))
        except StorageError as e:
            logger.warning(f"Could not delete stale metadata for {namespace}/{key}: {e}")

    async def get_metadata(self, key: str, namespace: str) -> Optional[CacheMetadata]:
        """Metadata of an entry without touching access statistics."""
        try:
            return await self._read_metadata(key, namespace)
        except StorageError as e:
            logger.error(f"Metadata read for {namespace}/{key} failed: {e}")
            return None

    async def remove(self, key: str, namespace: str) -> None:
        """
        Delete a payload and its metadata. Absent entries are not an error.

        Raises:
            StorageError: If the backend fails
        """
        if self.memory_tier is not None:
            self.memory_tier.invalidate(namespace, key)
        await self.storage.delete(namespace, key)
        await self.storage.delete(self.metadata_namespace, KeyBuilder.metadata_key(namespace, key))

    async def clear_namespace(self, namespace: str) -> None:
        """
        Delete all payloads of a namespace and their metadata.

        Raises:
            StorageError: If the backend fails
        """
        if self.memory_tier is not None:
            self.memory_tier.invalidate_namespace(namespace)
        await self.storage.clear(namespace)
        metadata_keys = await self._namespace_metadata_keys(namespace)
        await self.storage.delete_many(self.metadata_namespace, metadata_keys)
        logger.info(f"Cleared namespace {namespace} ({len(metadata_keys)} metadata records)")

    async def clear_expired_entries(self, namespace: str) -> int:
        """
        Delete every expired entry of a namespace.

        Per-entry failures are logged and skipped; their count is kept in
        ``last_sweep_failures``.

        Returns:
            Number of entries removed
        """
        removed, failed = 0, 0
        try:
            metadata_keys = await self._namespace_metadata_keys(namespace)
        except StorageError as e:
            logger.error(f"Expiry sweep of {namespace} could not list metadata: {e}")
            self.last_sweep_failures = 1
            return 0

        now = self.now()
        for metadata_key in metadata_keys:
            try:
                raw = await self.storage.get(self.metadata_namespace, metadata_key)
                if raw is None:
                    continue
                metadata = CacheMetadata.from_json(raw)
                if not metadata.is_expired(now):
                    continue
                await self.storage.delete(namespace, metadata.original_key)
                await self.storage.delete(self.metadata_namespace, metadata_key)
                if self.memory_tier is not None:
                    self.memory_tier.invalidate(namespace, metadata.original_key)
                removed += 1
                log_cache_expired(metadata.original_key, namespace, metadata.age_millis(now))
            except (StorageError, SerializationError) as e:
                failed += 1
                logger.warning(f"Expiry sweep skipped {metadata_key}: {e}")

        self.last_sweep_failures = failed
        self.metrics.record_expiration(removed)
        if removed or failed:
            logger.info(f"Expiry sweep of {namespace}: removed={removed} failed={failed}")
        return removed

    def _eviction_rank(self, metadata: CacheMetadata) -> int:
        level = None
        if self.priority_registry is not None:
            level = self.priority_registry.level_for_key(metadata.original_key)
        return (level or PriorityLevel.MEDIUM).eviction_rank

    def is_protected(self, metadata: CacheMetadata) -> bool:
        """Pinned and high priority entries are never evicted for size."""
        if metadata.is_pinned:
            return True
        return self.priority_registry is not None and \
            self.priority_registry.is_protected(metadata.original_key)

    async def enforce_size_limit(self, namespace: str, max_size_bytes: int) -> int:
        """
        Evict entries until the namespace fits within ``max_size_bytes``.

        Entries are evicted least recently accessed first, lower priorities
        before higher ones; pinned entries are skipped. Nothing happens when
        the namespace is already within budget.

        Returns:
            Number of entries evicted
        """
        try:
            records, failed = await self._namespace_metadata(namespace)
        except StorageError as e:
            logger.error(f"Size sweep of {namespace} could not read metadata: {e}")
            self.last_sweep_failures = 1
            return 0

        current_size = sum(m.size_bytes for m in records)
        candidates = [
            EvictionCandidate(
                key=m.original_key,
                size_bytes=m.size_bytes,
                last_access=m.last_access_millis or m.created_at_millis,
                rank=self._eviction_rank(m),
                protected=self.is_protected(m),
                ref=m,
            )
            for m in records
        ]
        victims = select_victims(candidates, current_size, max_size_bytes)

        removed = 0
        for victim in victims:
            try:
                await self.remove(victim.key, namespace)
                removed += 1
                current_size -= victim.size_bytes
                log_cache_eviction(victim.key, namespace, "size limit")
            except StorageError as e:
                failed += 1
                logger.warning(f"Size sweep could not evict {namespace}/{victim.key}: {e}")

        self.last_sweep_failures = failed
        self.metrics.record_eviction(removed)
        if removed:
            logger.info(
                f"Evicted {removed} entries from {namespace}, "
                f"now {current_size} of {max_size_bytes} bytes"
            )
        if current_size > max_size_bytes:
            logger.warning(
                f"{namespace} still over budget ({current_size} > {max_size_bytes}); "
                f"remaining entries are pinned"
            )
        return removed

    async def exists(self, key: str, namespace: str) -> bool:
        """True if the payload is stored and not expired."""
        try:
            if not await self.storage.contains(namespace, key):
                return False
            metadata = await self._read_metadata(key, namespace)
        except StorageError as e:
            logger.error(f"Existence check for {namespace}/{key} failed: {e}")
            return False
        return metadata is None or not metadata.is_expired(self.now())

    async def get_all_keys(self, namespace: str) -> List[str]:
        try:
            return await self.storage.keys(namespace)
        except StorageError as e:
            logger.error(f"Listing keys of {namespace} failed: {e}")
            return []

    async def get_namespace_size(self, namespace: str) -> int:
        """Total payload bytes of a namespace, summed from metadata."""
        try:
            records, _ = await self._namespace_metadata(namespace)
        except StorageError as e:
            logger.error(f"Size of {namespace} unavailable: {e}")
            return 0
        return sum(m.size_bytes for m in records)

    async def get_namespaces(self) -> List[str]:
        """Namespaces that have at least one metadata record."""
        try:
            keys = await self.storage.keys(self.metadata_namespace)
        except StorageError as e:
            logger.error(f"Listing namespaces failed: {e}")
            return []
        return sorted({KeyBuilder.split_metadata_key(k)[0] for k in keys})

    async def set_pinned(self, key: str, namespace: str, pinned: bool) -> bool:
        """
        Mark an entry as pinned or unpinned.

        Returns:
            False if the entry has no metadata record
        """
        metadata = await self._read_metadata(key, namespace)
        if metadata is None:
            return False
        updated = metadata.copy_with(is_pinned=pinned)
        await self._write_metadata(updated)
        if self.memory_tier is not None:
            self.memory_tier.update_metadata(namespace, key, updated)
        return True

    async def run_maintenance(self) -> Dict[str, Any]:
        """
        One maintenance pass: prune the memory tier, sweep expired entries
        in every namespace, then apply configured size budgets.
        """
        summary: Dict[str, Any] = {"expired": {}, "evicted": {}}
        if self.memory_tier is not None:
            summary["memory_pruned"] = self.memory_tier.prune_expired()
        for namespace in await self.get_namespaces():
            summary["expired"][namespace] = await self.clear_expired_entries(namespace)
        for namespace, limit in self.size_limits.items():
            summary["evicted"][namespace] = await self.enforce_size_limit(namespace, limit)
        logger.debug(f"{self.name} maintenance: {summary}")
        return summary

    async def get_stats(self) -> Dict[str, Any]:
        stats = {
            "name": self.name,
            "metrics": self.metrics.to_dict(),
            "storage": await self.storage.get_stats(),
        }
        if self.memory_tier is not None:
            stats["memory_tier"] = self.memory_tier.get_stats()
        return stats
