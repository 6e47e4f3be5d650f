"""
Tests for the generic cache manager: round trips, metadata-driven expiry,
access statistics and pin-aware size eviction.
"""

from datetime import timedelta

import pytest

from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.memory import MemoryCacheTier, MemoryStorageBackend
from reader_cache.cache.priority import PriorityLevel
from reader_cache.common import constants
from reader_cache.common.exceptions import StorageError
from reader_cache.common.serialization import ValueType
from reader_cache.tests.conftest import HOUR_MILLIS

NS = constants.BOOKS_NAMESPACE


class FailingReadStorage(MemoryStorageBackend):
    async def get(self, namespace, key):
        raise StorageError("disk unavailable", namespace)


class FailingWriteStorage(MemoryStorageBackend):
    async def put(self, namespace, key, value):
        raise StorageError("disk full", namespace)


class TestRoundTrip:
    """put followed by get returns an equal value"""

    @pytest.mark.asyncio
    async def test_dict_round_trip(self, manager):
        book = {"id": "42", "title": "Tafheem", "chapters": [1, 2, 3]}
        await manager.put("book_42", book, NS)

        assert await manager.get("book_42", NS) == book

    @pytest.mark.asyncio
    async def test_primitive_round_trips(self, manager):
        await manager.put("count", 7, NS)
        await manager.put("ratio", 0.25, NS)
        await manager.put("flag", False, NS)
        await manager.put("title", "Khilafat", NS)

        assert await manager.get("count", NS) == 7
        assert await manager.get("ratio", NS) == 0.25
        assert await manager.get("flag", NS) is False
        assert await manager.get("title", NS) == "Khilafat"

    @pytest.mark.asyncio
    async def test_metadata_is_written_under_namespaced_key(self, manager, storage):
        metadata = await manager.put("book_1", {"a": 1}, NS, language="ur")

        raw = await storage.get(constants.METADATA_NAMESPACE, KeyBuilder.metadata_key(NS, "book_1"))
        assert raw is not None
        assert metadata.direction == "rtl"
        assert metadata.value_type == ValueType.JSON.value
        assert metadata.content_hash is not None
        assert metadata.size_bytes == len('{"a": 1}')

    @pytest.mark.asyncio
    async def test_requested_value_type_overrides_recorded_one(self, manager):
        await manager.put("setting", "true", NS)

        assert await manager.get("setting", NS) == "true"
        assert await manager.get("setting", NS, value_type=ValueType.BOOL) is True

    @pytest.mark.asyncio
    async def test_payload_without_metadata_is_served(self, manager, storage):
        await storage.put(NS, "legacy", '{"x": 1}')

        entry = await manager.get_with_metadata("legacy", NS)

        assert entry.data == {"x": 1}
        assert entry.metadata is None

    @pytest.mark.asyncio
    async def test_metadata_without_payload_is_removed(self, manager, storage):
        await manager.put("book_9", {"a": 1}, NS)
        await storage.delete(NS, "book_9")

        assert await manager.get("book_9", NS) is None
        assert await manager.get_metadata("book_9", NS) is None

    @pytest.mark.asyncio
    async def test_memory_tier_serves_repeated_reads(self, storage, clock):
        tier = MemoryCacheTier(clock=clock)
        manager = CacheManager(storage, memory_tier=tier, clock=clock)
        await manager.put("book_1", {"a": 1}, NS)

        assert await manager.get("book_1", NS) == {"a": 1}
        assert tier.get_stats()["hits"] >= 1

    @pytest.mark.asyncio
    async def test_memory_tier_hit_is_isolated_from_caller_changes(self, storage, clock):
        tier = MemoryCacheTier(clock=clock)
        manager = CacheManager(storage, memory_tier=tier, clock=clock)
        await manager.put("book_1", {"title": "Foo", "tags": ["a"]}, NS)

        first = await manager.get("book_1", NS)
        first["title"] = "changed"
        first["tags"].append("b")

        assert await manager.get("book_1", NS) == {"title": "Foo", "tags": ["a"]}
        assert tier.get_stats()["hits"] == 2


class TestExpiry:
    """Expiry is decided by metadata and an injectable clock"""

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, manager, storage, clock):
        await manager.put("book_1", {"title": "Foo"}, NS, ttl=timedelta(hours=1))
        assert await manager.get("book_1", NS) == {"title": "Foo"}

        clock.advance(2 * HOUR_MILLIS)

        assert await manager.get("book_1", NS) is None
        assert await manager.exists("book_1", NS) is False
        assert await storage.contains(NS, "book_1")

    @pytest.mark.asyncio
    async def test_expired_entry_not_deleted_on_read(self, manager, clock):
        await manager.put("book_1", {"a": 1}, NS, ttl=timedelta(hours=1))
        clock.advance(2 * HOUR_MILLIS)

        assert await manager.get("book_1", NS) is None
        assert await manager.get("book_1", NS, allow_expired=True) == {"a": 1}

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, manager, clock):
        await manager.put("pref", "dark", NS, ttl=None)
        clock.advance(1000 * 24 * HOUR_MILLIS)

        assert await manager.get("pref", NS) == "dark"

    @pytest.mark.asyncio
    async def test_clear_expired_entries_counts_removals(self, manager, clock):
        await manager.put("old_1", "a", NS, ttl=timedelta(hours=1))
        await manager.put("old_2", "b", NS, ttl=timedelta(hours=1))
        await manager.put("fresh", "c", NS, ttl=timedelta(days=1))
        clock.advance(2 * HOUR_MILLIS)

        removed = await manager.clear_expired_entries(NS)

        assert removed == 2
        assert manager.last_sweep_failures == 0
        assert await manager.get_all_keys(NS) == ["fresh"]
        assert await manager.get_metadata("old_1", NS) is None

    @pytest.mark.asyncio
    async def test_malformed_metadata_counted_as_sweep_failure(self, manager, storage):
        await manager.put("good", "a", NS)
        await storage.put(constants.METADATA_NAMESPACE, KeyBuilder.metadata_key(NS, "bad"), "{not json")

        removed = await manager.clear_expired_entries(NS)

        assert removed == 0
        assert manager.last_sweep_failures == 1


class TestAccessStats:

    @pytest.mark.asyncio
    async def test_access_count_increments_per_read(self, manager):
        await manager.put("book_1", "content", NS)
        for _ in range(3):
            await manager.get("book_1", NS)

        metadata = await manager.get_metadata("book_1", NS)
        assert metadata.access_count == 3

    @pytest.mark.asyncio
    async def test_reads_without_stats_leave_count_alone(self, manager):
        await manager.put("book_1", "content", NS)
        await manager.get("book_1", NS, update_access_stats=False)

        metadata = await manager.get_metadata("book_1", NS)
        assert metadata.access_count == 0

    @pytest.mark.asyncio
    async def test_put_resets_access_count(self, manager):
        await manager.put("book_1", "v1", NS)
        await manager.get("book_1", NS)
        await manager.put("book_1", "v2", NS)

        metadata = await manager.get_metadata("book_1", NS)
        assert metadata.access_count == 0


class TestRemoval:

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, manager):
        await manager.put("book_1", "content", NS)

        await manager.remove("book_1", NS)
        await manager.remove("book_1", NS)

        assert await manager.get("book_1", NS) is None
        assert await manager.get_metadata("book_1", NS) is None

    @pytest.mark.asyncio
    async def test_clear_namespace_keeps_other_namespaces(self, manager):
        await manager.put("a", 1, NS)
        await manager.put("b", 2, constants.SETTINGS_NAMESPACE)

        await manager.clear_namespace(NS)

        assert await manager.get_all_keys(NS) == []
        assert await manager.get("b", constants.SETTINGS_NAMESPACE) == 2
        assert await manager.get_namespaces() == [constants.SETTINGS_NAMESPACE]


class TestSizeLimit:
    """enforce_size_limit evicts least recently accessed unpinned entries"""

    async def _fill(self, manager, clock, keys):
        for key in keys:
            await manager.put(key, "x" * 100, NS)
            clock.advance(1000)

    @pytest.mark.asyncio
    async def test_no_eviction_under_limit(self, manager, clock):
        await self._fill(manager, clock, ["a", "b"])

        assert await manager.enforce_size_limit(NS, 1000) == 0
        assert sorted(await manager.get_all_keys(NS)) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_size_within_limit_afterwards(self, manager, clock):
        await self._fill(manager, clock, ["a", "b", "c", "d"])

        await manager.enforce_size_limit(NS, 250)

        assert await manager.get_namespace_size(NS) <= 250

    @pytest.mark.asyncio
    async def test_least_recently_accessed_evicted_first(self, manager, clock):
        await self._fill(manager, clock, ["a", "b", "c"])
        await manager.get("a", NS)

        evicted = await manager.enforce_size_limit(NS, 200)

        assert evicted == 1
        assert sorted(await manager.get_all_keys(NS)) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_pinned_entry_survives_eviction(self, manager, clock):
        await self._fill(manager, clock, ["pinned", "b", "c"])
        assert await manager.set_pinned("pinned", NS, True)

        await manager.enforce_size_limit(NS, 50)

        assert await manager.get_all_keys(NS) == ["pinned"]
        assert await manager.get("pinned", NS) == "x" * 100

    @pytest.mark.asyncio
    async def test_put_keeps_pin(self, manager, clock):
        await manager.put("pinned", "v1", NS)
        await manager.set_pinned("pinned", NS, True)
        await manager.put("pinned", "v2", NS)

        metadata = await manager.get_metadata("pinned", NS)
        assert metadata.is_pinned

    @pytest.mark.asyncio
    async def test_low_priority_evicted_before_medium(self, manager, registry, clock):
        await self._fill(manager, clock, ["book_2", "book_1"])
        await registry.update("1", PriorityLevel.LOW)

        await manager.enforce_size_limit(NS, 100)

        assert await manager.get_all_keys(NS) == ["book_2"]

    @pytest.mark.asyncio
    async def test_high_priority_is_protected(self, manager, registry, clock):
        await self._fill(manager, clock, ["book_1", "book_2"])
        await registry.update("1", PriorityLevel.HIGH)

        await manager.enforce_size_limit(NS, 100)

        assert await manager.get_all_keys(NS) == ["book_1"]


class TestFailures:

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self, clock):
        manager = CacheManager(FailingReadStorage(), clock=clock)

        assert await manager.get("book_1", NS) is None
        assert await manager.get_metadata("book_1", NS) is None
        assert manager.metrics.errors == 1

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, clock):
        manager = CacheManager(FailingWriteStorage(), clock=clock)

        with pytest.raises(StorageError):
            await manager.put("book_1", "content", NS)

    @pytest.mark.asyncio
    async def test_unserializable_value_stored_as_string(self, manager):
        class Opaque:
            def __str__(self):
                return "opaque-value"

        metadata = await manager.put("odd", Opaque(), NS)

        assert metadata.value_type == ValueType.STRING.value
        assert metadata.content_hash is None
        assert await manager.get("odd", NS) == "opaque-value"


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_run_maintenance_sweeps_and_trims(self, storage, clock):
        manager = CacheManager(storage, clock=clock, size_limits={NS: 150})
        await manager.put("old", "x" * 100, NS, ttl=timedelta(hours=1))
        clock.advance(2 * HOUR_MILLIS)
        await manager.put("a", "x" * 100, NS)
        clock.advance(1000)
        await manager.put("b", "x" * 100, NS)

        summary = await manager.run_maintenance()

        assert summary["expired"][NS] == 1
        assert summary["evicted"][NS] == 1
        assert await manager.get_all_keys(NS) == ["b"]

    @pytest.mark.asyncio
    async def test_initialize_starts_and_dispose_stops_task(self, storage, clock):
        manager = CacheManager(storage, clock=clock, maintenance_interval=timedelta(hours=1))

        await manager.initialize()
        assert manager.maintenance_running

        await manager.dispose()
        assert not manager.maintenance_running
