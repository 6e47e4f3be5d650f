import asyncio
import unittest
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from reader_cache.cache.memory import MemoryStorageBackend
from reader_cache.cache.redis import RedisStorageBackend
from reader_cache.cache.sql import SQLStorageBackend
from reader_cache.common.exceptions import StorageError


async def _exercise_backend(backend):
    """Behaviour every backend shares, checked against one instance."""
    await backend.open("books")

    assert await backend.get("books", "book_1") is None

    await backend.put("books", "book_1", '{"title": "first"}')
    await backend.put("books", "book_1", '{"title": "second"}')
    await backend.put("books", "book_2", "plain")
    await backend.put("other", "book_1", "elsewhere")

    assert await backend.get("books", "book_1") == '{"title": "second"}'
    assert await backend.get("other", "book_1") == "elsewhere"
    assert sorted(await backend.keys("books")) == ["book_1", "book_2"]
    assert await backend.contains("books", "book_2")
    assert await backend.get_many("books", ["book_1", "missing"]) == {
        "book_1": '{"title": "second"}',
        "missing": None,
    }

    assert await backend.delete("books", "book_2") is True
    assert await backend.delete("books", "book_2") is False

    await backend.clear("books")
    assert await backend.keys("books") == []
    assert await backend.get("other", "book_1") == "elsewhere"


class TestMemoryStorageBackend:

    @pytest.mark.asyncio
    async def test_shared_behaviour(self):
        await _exercise_backend(MemoryStorageBackend())

    @pytest.mark.asyncio
    async def test_delete_many_counts_present_keys(self):
        backend = MemoryStorageBackend()
        await backend.put("ns", "a", "1")
        await backend.put("ns", "b", "2")

        assert await backend.delete_many("ns", ["a", "b", "c"]) == 2

    @pytest.mark.asyncio
    async def test_close_drops_everything(self):
        backend = MemoryStorageBackend()
        await backend.put("ns", "a", "1")

        await backend.close()

        assert await backend.namespaces() == []

    @pytest.mark.asyncio
    async def test_stats_count_operations(self):
        backend = MemoryStorageBackend()
        await backend.put("ns", "a", "1")
        await backend.get("ns", "a")

        stats = await backend.get_stats()
        assert stats["writes"] == 1
        assert stats["reads"] == 1
        assert stats["namespaces"] == {"ns": 1}


class TestSQLStorageBackend:

    @pytest.mark.asyncio
    async def test_shared_behaviour_in_memory(self):
        backend = SQLStorageBackend("sqlite+aiosqlite:///:memory:")
        try:
            await _exercise_backend(backend)
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"

        first = SQLStorageBackend(url)
        await first.put("books", "book_1", "persisted")
        await first.close()

        second = SQLStorageBackend(url)
        try:
            assert await second.get("books", "book_1") == "persisted"
            assert await second.namespaces() == ["books"]
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_stats_group_by_namespace(self):
        backend = SQLStorageBackend("sqlite+aiosqlite:///:memory:")
        try:
            await backend.put("a", "1", "x")
            await backend.put("a", "2", "y")
            await backend.put("b", "1", "z")

            stats = await backend.get_stats()

            assert stats["namespaces"] == {"a": 2, "b": 1}
            assert stats["records"] == 3
        finally:
            await backend.close()


class TestRedisStorageBackend(unittest.TestCase):
    """Test the RedisStorageBackend class against a mocked client."""

    def setUp(self):
        """Set up a backend around a mocked asyncio Redis client."""
        self.client = AsyncMock()
        self.backend = RedisStorageBackend(redis_client=self.client, key_prefix="test:")
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

    def tearDown(self):
        """Clean up the event loop."""
        self.loop.close()

    def test_put_writes_into_namespace_hash(self):
        """Test that values are stored in one hash per namespace."""
        self.loop.run_until_complete(self.backend.put("books", "book_1", "value"))

        self.client.hset.assert_awaited_once_with("test:books", "book_1", "value")

    def test_get_decodes_bytes(self):
        """Test that byte replies are decoded to strings."""
        self.client.hget.return_value = b"value"

        value = self.loop.run_until_complete(self.backend.get("books", "book_1"))

        self.assertEqual(value, "value")
        self.client.hget.assert_awaited_once_with("test:books", "book_1")

    def test_get_missing_returns_none(self):
        """Test that an absent field is a miss."""
        self.client.hget.return_value = None

        value = self.loop.run_until_complete(self.backend.get("books", "book_1"))

        self.assertIsNone(value)

    def test_clear_deletes_the_hash(self):
        """Test that clearing a namespace drops its hash."""
        self.loop.run_until_complete(self.backend.clear("books"))

        self.client.delete.assert_awaited_once_with("test:books")

    def test_namespaces_strip_prefix(self):
        """Test that namespaces are listed without the key prefix."""
        self.client.keys.return_value = [b"test:books", "test:preferences"]

        namespaces = self.loop.run_until_complete(self.backend.namespaces())

        self.assertEqual(namespaces, ["books", "preferences"])

    def test_get_many_uses_hmget(self):
        """Test batched reads."""
        self.client.hmget.return_value = [b"1", None]

        values = self.loop.run_until_complete(self.backend.get_many("ns", ["a", "b"]))

        self.assertEqual(values, {"a": "1", "b": None})

    def test_redis_errors_become_storage_errors(self):
        """Test that driver errors are wrapped."""
        self.client.hset.side_effect = RedisConnectionError("refused")

        with self.assertRaises(StorageError) as context:
            self.loop.run_until_complete(self.backend.put("books", "book_1", "value"))

        self.assertEqual(context.exception.namespace, "books")
        self.assertIsInstance(context.exception.original_exception, RedisConnectionError)

    def test_stats_report_errors(self):
        """Test that get_stats degrades to an error report."""
        self.client.info.side_effect = RedisConnectionError("refused")

        stats = self.loop.run_until_complete(self.backend.get_stats())

        self.assertEqual(stats["backend"], "redis")
        self.assertIn("error", stats)
