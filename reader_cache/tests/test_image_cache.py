"""
Tests for the image cache: URL normalization, download and retry
behaviour, self-healing of missing files and directory budgets.
"""

import asyncio
import os
import time
from unittest.mock import patch

import pytest

from reader_cache.cache.blob_store import FileBlobStore
from reader_cache.cache.fetcher import FetchResponse
from reader_cache.cache.image import ImageCacheManager
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.common import constants

COVER_URL = "https://cdn.example.com/covers/book-1.png"


@pytest.fixture
def image_cache(manager, fetcher, clock, tmp_path):
    return ImageCacheManager(
        manager,
        FileBlobStore(tmp_path / "images"),
        fetcher,
        retry_delay=0,
        clock=clock,
    )


class TestGetImage:

    @pytest.mark.asyncio
    async def test_downloads_once_for_query_variants(self, image_cache, fetcher):
        await image_cache.initialize()

        first = await image_cache.get_image(f"{COVER_URL}?v=1")
        second = await image_cache.get_image(f"{COVER_URL}?v=2")

        assert first is not None
        assert first == second
        assert first.suffix == ".png"
        assert first.read_bytes() == fetcher.body
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_record_describes_download(self, image_cache, manager):
        await image_cache.initialize()
        path = await image_cache.get_image(COVER_URL)

        record = await manager.get(KeyBuilder.image_key(COVER_URL), constants.IMAGE_METADATA_NAMESPACE)

        assert record["filePath"] == str(path)
        assert record["url"] == COVER_URL
        assert record["validTill"] > record["downloadedAt"]

    @pytest.mark.asyncio
    async def test_missing_file_is_downloaded_again(self, image_cache, fetcher):
        await image_cache.initialize()
        path = await image_cache.get_image(COVER_URL)
        path.unlink()

        again = await image_cache.get_image(COVER_URL)

        assert again is not None and again.is_file()
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_file_without_record_is_adopted(self, image_cache, manager, fetcher):
        await image_cache.initialize()
        key = KeyBuilder.image_key(COVER_URL)
        stored = await image_cache.blob_store.put(key, b"already here", ".png")

        path = await image_cache.get_image(COVER_URL)

        assert path == stored
        assert fetcher.calls == []
        assert await manager.get(key, constants.IMAGE_METADATA_NAMESPACE) is not None

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self, image_cache, fetcher):
        fetcher.responses[COVER_URL] = FetchResponse(status=404, body=b"")
        await image_cache.initialize()

        assert await image_cache.get_image(COVER_URL) is None
        assert not await image_cache.is_image_cached(COVER_URL)

    @pytest.mark.asyncio
    async def test_log_records_carry_namespace(self, image_cache, fetcher):
        fetcher.responses[COVER_URL] = FetchResponse(status=404, body=b"")
        await image_cache.initialize()

        with patch.object(image_cache.logger, "logger") as target:
            await image_cache.download_and_cache_image(COVER_URL)

        _, kwargs = target.log.call_args
        assert kwargs["extra"]["data"] == {"namespace": constants.IMAGE_METADATA_NAMESPACE}

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self, image_cache, fetcher):
        fetcher.responses[COVER_URL] = FetchResponse(status=200, body=b"")
        await image_cache.initialize()

        assert await image_cache.download_and_cache_image(COVER_URL) is None


class TestPreload:

    @pytest.mark.asyncio
    async def test_retries_until_success(self, image_cache, fetcher):
        fetcher.failures_remaining = 2
        await image_cache.initialize()

        assert await image_cache.preload_image(COVER_URL) is True
        assert len(fetcher.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, image_cache, fetcher):
        fetcher.failures_remaining = 10
        await image_cache.initialize()

        assert await image_cache.preload_image(COVER_URL) is False
        assert len(fetcher.calls) == image_cache.max_retries + 1

    @pytest.mark.asyncio
    async def test_preload_images_publishes_progress(self, image_cache):
        await image_cache.initialize()
        queue = image_cache.progress.subscribe()

        count = await image_cache.preload_images([
            "https://cdn.example.com/a.jpg",
            "https://cdn.example.com/b.jpg",
        ])

        assert count == 2
        assert [queue.get_nowait(), queue.get_nowait()] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_batch_preload_reports_each_url(self, image_cache, fetcher):
        bad_url = "https://cdn.example.com/missing.jpg"
        fetcher.responses[bad_url] = FetchResponse(status=404, body=b"")
        await image_cache.initialize()

        results = await image_cache.batch_preload_images([
            "https://cdn.example.com/a.jpg",
            "https://cdn.example.com/b.jpg",
            "https://cdn.example.com/a.jpg",
            bad_url,
        ], max_concurrent=2)

        assert results == {
            "https://cdn.example.com/a.jpg": True,
            "https://cdn.example.com/b.jpg": True,
            bad_url: False,
        }

    @pytest.mark.asyncio
    async def test_progress_listener_ends_on_dispose(self, image_cache):
        await image_cache.initialize()
        received = []

        async def _listen():
            async for value in image_cache.progress.listen():
                received.append(value)

        listener = asyncio.ensure_future(_listen())
        await asyncio.sleep(0)
        await image_cache.preload_images(["https://cdn.example.com/a.jpg"])
        await image_cache.dispose()
        await asyncio.wait_for(listener, timeout=1)

        assert received == [1.0]


class TestValidation:

    @pytest.mark.asyncio
    async def test_empty_file_is_invalid_and_removed(self, image_cache, manager):
        await image_cache.initialize()
        path = await image_cache.get_image(COVER_URL)
        path.write_bytes(b"")

        assert await image_cache.validate_cached_image(COVER_URL) is False
        assert not path.exists()
        assert await manager.get_metadata(KeyBuilder.image_key(COVER_URL),
                                          constants.IMAGE_METADATA_NAMESPACE) is None

    @pytest.mark.asyncio
    async def test_good_file_is_valid(self, image_cache):
        await image_cache.initialize()
        await image_cache.get_image(COVER_URL)

        assert await image_cache.validate_cached_image(COVER_URL) is True
        assert await image_cache.is_image_cached(COVER_URL)

    @pytest.mark.asyncio
    async def test_unknown_image_is_invalid(self, image_cache):
        await image_cache.initialize()

        assert await image_cache.validate_cached_image(COVER_URL) is False


class TestHousekeeping:

    @pytest.mark.asyncio
    async def test_clear_cache_removes_files_and_records(self, image_cache, manager):
        await image_cache.initialize()
        await image_cache.get_image(COVER_URL)

        await image_cache.clear_cache()

        assert await image_cache.get_cache_size() == 0
        assert await manager.get_all_keys(constants.IMAGE_METADATA_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_size_limit_evicts_least_recently_accessed(self, image_cache):
        await image_cache.initialize()
        directory = image_cache.blob_store.directory
        now = time.time()
        for index, name in enumerate(["old.jpg", "middle.jpg", "recent.jpg"]):
            path = directory / name
            path.write_bytes(b"x" * 100)
            stamp = now - (3 - index) * 3600
            os.utime(path, (stamp, stamp))
        image_cache.max_size_bytes = 200

        removed = await image_cache.enforce_size_limit()

        assert removed == 1
        assert sorted(p.name for p in directory.iterdir()) == ["middle.jpg", "recent.jpg"]
