import os
import time

import pytest

from reader_cache.cache.fetcher import FetchResponse
from reader_cache.cache.video import VideoCacheManager
from reader_cache.common import constants
from reader_cache.tests.conftest import DAY_MILLIS

THUMB_URL = "https://img.example.com/vi/abc123/hqdefault.jpg"


@pytest.fixture
def video_cache(manager, fetcher, clock, tmp_path):
    return VideoCacheManager(manager, tmp_path / "video_cache", fetcher, clock=clock)


class TestVideoMetadata:

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, video_cache, manager):
        await video_cache.initialize()
        await video_cache.cache_video_metadata("abc123", {"title": "Lecture 1", "duration": 3600})

        assert await video_cache.get_video_metadata("abc123") == {"title": "Lecture 1", "duration": 3600}
        assert await manager.get_all_keys(constants.VIDEO_METADATA_NAMESPACE) == ["video_abc123"]

    @pytest.mark.asyncio
    async def test_unknown_video_has_no_metadata(self, video_cache):
        await video_cache.initialize()

        assert await video_cache.get_video_metadata("nope") is None

    @pytest.mark.asyncio
    async def test_playlist_carries_timestamp(self, video_cache, clock):
        await video_cache.initialize()
        await video_cache.cache_playlist("playlist_1", {"videos": ["a", "b"]})

        playlist = await video_cache.get_playlist("playlist_1")

        assert playlist["videos"] == ["a", "b"]
        assert playlist["cache_timestamp"] == clock.now
        assert playlist["ttl_millis"] == 14 * DAY_MILLIS


class TestThumbnails:

    @pytest.mark.asyncio
    async def test_thumbnail_downloaded_once(self, video_cache, fetcher):
        first = await video_cache.cache_video_thumbnail("abc123", THUMB_URL)
        second = await video_cache.cache_video_thumbnail("abc123", THUMB_URL)

        assert first == second
        assert first.endswith("thumbnail_abc123.jpg")
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_thumbnail_path_from_record(self, video_cache):
        cached = await video_cache.cache_video_thumbnail("abc123", THUMB_URL)

        assert await video_cache.get_video_thumbnail_path("abc123") == cached

    @pytest.mark.asyncio
    async def test_thumbnail_path_found_by_extension_without_record(self, video_cache):
        await video_cache.initialize()
        path = video_cache.thumbnail_path("xyz", ".webp")
        path.write_bytes(b"webp")

        assert await video_cache.get_video_thumbnail_path("xyz") == str(path)

    @pytest.mark.asyncio
    async def test_record_for_deleted_file_is_cleared(self, video_cache, manager):
        cached = await video_cache.cache_video_thumbnail("abc123", THUMB_URL)
        os.remove(cached)

        assert await video_cache.get_video_thumbnail_path("abc123") is None
        assert await manager.get_all_keys(constants.THUMBNAIL_METADATA_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_stale_record_falls_back_to_other_extension(self, video_cache, manager):
        cached = await video_cache.cache_video_thumbnail("v1", THUMB_URL)
        os.remove(cached)
        replacement = video_cache.thumbnail_path("v1", ".png")
        replacement.write_bytes(b"png")

        assert await video_cache.get_video_thumbnail_path("v1") == str(replacement)
        assert await manager.get_all_keys(constants.THUMBNAIL_METADATA_NAMESPACE) == []

    @pytest.mark.asyncio
    async def test_failed_download_returns_none(self, video_cache, fetcher):
        fetcher.responses[THUMB_URL] = FetchResponse(status=500, body=b"")

        assert await video_cache.cache_video_thumbnail("abc123", THUMB_URL) is None

    @pytest.mark.asyncio
    async def test_preload_thumbnails(self, video_cache, fetcher):
        fetcher.failures_remaining = 1
        paths = await video_cache.preload_video_thumbnails({
            "a": "https://img.example.com/a.png",
            "b": "https://img.example.com/b.png",
        })

        assert sorted(paths) == ["a", "b"]
        assert sum(path is not None for path in paths.values()) == 1


class TestExpiry:

    @pytest.mark.asyncio
    async def test_everything_expires_after_ttl(self, video_cache, clock):
        await video_cache.initialize()
        await video_cache.cache_video_metadata("abc123", {"title": "Lecture 1"})
        await video_cache.cache_playlist("playlist_1", {"videos": ["abc123"]})
        await video_cache.cache_video_thumbnail("abc123", THUMB_URL)
        clock.advance(15 * DAY_MILLIS)

        removed = await video_cache.clear_expired_entries()

        assert removed == 4
        assert await video_cache.get_playlist("playlist_1") is None
        assert await video_cache.get_cache_size() == 0

    @pytest.mark.asyncio
    async def test_fresh_entries_survive_sweep(self, video_cache):
        await video_cache.initialize()
        await video_cache.cache_playlist("playlist_1", {"videos": []})
        await video_cache.cache_video_thumbnail("abc123", THUMB_URL)

        assert await video_cache.clear_expired_entries() == 0
        assert await video_cache.get_playlist("playlist_1") is not None

    @pytest.mark.asyncio
    async def test_old_files_removed_by_mtime(self, video_cache):
        await video_cache.initialize()
        stale = video_cache.cache_dir / "thumbnail_old.jpg"
        stale.write_bytes(b"old")
        twenty_days_ago = time.time() - 20 * 24 * 3600
        os.utime(stale, (twenty_days_ago, twenty_days_ago))

        assert await video_cache.clear_expired_entries() == 1
        assert not stale.exists()


class TestHousekeeping:

    @pytest.mark.asyncio
    async def test_size_limit_by_access_time(self, video_cache):
        await video_cache.initialize()
        now = time.time()
        for index, name in enumerate(["a.mp4", "b.mp4", "c.mp4"]):
            path = video_cache.cache_dir / name
            path.write_bytes(b"x" * 100)
            stamp = now - (3 - index) * 60
            os.utime(path, (stamp, stamp))
        video_cache.max_size_bytes = 150

        assert await video_cache.enforce_size_limit() == 2
        assert [p.name for p in video_cache.cache_dir.iterdir()] == ["c.mp4"]

    @pytest.mark.asyncio
    async def test_clear_cache(self, video_cache, manager):
        await video_cache.cache_video_metadata("abc123", {"title": "Lecture 1"})
        await video_cache.cache_video_thumbnail("abc123", THUMB_URL)

        await video_cache.clear_cache()

        assert await video_cache.get_cache_size() == 0
        assert await manager.get_all_keys(constants.VIDEO_METADATA_NAMESPACE) == []
        assert await manager.get_all_keys(constants.THUMBNAIL_METADATA_NAMESPACE) == []
