"""
Video Cache Module

Video metadata and playlists are cached through ``CacheManager``; thumbnails
are downloaded into the video cache directory as ``thumbnail_<videoId><ext>``
with a metadata record under ``thumbnail:<videoId>``.
"""

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import aiofiles
import aiofiles.os

from reader_cache.cache.blob_store import (
    directory_size,
    enforce_directory_limit,
    extension_from_url,
    list_files,
)
from reader_cache.cache.fetcher import Fetcher
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.metadata import ttl_to_millis
from reader_cache.common import constants
from reader_cache.common.exceptions import FetchError, StorageError
from reader_cache.common.logger import log_cache_expired, with_context
from reader_cache.common.serialization import ValueType
from reader_cache.common.utils import now_millis

CACHE_TIMESTAMP_FIELD = "cache_timestamp"
TTL_MILLIS_FIELD = "ttl_millis"


class VideoCacheManager:
    """
    Cache for video metadata, playlists and thumbnail files.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        cache_dir: Union[str, Path],
        fetcher: Fetcher,
        ttl: timedelta = constants.VIDEO_TTL,
        max_size_bytes: int = constants.MAX_VIDEO_CACHE_SIZE,
        clock: Callable[[], int] = now_millis,
    ):
        self.cache_manager = cache_manager
        self.cache_dir = Path(cache_dir)
        self.logger = with_context(__name__, cache_dir=str(self.cache_dir))
        self.fetcher = fetcher
        self.ttl = ttl
        self.max_size_bytes = max_size_bytes
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
        for namespace in (
            constants.VIDEO_METADATA_NAMESPACE,
            constants.PLAYLIST_NAMESPACE,
            constants.THUMBNAIL_METADATA_NAMESPACE,
        ):
            await self.cache_manager.storage.open(namespace)
        self._initialized = True
        self.logger.info(f"Video cache initialized at {self.cache_dir}")

    # Metadata and playlists

    async def cache_video_metadata(self, video_id: str, metadata: Dict[str, Any]) -> None:
        """
        Store metadata for a video under ``video_<id>``.

        Raises:
            StorageError: If the entry could not be written
        """
        key = KeyBuilder.resource_key("video", video_id)
        await self.cache_manager.put(
            key, metadata, constants.VIDEO_METADATA_NAMESPACE, ttl=self.ttl, value_type=ValueType.JSON
        )

    async def get_video_metadata(self, video_id: str) -> Optional[Dict[str, Any]]:
        key = KeyBuilder.resource_key("video", video_id)
        data = await self.cache_manager.get(
            key, constants.VIDEO_METADATA_NAMESPACE, value_type=ValueType.JSON
        )
        return data if isinstance(data, dict) else None

    async def cache_playlist(self, playlist_id: str, playlist: Dict[str, Any]) -> None:
        """
        Store a playlist. The payload carries its own ``cache_timestamp`` and
        ``ttl_millis`` so expiry can be decided from the payload alone.

        Raises:
            StorageError: If the entry could not be written
        """
        payload = dict(playlist)
        payload[CACHE_TIMESTAMP_FIELD] = self._clock()
        payload[TTL_MILLIS_FIELD] = ttl_to_millis(self.ttl)
        await self.cache_manager.put(
            playlist_id, payload, constants.PLAYLIST_NAMESPACE, ttl=self.ttl, value_type=ValueType.JSON
        )

    async def get_playlist(self, playlist_id: str) -> Optional[Dict[str, Any]]:
        data = await self.cache_manager.get(
            playlist_id, constants.PLAYLIST_NAMESPACE, value_type=ValueType.JSON
        )
        return data if isinstance(data, dict) else None

    # Thumbnails

    def thumbnail_path(self, video_id: str, extension: str) -> Path:
        return self.cache_dir / f"{constants.THUMBNAIL_FILE_PREFIX}{video_id}{extension}"

    async def cache_video_thumbnail(self, video_id: str, url: str) -> Optional[str]:
        """
        Download a video thumbnail unless it is already cached.

        Args:
            video_id: Video the thumbnail belongs to
            url: Thumbnail URL

        Returns:
            Local path of the thumbnail, or None if it could not be downloaded
        """
        await self.initialize()
        extension = extension_from_url(url)
        path = self.thumbnail_path(video_id, extension)
        metadata_key = KeyBuilder.thumbnail_key(video_id)

        existing = await self.cache_manager.get(
            metadata_key, constants.THUMBNAIL_METADATA_NAMESPACE, value_type=ValueType.JSON
        )
        if existing is not None and await aiofiles.os.path.isfile(path):
            return str(path)

        try:
            self.logger.info(f"Downloading thumbnail for {video_id} from {url}")
            response = await self.fetcher.fetch(url)
            if not response.ok:
                self.logger.warning(f"Thumbnail download for {video_id} failed with HTTP {response.status}")
                return None

            async with aiofiles.open(path, "wb") as f:
                await f.write(response.body)

            record = {
                "originalUrl": url,
                "localPath": str(path),
                "videoId": video_id,
                "cachedAt": self._clock(),
                "extension": extension,
            }
            await self.cache_manager.put(
                metadata_key,
                record,
                constants.THUMBNAIL_METADATA_NAMESPACE,
                ttl=self.ttl,
                value_type=ValueType.JSON,
            )
            return str(path)
        except (FetchError, StorageError, OSError) as e:
            self.logger.warning(f"Could not cache thumbnail for {video_id}: {e}")
            return None

    async def get_video_thumbnail_path(self, video_id: str) -> Optional[str]:
        """
        Local path of a cached thumbnail.

        The metadata record is consulted first; a record pointing at a
        missing file is removed. The cache directory is then searched for
        each known thumbnail extension.
        """
        metadata_key = KeyBuilder.thumbnail_key(video_id)
        record = await self.cache_manager.get(
            metadata_key, constants.THUMBNAIL_METADATA_NAMESPACE, value_type=ValueType.JSON
        )
        if isinstance(record, dict) and record.get("localPath"):
            local_path = Path(record["localPath"])
            if await aiofiles.os.path.isfile(local_path):
                return str(local_path)
            self.logger.warning(f"Thumbnail file {local_path} for {video_id} is gone, clearing its metadata")
            try:
                await self.cache_manager.remove(metadata_key, constants.THUMBNAIL_METADATA_NAMESPACE)
            except StorageError as e:
                self.logger.warning(f"Could not clear thumbnail metadata for {video_id}: {e}")

        for extension in constants.THUMBNAIL_EXTENSIONS:
            candidate = self.thumbnail_path(video_id, extension)
            if await aiofiles.os.path.isfile(candidate):
                return str(candidate)
        return None

    async def preload_video_thumbnails(self, thumbnails: Dict[str, str]) -> Dict[str, Optional[str]]:
        """Cache thumbnails for a ``{video_id: url}`` mapping concurrently."""
        video_ids = list(thumbnails)
        paths = await asyncio.gather(
            *(self.cache_video_thumbnail(video_id, thumbnails[video_id]) for video_id in video_ids)
        )
        return dict(zip(video_ids, paths))

    # Housekeeping

    async def _clear_expired_playlists(self, now: int) -> int:
        removed = 0
        for key in await self.cache_manager.get_all_keys(constants.PLAYLIST_NAMESPACE):
            try:
                playlist = await self.cache_manager.get(
                    key,
                    constants.PLAYLIST_NAMESPACE,
                    update_access_stats=False,
                    value_type=ValueType.JSON,
                    allow_expired=True,
                )
                if not isinstance(playlist, dict):
                    continue
                timestamp = playlist.get(CACHE_TIMESTAMP_FIELD)
                ttl_millis = playlist.get(TTL_MILLIS_FIELD)
                if timestamp is None or ttl_millis is None:
                    continue
                if now > int(timestamp) + int(ttl_millis):
                    await self.cache_manager.remove(key, constants.PLAYLIST_NAMESPACE)
                    removed += 1
                    log_cache_expired(key, constants.PLAYLIST_NAMESPACE, now - int(timestamp))
            except (StorageError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping playlist {key} during expiry sweep: {e}")
        return removed

    async def _clear_expired_files(self, now: int) -> int:
        if not await aiofiles.os.path.isdir(self.cache_dir):
            return 0
        max_age = ttl_to_millis(self.ttl)
        removed = 0
        for name in await aiofiles.os.listdir(self.cache_dir):
            path = self.cache_dir / name
            try:
                if not await aiofiles.os.path.isfile(path):
                    continue
                age = now - int((await aiofiles.os.stat(path)).st_mtime * 1000)
                if age > max_age:
                    await aiofiles.os.remove(path)
                    removed += 1
                    log_cache_expired(path.name, str(self.cache_dir), age)
            except OSError as e:
                self.logger.warning(f"Skipping {path} during expiry sweep: {e}")
        return removed

    async def clear_expired_entries(self) -> int:
        """
        Remove expired video data.

        Three sweeps always run: metadata-driven expiry of the video and
        thumbnail metadata namespaces, playlists by their embedded
        timestamp, and files in the cache directory by modification time.

        Returns:
            Total number of entries and files removed
        """
        now = self._clock()
        removed = await self.cache_manager.clear_expired_entries(constants.VIDEO_METADATA_NAMESPACE)
        removed += await self.cache_manager.clear_expired_entries(constants.THUMBNAIL_METADATA_NAMESPACE)
        removed += await self._clear_expired_playlists(now)
        removed += await self._clear_expired_files(now)
        self.logger.info(f"Cleared {removed} expired video cache entries")
        return removed

    async def enforce_size_limit(self) -> int:
        """Delete least recently accessed files until the directory fits its budget."""
        return await enforce_directory_limit(self.cache_dir, self.max_size_bytes)

    async def clear_cache(self) -> None:
        for namespace in (
            constants.VIDEO_METADATA_NAMESPACE,
            constants.PLAYLIST_NAMESPACE,
            constants.THUMBNAIL_METADATA_NAMESPACE,
        ):
            await self.cache_manager.clear_namespace(namespace)

        removed = 0
        for path in await list_files(self.cache_dir):
            await aiofiles.os.remove(path)
            removed += 1
        self.logger.info(f"Cleared video cache ({removed} files)")

    async def get_cache_size(self) -> int:
        return await directory_size(self.cache_dir)
