"""
Image Cache Module

Downloads remote images to a disk blob store and keeps one metadata record
per image in the image metadata namespace. Keys are the image URL without
query string or fragment, so cache-busting parameters map to one file.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import aiofiles.os

from reader_cache.cache.blob_store import FileBlobStore, enforce_directory_limit, extension_from_url
from reader_cache.cache.fetcher import Fetcher
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.progress import ProgressStream
from reader_cache.common import constants
from reader_cache.common.exceptions import FetchError, StorageError
from reader_cache.common.logger import with_context
from reader_cache.common.serialization import ValueType
from reader_cache.common.utils import now_millis


def _iso(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


class ImageCacheManager:
    """
    Disk cache for remote images.

    ``get_image`` resolves in order: metadata record, file already in the
    blob store (metadata is backfilled), network download. Download
    failures yield None rather than raising.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        blob_store: FileBlobStore,
        fetcher: Fetcher,
        ttl: timedelta = constants.IMAGE_TTL,
        max_size_bytes: int = constants.MAX_IMAGE_CACHE_SIZE,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        max_concurrent: int = 3,
        namespace: str = constants.IMAGE_METADATA_NAMESPACE,
        clock: Callable[[], int] = now_millis,
    ):
        self.cache_manager = cache_manager
        self.blob_store = blob_store
        self.fetcher = fetcher
        self.ttl = ttl
        self.max_size_bytes = max_size_bytes
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_concurrent = max_concurrent
        self.namespace = namespace
        self.logger = with_context(__name__, namespace=namespace)
        self.progress: ProgressStream[float] = ProgressStream()
        self._clock = clock

    async def initialize(self) -> None:
        await self.blob_store.initialize()
        await self.cache_manager.storage.open(self.namespace)

    async def dispose(self) -> None:
        self.progress.close()

    async def _read_record(self, key: str, update_access_stats: bool = True) -> Optional[Dict]:
        record = await self.cache_manager.get(
            key, self.namespace, update_access_stats=update_access_stats, value_type=ValueType.JSON
        )
        return record if isinstance(record, dict) else None

    async def _write_record(self, key: str, url: str, path: Path, ttl: timedelta) -> None:
        now = self._clock()
        record = {
            "filePath": str(path),
            "url": url,
            "validTill": _iso(now + int(ttl.total_seconds() * 1000)),
            "downloadedAt": _iso(now),
        }
        await self.cache_manager.put(
            key, record, self.namespace, ttl=ttl, source="network", value_type=ValueType.JSON
        )

    async def _file_is_fresh(self, path: Path, ttl: timedelta) -> bool:
        try:
            modified_millis = int((await aiofiles.os.stat(path)).st_mtime * 1000)
        except OSError:
            return False
        return self._clock() - modified_millis <= ttl.total_seconds() * 1000

    async def get_image(self, url: str, ttl: Optional[timedelta] = None) -> Optional[Path]:
        """
        Return a local file for an image URL, downloading it if needed.

        Args:
            url: Image URL
            ttl: Lifetime of a newly cached image (defaults to the image TTL)

        Returns:
            Path of the cached file, or None if it could not be obtained
        """
        if ttl is None:
            ttl = self.ttl
        key = KeyBuilder.image_key(url)

        record = await self._read_record(key)
        if record is not None:
            path = Path(record.get("filePath", ""))
            if await aiofiles.os.path.isfile(path):
                return path
            self.logger.warning(f"Image file for {key} is gone, dropping its metadata")
            await self._remove_record_quietly(key)

        path = await self.blob_store.get_file(key)
        if path is not None:
            if await self._file_is_fresh(path, ttl):
                try:
                    await self._write_record(key, url, path, ttl)
                except StorageError as e:
                    self.logger.warning(f"Could not backfill metadata for {key}: {e}")
                return path
            await self.blob_store.remove(key)

        return await self.download_and_cache_image(url, ttl)

    async def download_and_cache_image(self, url: str, ttl: Optional[timedelta] = None) -> Optional[Path]:
        """
        Download an image and record it. Never raises.

        Returns:
            Path of the stored file, or None on any failure
        """
        if ttl is None:
            ttl = self.ttl
        key = KeyBuilder.image_key(url)
        try:
            response = await self.fetcher.fetch(url)
            if not response.ok:
                self.logger.warning(f"Image download of {url} failed with HTTP {response.status}")
                return None
            if not response.body:
                self.logger.warning(f"Image download of {url} returned an empty body")
                return None

            path = await self.blob_store.put(key, response.body, extension_from_url(url))
            await self._write_record(key, url, path, ttl)
            self.logger.debug(f"Cached image {key} -> {path}")
            return path
        except (FetchError, StorageError) as e:
            self.logger.warning(f"Could not cache image {url}: {e}")
            return None
        except Exception as e:
            self.logger.error(f"Unexpected error caching image {url}: {e}", exc_info=True)
            return None

    async def preload_image(self, url: str, ttl: Optional[timedelta] = None) -> bool:
        """
        Make sure an image is cached, retrying failed downloads.

        Attempt ``n`` is followed by a pause of ``retry_delay * n`` seconds.
        """
        for attempt in range(1, self.max_retries + 2):
            if await self.get_image(url, ttl) is not None:
                return True
            if attempt <= self.max_retries:
                self.logger.debug(f"Retrying {url} (attempt {attempt} failed)")
                await asyncio.sleep(self.retry_delay * attempt)
        self.logger.warning(f"Giving up on {url} after {self.max_retries + 1} attempts")
        return False

    async def preload_images(self, urls: Iterable[str], ttl: Optional[timedelta] = None) -> int:
        """
        Preload images one after another, publishing ``completed / total``
        on ``progress`` after each one.

        Returns:
            Number of images that ended up cached
        """
        urls = list(urls)
        total = len(urls)
        succeeded = 0
        for index, url in enumerate(urls):
            if await self.preload_image(url, ttl):
                succeeded += 1
            self.progress.publish((index + 1) / total)
        self.logger.info(f"Preloaded {succeeded}/{total} images")
        return succeeded

    async def batch_preload_images(
        self,
        urls: Iterable[str],
        max_concurrent: Optional[int] = None,
        ttl: Optional[timedelta] = None,
    ) -> Dict[str, bool]:
        """Preload images concurrently, at most ``max_concurrent`` at a time."""
        semaphore = asyncio.Semaphore(max_concurrent or self.max_concurrent)
        unique_urls: List[str] = list(dict.fromkeys(urls))

        async def _preload(url: str) -> bool:
            async with semaphore:
                return await self.preload_image(url, ttl)

        results = await asyncio.gather(*(_preload(url) for url in unique_urls))
        return dict(zip(unique_urls, results))

    async def validate_cached_image(self, url: str) -> bool:
        """
        Check that the cached file for ``url`` exists and is not empty.

        Invalid files are deleted together with their metadata.
        """
        key = KeyBuilder.image_key(url)
        record = await self._read_record(key, update_access_stats=False)
        if record and record.get("filePath"):
            path = Path(record["filePath"])
        else:
            path = await self.blob_store.get_file(key)
        if path is None:
            return False
        try:
            valid = (await aiofiles.os.stat(path)).st_size > 0
        except OSError:
            valid = False
        if not valid:
            self.logger.warning(f"Cached image for {key} is missing or empty, removing it")
            await self.remove_image(url)
        return valid

    async def is_image_cached(self, url: str) -> bool:
        key = KeyBuilder.image_key(url)
        record = await self._read_record(key, update_access_stats=False)
        if record is None or not record.get("filePath"):
            return False
        return await aiofiles.os.path.isfile(record["filePath"])

    async def _remove_record_quietly(self, key: str) -> None:
        try:
            await self.cache_manager.remove(key, self.namespace)
        except StorageError as e:
            self.logger.warning(f"Could not remove image metadata {key}: {e}")

    async def remove_image(self, url: str) -> None:
        key = KeyBuilder.image_key(url)
        await self.blob_store.remove(key)
        await self._remove_record_quietly(key)

    async def clear_cache(self) -> None:
        """Delete every cached image file and the image metadata namespace."""
        removed = await self.blob_store.empty()
        await self.cache_manager.clear_namespace(self.namespace)
        self.logger.info(f"Cleared image cache ({removed} files)")

    async def get_cache_size(self) -> int:
        return await self.blob_store.size()

    async def enforce_size_limit(self) -> int:
        """Evict least recently accessed image files beyond the byte budget."""
        return await enforce_directory_limit(self.blob_store.directory, self.max_size_bytes)
