"""
Cache Service Module

This module provides the high-level cache service API: one object wiring the
generic cache manager, the image, video and preferences caches, priorities
and pinning, read-through fetching with cache policies, and content
prefetching with progress reporting.
"""

import asyncio
import functools
import inspect
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar, cast

from reader_cache.cache.base import CachePolicy, CacheResult, StorageBackend
from reader_cache.cache.blob_store import FileBlobStore
from reader_cache.cache.fetcher import Fetcher, HttpFetcher
from reader_cache.cache.image import ImageCacheManager
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.maintenance import MaintenanceTask
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.memory import MemoryCacheTier, MemoryStorageBackend
from reader_cache.cache.metadata import CacheMetadata
from reader_cache.cache.metrics import CacheMetrics
from reader_cache.cache.preferences import PreferencesCacheManager
from reader_cache.cache.priority import CachePriority, PriorityLevel, PriorityRegistry
from reader_cache.cache.progress import DownloadProgress, DownloadStatus, ProgressStream
from reader_cache.cache.redis import RedisStorageBackend
from reader_cache.cache.sql import SQLStorageBackend
from reader_cache.cache.video import VideoCacheManager
from reader_cache.common import constants
from reader_cache.common.config import AppConfig, get_config
from reader_cache.common.exceptions import CacheError, StorageError
from reader_cache.common.logger import configure_logger, log_execution_time, set_cache_event_logging
from reader_cache.common.serialization import ValueType
from reader_cache.common.utils import format_size, now_millis

# Setup logging
logger = logging.getLogger(__name__)

# Type variables
T = TypeVar('T')
F = TypeVar('F', bound=Callable[..., Any])

Loader = Callable[[], Awaitable[Any]]


def create_storage(config: AppConfig) -> StorageBackend:
    """
    Create the persistent storage backend selected by configuration.

    Args:
        config: Application configuration

    Returns:
        An unopened storage backend
    """
    backend = config.storage.backend
    if backend == "memory":
        return MemoryStorageBackend()
    if backend == "redis":
        return RedisStorageBackend.from_config(config.redis)
    return SQLStorageBackend.from_config(config.storage)


class _DownloadControl:
    """Pause and cancel signals for one running prefetch."""

    def __init__(self):
        self.running = asyncio.Event()
        self.running.set()
        self.canceled = False


class CacheService:
    """
    High-level caching service for the reader.

    Owns the lifecycle of its components: ``initialize()`` loads priorities,
    prepares storage and starts periodic maintenance; ``dispose()`` stops
    maintenance, cancels background refreshes and closes the network and
    storage resources.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        image_manager: Optional[ImageCacheManager] = None,
        video_manager: Optional[VideoCacheManager] = None,
        preferences: Optional[PreferencesCacheManager] = None,
        fetcher: Optional[Fetcher] = None,
        default_ttl: timedelta = constants.DEFAULT_TTL,
        maintenance_interval: Optional[timedelta] = None,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        clock: Callable[[], int] = now_millis,
    ):
        """
        Initialize the cache service.

        Args:
            cache_manager: Generic cache manager; its priority registry and
                metrics are shared by the service
            image_manager: Image cache, required for image operations
            video_manager: Video cache, required for video operations
            preferences: Preferences cache
            fetcher: Network fetcher closed on dispose
            default_ttl: TTL used by ``fetch`` when none is given
            maintenance_interval: Interval of the maintenance task, None disables it
            max_retries: Retries per item during prefetch
            retry_delay: Base delay in seconds between prefetch retries
            clock: Returns the current time in epoch milliseconds
        """
        self.cache_manager = cache_manager
        self.image_manager = image_manager
        self.video_manager = video_manager
        self.preferences = preferences or PreferencesCacheManager(cache_manager)
        self.fetcher = fetcher
        self.default_ttl = default_ttl
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._clock = clock

        if self.cache_manager.priority_registry is None:
            self.cache_manager.priority_registry = PriorityRegistry(cache_manager.storage, clock=clock)
        self.priority_registry = self.cache_manager.priority_registry

        self.download_progress: ProgressStream[DownloadProgress] = ProgressStream()
        self._downloads: Dict[str, DownloadProgress] = {}
        self._download_controls: Dict[str, _DownloadControl] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._background_tasks: Set[asyncio.Task] = set()
        self._maintenance = (
            MaintenanceTask("cache_service", maintenance_interval, self.run_maintenance)
            if maintenance_interval else None
        )
        self._initialized = False

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None,
                    fetcher: Optional[Fetcher] = None) -> "CacheService":
        """
        Build the full cache stack from configuration.

        Args:
            config: Application configuration (defaults to ``get_config()``)
            fetcher: Network fetcher (defaults to an ``HttpFetcher``)

        Returns:
            An uninitialized cache service
        """
        config = config or get_config()
        cache_config = config.cache
        configure_logger(
            level=config.logging.level,
            format_string=config.logging.format,
            use_json=config.logging.use_json,
            log_file=config.logging.file_path,
        )
        set_cache_event_logging(cache_config.enable_event_logging)

        storage = create_storage(config)
        memory_tier = None
        if cache_config.memory_tier_enabled:
            memory_tier = MemoryCacheTier(
                max_size_bytes=cache_config.memory_tier_max_size,
                ttl=timedelta(seconds=cache_config.memory_tier_ttl),
            )

        cache_manager = CacheManager(
            storage,
            memory_tier=memory_tier,
            priority_registry=PriorityRegistry(storage),
            metrics=CacheMetrics(),
            size_limits={constants.BOOKS_NAMESPACE: cache_config.max_cache_size},
        )
        fetcher = fetcher or HttpFetcher(config.fetch)
        cache_dir = Path(cache_config.cache_dir)

        image_manager = ImageCacheManager(
            cache_manager,
            FileBlobStore(cache_dir / "images"),
            fetcher,
            ttl=timedelta(seconds=cache_config.image_ttl),
            max_size_bytes=cache_config.max_image_cache_size,
            max_retries=config.fetch.max_retries,
            retry_delay=config.fetch.retry_delay,
            max_concurrent=config.fetch.max_concurrent,
        )
        video_manager = VideoCacheManager(
            cache_manager,
            cache_dir / "video_cache",
            fetcher,
            ttl=timedelta(seconds=cache_config.video_ttl),
            max_size_bytes=cache_config.max_video_cache_size,
        )

        interval = cache_config.maintenance_interval
        return cls(
            cache_manager,
            image_manager=image_manager,
            video_manager=video_manager,
            fetcher=fetcher,
            default_ttl=timedelta(seconds=cache_config.default_ttl),
            maintenance_interval=timedelta(seconds=interval) if interval else None,
            max_retries=config.fetch.max_retries,
            retry_delay=config.fetch.retry_delay,
        )

    # Lifecycle

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.cache_manager.initialize()
        await self.priority_registry.load()
        await self.preferences.initialize()
        if self.image_manager is not None:
            await self.image_manager.initialize()
        if self.video_manager is not None:
            await self.video_manager.initialize()
        if self._maintenance is not None:
            self._maintenance.start()
        self._initialized = True
        logger.info("Cache service initialized")

    async def dispose(self) -> None:
        if self._maintenance is not None:
            await self._maintenance.stop()

        for control in self._download_controls.values():
            control.canceled = True
            control.running.set()

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self.image_manager is not None:
            await self.image_manager.dispose()
        self.download_progress.close()
        await self.cache_manager.dispose()
        if self.fetcher is not None:
            await self.fetcher.close()
        await self.cache_manager.storage.close()
        self._initialized = False
        logger.info("Cache service disposed")

    @log_execution_time(logger)
    async def run_maintenance(self) -> Dict[str, Any]:
        """
        Expire and trim every cache: generic namespaces, images and videos.
        """
        summary = await self.cache_manager.run_maintenance()
        if self.image_manager is not None:
            summary["images_evicted"] = await self.image_manager.enforce_size_limit()
        if self.video_manager is not None:
            summary["videos_expired"] = await self.video_manager.clear_expired_entries()
            summary["videos_evicted"] = await self.video_manager.enforce_size_limit()
        self.cache_manager.metrics.log_summary()
        return summary

    # Reads and read-through fetching

    async def get_cached_data(self, key: str, namespace: str,
                              value_type: Optional[ValueType] = None) -> CacheResult:
        """
        Read an entry without touching the network.

        Returns:
            FRESH or STALE result with the data, or MISSING
        """
        entry = await self.cache_manager.get_with_metadata(
            key, namespace, value_type=value_type, allow_expired=True
        )
        if entry is None or entry.data is None:
            return CacheResult.missing()
        if entry.metadata is not None and entry.metadata.is_expired(self._clock()):
            return CacheResult.stale(entry.data, entry.metadata)
        return CacheResult.fresh(entry.data, entry.metadata)

    async def fetch(
        self,
        key: str,
        namespace: str,
        loader: Loader,
        ttl: Optional[timedelta] = None,
        policy: CachePolicy = CachePolicy.CACHE_FIRST,
        value_type: Optional[ValueType] = None,
    ) -> CacheResult:
        """
        Read through the cache according to a policy.

        Concurrent fetches of the same key share a single call to ``loader``.
        When the loader fails, any cached copy is returned as STALE with the
        error attached; otherwise the result has status ERROR.

        Args:
            key: Key inside the namespace
            namespace: Namespace of the entry
            loader: Coroutine function producing the value from the network
            ttl: Lifetime of the stored value (defaults to ``default_ttl``)
            policy: Cache policy
            value_type: Codec for storing and reading the value

        Returns:
            The cache result
        """
        if ttl is None:
            ttl = self.default_ttl
        cached: Optional[CacheResult] = None

        if policy != CachePolicy.NETWORK_ONLY:
            cached = await self.get_cached_data(key, namespace, value_type)
            if cached.has_data:
                if policy == CachePolicy.CACHE_ONLY:
                    return cached
                if cached.is_fresh and policy != CachePolicy.NETWORK_FIRST:
                    return cached
                if cached.is_stale and policy in (CachePolicy.CACHE_FIRST,
                                                  CachePolicy.STALE_WHILE_REVALIDATE):
                    self._refresh_in_background(key, namespace, loader, ttl, value_type)
                    return cached
            elif policy == CachePolicy.CACHE_ONLY:
                return cached

        try:
            data, metadata = await self._load(key, namespace, loader, ttl, value_type)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Network fetch for {namespace}/{key} failed: {e}")
            self.cache_manager.metrics.record_error()
            if cached is not None and cached.has_data:
                return CacheResult.stale(cached.data, cached.metadata, error=str(e))
            return CacheResult.failed(str(e))

        return CacheResult.fresh(data, metadata, source="network")

    async def _load(
        self,
        key: str,
        namespace: str,
        loader: Loader,
        ttl: timedelta,
        value_type: Optional[ValueType],
    ) -> Tuple[Any, Optional[CacheMetadata]]:
        flight_key = KeyBuilder.metadata_key(namespace, key)
        task = self._in_flight.get(flight_key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_store(key, namespace, loader, ttl, value_type))
            self._in_flight[flight_key] = task

            def _forget(done: asyncio.Future) -> None:
                if self._in_flight.get(flight_key) is done:
                    del self._in_flight[flight_key]

            task.add_done_callback(_forget)
        else:
            logger.debug(f"Joining in-flight fetch for {flight_key}")
        return await asyncio.shield(task)

    async def _load_and_store(
        self,
        key: str,
        namespace: str,
        loader: Loader,
        ttl: timedelta,
        value_type: Optional[ValueType],
    ) -> Tuple[Any, Optional[CacheMetadata]]:
        data = await loader()
        if data is None:
            return None, None
        try:
            metadata = await self.cache_manager.put(key, data, namespace, ttl=ttl, value_type=value_type)
        except StorageError as e:
            logger.error(f"Fetched {namespace}/{key} but could not store it: {e}")
            metadata = None
        return data, metadata

    def _refresh_in_background(
        self,
        key: str,
        namespace: str,
        loader: Loader,
        ttl: timedelta,
        value_type: Optional[ValueType],
    ) -> None:
        async def _refresh() -> None:
            try:
                await self._load(key, namespace, loader, ttl, value_type)
                logger.debug(f"Background refresh of {namespace}/{key} finished")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Background refresh of {namespace}/{key} failed: {e}")

        task = asyncio.create_task(_refresh())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def cached(
        self,
        namespace: str,
        ttl: Optional[timedelta] = None,
        key: Optional[str] = None,
        policy: CachePolicy = CachePolicy.CACHE_FIRST,
        value_type: Optional[ValueType] = None,
    ):
        """
        Decorator for caching the results of an async function.

        Args:
            namespace: Namespace for the cached results
            ttl: Time-to-live, or None to use the default TTL
            key: Explicit cache key, or None to derive one from the function and arguments
            policy: Cache policy applied on each call
            value_type: Codec for the stored results

        Returns:
            A decorator function
        """
        def decorator(func: F) -> F:
            if not inspect.iscoroutinefunction(func):
                raise TypeError(f"{func.__qualname__} must be a coroutine function to be cached")

            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                cache_key = key
                if cache_key is None:
                    parts: List[Any] = [func.__module__, func.__qualname__, *args]
                    if kwargs:
                        parts.append(kwargs)
                    cache_key = KeyBuilder.build(*parts)

                result = await self.fetch(
                    cache_key, namespace, lambda: func(*args, **kwargs), ttl, policy, value_type
                )
                if result.has_error:
                    raise CacheError(f"{func.__qualname__} failed: {result.error}")
                return result.data

            return cast(F, wrapper)

        return decorator

    async def put_raw(self, key: str, data: Any, namespace: str,
                      ttl: Optional[timedelta] = None,
                      value_type: Optional[ValueType] = None) -> CacheMetadata:
        """Store a value that did not come through ``fetch``."""
        if ttl is None:
            ttl = self.default_ttl
        return await self.cache_manager.put(
            key, data, namespace, ttl=ttl, source="local", value_type=value_type
        )

    async def remove(self, key: str, namespace: str) -> None:
        await self.cache_manager.remove(key, namespace)

    async def clear_namespace(self, namespace: str) -> None:
        await self.cache_manager.clear_namespace(namespace)

    async def get_cached_keys(self, namespace: str) -> List[str]:
        return await self.cache_manager.get_all_keys(namespace)

    # Priorities and pinning

    async def pin_item(self, key: str, namespace: str) -> bool:
        """
        Exempt a cached entry from size eviction.

        The entry must already be cached. Only its metadata is flagged; item
        priority records are left alone.

        Returns:
            True if the entry is pinned afterwards
        """
        metadata = await self.cache_manager.get_metadata(key, namespace)
        if metadata is None:
            logger.warning(f"Cannot pin {namespace}/{key}: entry is not cached")
            return False
        if not await self.cache_manager.storage.contains(namespace, key):
            logger.warning(f"Cannot pin {namespace}/{key}: payload is missing")
            return False
        if not metadata.is_pinned:
            await self.cache_manager.set_pinned(key, namespace, True)
        logger.info(f"Pinned {namespace}/{key}")
        return True

    async def unpin_item(self, key: str, namespace: str) -> bool:
        """
        Make a pinned entry evictable again.

        Returns:
            False if the entry has no metadata
        """
        updated = await self.cache_manager.set_pinned(key, namespace, False)
        if updated:
            logger.info(f"Unpinned {namespace}/{key}")
        return updated

    async def is_item_pinned(self, key: str, namespace: str) -> bool:
        metadata = await self.cache_manager.get_metadata(key, namespace)
        return metadata is not None and metadata.is_pinned

    async def update_priority(self, item_id: str, level: PriorityLevel) -> CachePriority:
        return await self.priority_registry.update(item_id, level)

    def get_priority(self, item_id: str) -> Optional[CachePriority]:
        return self.priority_registry.get(item_id)

    def is_content_downloaded(self, content_id: str) -> bool:
        """True once a prefetch of ``content_id`` completed and marked it HIGH."""
        priority = self.priority_registry.get(content_id)
        return priority is not None and priority.level == PriorityLevel.HIGH

    def get_downloaded_content(self) -> List[str]:
        return sorted(
            item_id for item_id, priority in self.priority_registry.items().items()
            if priority.level == PriorityLevel.HIGH
        )

    # Prefetching

    def _publish(self, progress: DownloadProgress) -> DownloadProgress:
        self._downloads[progress.content_id] = progress
        self.download_progress.publish(progress)
        return progress

    def get_download_progress(self, content_id: str) -> Optional[DownloadProgress]:
        return self._downloads.get(content_id)

    async def _load_with_retries(self, item_key: str, loader: Loader) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 2):
            try:
                data = await loader()
                if data:
                    return data
                logger.warning(f"Empty content for {item_key}, attempt {attempt}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Loading {item_key} failed on attempt {attempt}: {e}")
            if attempt <= self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)
        if last_error is not None:
            raise last_error
        return None

    async def prefetch_content(
        self,
        content_id: str,
        items: Dict[str, Loader],
        namespace: str = constants.BOOKS_NAMESPACE,
        ttl: timedelta = constants.BOOK_TTL,
    ) -> DownloadProgress:
        """
        Download and cache every item of a piece of content.

        Items are loaded one at a time with retries; progress is published
        on ``download_progress`` after each item whether it succeeded or
        not. The download can be paused, resumed and canceled while it
        runs. On completion the content gets a HIGH priority record.

        Args:
            content_id: Identifier of the content (e.g. a book id)
            items: Mapping of cache key to loader coroutine function
            namespace: Namespace the items are stored in
            ttl: Lifetime of the stored items

        Returns:
            The final progress snapshot
        """
        current = self._downloads.get(content_id)
        if current is not None and not current.is_terminal:
            logger.info(f"Download of {content_id} already in progress")
            return current

        control = _DownloadControl()
        self._download_controls[content_id] = control
        progress = self._publish(DownloadProgress(content_id, total_items=len(items)).start())
        failed_items = 0

        try:
            for item_key, loader in items.items():
                await control.running.wait()
                if control.canceled:
                    break
                try:
                    data = await self._load_with_retries(item_key, loader)
                    if data is None:
                        failed_items += 1
                    else:
                        await self.cache_manager.put(item_key, data, namespace, ttl=ttl, source="prefetch")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failed_items += 1
                    logger.warning(f"Prefetch of {item_key} for {content_id} failed: {e}")
                progress = self._downloads[content_id]
                if progress.is_terminal:
                    break
                progress = self._publish(progress.advance())

            progress = self._downloads[content_id]
            if control.canceled or progress.status == DownloadStatus.CANCELED:
                if not progress.is_terminal:
                    progress = self._publish(progress.cancel())
                logger.info(f"Download of {content_id} canceled")
                return progress

            if progress.status == DownloadStatus.PAUSED:
                progress = progress.resume()
            await self.priority_registry.update(content_id, PriorityLevel.HIGH)
            progress = self._publish(progress.complete())
            logger.info(
                f"Prefetched {content_id}: {len(items) - failed_items}/{len(items)} items cached"
            )
            return progress
        except asyncio.CancelledError:
            progress = self._downloads[content_id]
            if not progress.is_terminal:
                self._publish(progress.cancel())
            raise
        except Exception as e:
            logger.error(f"Download of {content_id} failed: {e}", exc_info=True)
            progress = self._downloads[content_id]
            if not progress.is_terminal:
                progress = self._publish(progress.fail(str(e)))
            return progress
        finally:
            self._download_controls.pop(content_id, None)

    def pause_download(self, content_id: str) -> bool:
        control = self._download_controls.get(content_id)
        progress = self._downloads.get(content_id)
        if control is None or progress is None or progress.status != DownloadStatus.IN_PROGRESS:
            return False
        control.running.clear()
        self._publish(progress.pause())
        logger.info(f"Paused download of {content_id}")
        return True

    def resume_download(self, content_id: str) -> bool:
        control = self._download_controls.get(content_id)
        progress = self._downloads.get(content_id)
        if control is None or progress is None or progress.status != DownloadStatus.PAUSED:
            return False
        self._publish(progress.resume())
        control.running.set()
        logger.info(f"Resumed download of {content_id}")
        return True

    def cancel_download(self, content_id: str) -> bool:
        control = self._download_controls.get(content_id)
        progress = self._downloads.get(content_id)
        if control is None or progress is None or progress.is_terminal:
            return False
        control.canceled = True
        control.running.set()
        self._publish(progress.cancel())
        logger.info(f"Canceled download of {content_id}")
        return True

    async def prefetch_urls(self, urls: Iterable[str],
                            ttl: Optional[timedelta] = None) -> Dict[str, bool]:
        """Preload images concurrently; returns success per URL."""
        if self.image_manager is None:
            raise CacheError("no image cache configured")
        return await self.image_manager.batch_preload_images(urls, ttl=ttl)

    # Specialised caches

    async def get_image(self, url: str, ttl: Optional[timedelta] = None) -> Optional[str]:
        if self.image_manager is None:
            raise CacheError("no image cache configured")
        path = await self.image_manager.get_image(url, ttl)
        return str(path) if path is not None else None

    async def cache_video_metadata(self, video_id: str, metadata: Dict[str, Any]) -> None:
        await self._videos().cache_video_metadata(video_id, metadata)

    async def get_video_metadata(self, video_id: str) -> Optional[Dict[str, Any]]:
        return await self._videos().get_video_metadata(video_id)

    async def cache_playlist(self, playlist_id: str, playlist: Dict[str, Any]) -> None:
        await self._videos().cache_playlist(playlist_id, playlist)

    async def get_playlist(self, playlist_id: str) -> Optional[Dict[str, Any]]:
        return await self._videos().get_playlist(playlist_id)

    def _videos(self) -> VideoCacheManager:
        if self.video_manager is None:
            raise CacheError("no video cache configured")
        return self.video_manager

    async def save_bookmarks(self, book_id: str, bookmarks: List[Dict[str, Any]]) -> None:
        await self.preferences.save_bookmarks(book_id, bookmarks)

    async def get_bookmarks(self, book_id: str) -> List[Dict[str, Any]]:
        return await self.preferences.get_bookmarks(book_id)

    async def save_reading_progress(self, book_id: str, progress: Dict[str, Any]) -> None:
        await self.preferences.save_reading_progress(book_id, progress)

    async def get_reading_progress(self, book_id: str) -> Optional[Dict[str, Any]]:
        return await self.preferences.get_reading_progress(book_id)

    # Statistics and housekeeping

    async def get_cache_size_stats(self) -> Dict[str, Any]:
        """
        Bytes used per namespace, by images and by videos.

        Returns:
            Sizes keyed by namespace plus ``images``, ``videos`` and
            ``total``, and the same values formatted under ``formatted``
        """
        sizes: Dict[str, int] = {}
        for namespace in await self.cache_manager.get_namespaces():
            sizes[namespace] = await self.cache_manager.get_namespace_size(namespace)
        sizes["images"] = await self.image_manager.get_cache_size() if self.image_manager else 0
        sizes["videos"] = await self.video_manager.get_cache_size() if self.video_manager else 0
        sizes["total"] = sum(sizes.values())

        stats: Dict[str, Any] = dict(sizes)
        stats["formatted"] = {name: format_size(size) for name, size in sizes.items()}
        return stats

    async def clear_all_caches(self) -> None:
        """
        Delete all cached content, images and videos.

        User preferences, bookmarks and reading progress are kept.
        """
        for namespace in await self.cache_manager.get_namespaces():
            if namespace != self.preferences.namespace:
                await self.cache_manager.clear_namespace(namespace)
        if self.image_manager is not None:
            await self.image_manager.clear_cache()
        if self.video_manager is not None:
            await self.video_manager.clear_cache()
        await self.priority_registry.clear()
        logger.info("Cleared all caches")

    def get_metrics(self) -> Dict[str, Any]:
        return self.cache_manager.metrics.to_dict()

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.cache_manager.get_stats()
        stats["downloads"] = {cid: p.to_dict() for cid, p in self._downloads.items()}
        return stats
