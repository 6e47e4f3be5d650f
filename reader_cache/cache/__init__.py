"""
Offline Content Cache

This package provides the reader's offline cache: a namespaced key/value
cache with metadata-driven TTL expiry and pin-aware LRU eviction over
pluggable storage backends (memory, SQLite through SQLAlchemy, Redis), plus
specialised caches for images, videos and user preferences and a service
facade tying them together.
"""

from reader_cache.cache.base import (
    CachePolicy,
    CacheResult,
    CacheStatus,
    StorageBackend,
)
from reader_cache.cache.blob_store import FileBlobStore
from reader_cache.cache.eviction import EvictionCandidate, select_victims
from reader_cache.cache.fetcher import Fetcher, FetchResponse, HttpFetcher
from reader_cache.cache.image import ImageCacheManager
from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.memory import MemoryCacheTier, MemoryStorageBackend
from reader_cache.cache.metadata import CacheEntry, CacheMetadata
from reader_cache.cache.metrics import CacheMetrics
from reader_cache.cache.preferences import PreferencesCacheManager
from reader_cache.cache.priority import CachePriority, PriorityLevel, PriorityRegistry
from reader_cache.cache.progress import DownloadProgress, DownloadStatus, ProgressStream
from reader_cache.cache.redis import RedisStorageBackend
from reader_cache.cache.service import CacheService, create_storage
from reader_cache.cache.sql import SQLStorageBackend
from reader_cache.cache.video import VideoCacheManager

# Public API
__all__ = [
    # Results and policies
    'CachePolicy',
    'CacheResult',
    'CacheStatus',
    'CacheEntry',
    'CacheMetadata',

    # Storage
    'StorageBackend',
    'MemoryStorageBackend',
    'SQLStorageBackend',
    'RedisStorageBackend',
    'MemoryCacheTier',
    'FileBlobStore',
    'create_storage',

    # Managers
    'CacheManager',
    'ImageCacheManager',
    'VideoCacheManager',
    'PreferencesCacheManager',
    'CacheService',

    # Priorities and eviction
    'CachePriority',
    'PriorityLevel',
    'PriorityRegistry',
    'EvictionCandidate',
    'select_victims',

    # Network
    'Fetcher',
    'FetchResponse',
    'HttpFetcher',

    # Utilities
    'KeyBuilder',
    'CacheMetrics',
    'DownloadProgress',
    'DownloadStatus',
    'ProgressStream',
]
