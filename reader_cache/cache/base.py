"""
Base Cache Module

This module defines the core interfaces and types for the caching system:
the storage backend interface every persistent store implements, the fetch
policies understood by the cache service and the result envelope it returns.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

from reader_cache.cache.metadata import CacheMetadata

V = TypeVar('V')


class CachePolicy(Enum):
    """How a read-through fetch balances the cache against the network."""

    # Serve from cache when fresh, otherwise fetch
    CACHE_FIRST = "cache_first"

    # Always try the network first, fall back to any cached copy
    NETWORK_FIRST = "network_first"

    # Serve cached data (even expired) and refresh in the background
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"

    # Never touch the network
    CACHE_ONLY = "cache_only"

    # Never read the cache, but store the result
    NETWORK_ONLY = "network_only"


class CacheStatus(Enum):
    """State of data returned from the cache service."""
    FRESH = "fresh"
    STALE = "stale"
    LOADING = "loading"
    ERROR = "error"
    MISSING = "missing"


@dataclass
class CacheResult(Generic[V]):
    """
    Result of a cache read or read-through fetch.

    Attributes:
        status: Freshness of the returned data
        data: The value, if any
        metadata: Metadata of the cached entry, if any
        source: Where the value came from ('cache', 'network', 'memory')
        error: Error message when the operation failed
    """
    status: CacheStatus
    data: Optional[V] = None
    metadata: Optional[CacheMetadata] = None
    source: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.data is not None

    @property
    def is_fresh(self) -> bool:
        return self.status == CacheStatus.FRESH

    @property
    def is_stale(self) -> bool:
        return self.status == CacheStatus.STALE

    @property
    def has_error(self) -> bool:
        return self.status == CacheStatus.ERROR

    @classmethod
    def fresh(cls, data: V, metadata: Optional[CacheMetadata] = None, source: str = "cache") -> "CacheResult[V]":
        return cls(CacheStatus.FRESH, data=data, metadata=metadata, source=source)

    @classmethod
    def stale(cls, data: V, metadata: Optional[CacheMetadata] = None, error: Optional[str] = None) -> "CacheResult[V]":
        return cls(CacheStatus.STALE, data=data, metadata=metadata, source="cache", error=error)

    @classmethod
    def missing(cls) -> "CacheResult[V]":
        return cls(CacheStatus.MISSING)

    @classmethod
    def failed(cls, error: str) -> "CacheResult[V]":
        return cls(CacheStatus.ERROR, error=error)


class StorageBackend(ABC):
    """
    Abstract interface for persistent namespaced key/value stores.

    Each namespace is an independent string-to-string map. Implementations
    raise ``StorageError`` on I/O failures; callers decide whether a failure
    is fatal (writes) or a miss (reads).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the name of this storage backend."""
        pass

    async def open(self, namespace: str) -> None:
        """
        Prepare a namespace for use.

        Backends that need no per-namespace setup keep this no-op.
        """
        return None

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[str]:
        """
        Read a stored value.

        Args:
            namespace: Namespace holding the key
            key: Key to read

        Returns:
            Stored string, or None if absent
        """
        pass

    @abstractmethod
    async def put(self, namespace: str, key: str, value: str) -> None:
        """
        Store a value, replacing any previous value for the key.

        Args:
            namespace: Namespace to write into
            key: Key to write
            value: String to store
        """
        pass

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if a value was removed, False if it was already absent
        """
        pass

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        """Delete every key in a namespace."""
        pass

    @abstractmethod
    async def keys(self, namespace: str) -> List[str]:
        """List the keys stored in a namespace."""
        pass

    async def contains(self, namespace: str, key: str) -> bool:
        """Check whether a key is stored in a namespace."""
        return await self.get(namespace, key) is not None

    async def namespaces(self) -> List[str]:
        """List namespaces that currently hold keys."""
        return []

    async def get_many(self, namespace: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        """Read several keys from one namespace."""
        return {key: await self.get(namespace, key) for key in keys}

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> int:
        """Delete several keys; returns how many were present."""
        removed = 0
        for key in keys:
            if await self.delete(namespace, key):
                removed += 1
        return removed

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the backend.

        Returns:
            Dictionary containing backend statistics
        """
        pass
