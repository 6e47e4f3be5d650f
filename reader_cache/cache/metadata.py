"""
Cache Metadata Module

This module provides the metadata record kept for every cached payload and
the ``CacheEntry`` envelope returned by "get with metadata" reads.

Metadata is persisted as JSON under ``"{namespace}:{key}"`` in the metadata
namespace, separately from the payload itself.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Dict, Generic, Optional, TypeVar

from reader_cache.common.constants import DEFAULT_TTL, RTL_LANGUAGES
from reader_cache.common.exceptions import SerializationError
from reader_cache.common.utils import now_millis

T = TypeVar('T')

DEFAULT_SOURCE = "network"

_FIELD_NAMES = {
    "original_key": "originalKey",
    "namespace": "namespace",
    "created_at_millis": "createdAtMillis",
    "ttl_millis": "ttlMillis",
    "size_bytes": "sizeBytes",
    "language": "language",
    "direction": "direction",
    "source": "source",
    "content_hash": "contentHash",
    "access_count": "accessCount",
    "last_access_millis": "lastAccessMillis",
    "properties": "properties",
    "value_type": "valueType",
    "is_pinned": "isPinned",
    "etag": "etag",
    "last_modified": "lastModified",
}


def text_direction(language: Optional[str]) -> Optional[str]:
    """Return "rtl" or "ltr" for a language code, None when unknown."""
    if not language:
        return None
    return "rtl" if language.lower().split("-")[0] in RTL_LANGUAGES else "ltr"


def ttl_to_millis(ttl: Optional[timedelta]) -> Optional[int]:
    if ttl is None:
        return None
    return int(ttl.total_seconds() * 1000)


@dataclass
class CacheMetadata:
    """
    Describes one cached payload.

    Attributes:
        original_key: Key of the payload inside its namespace
        namespace: Namespace holding the payload
        created_at_millis: Creation time (epoch milliseconds)
        ttl_millis: Lifetime in milliseconds, None for entries that never expire
        size_bytes: UTF-8 length of the stored payload
        language: Content language code, if known
        direction: "rtl" or "ltr", derived from the language
        source: Provenance tag ("network", "prefetch", ...)
        content_hash: SHA-256 of the JSON form of the payload
        access_count: Number of reads that updated access statistics
        last_access_millis: Time of the last such read
        properties: Free-form extension values
        value_type: Codec tag the payload was written with
        is_pinned: Whether the entry is exempt from size eviction
    """
    original_key: str
    namespace: str
    created_at_millis: int = field(default_factory=now_millis)
    ttl_millis: Optional[int] = field(default_factory=lambda: ttl_to_millis(DEFAULT_TTL))
    size_bytes: int = 0
    language: Optional[str] = None
    direction: Optional[str] = None
    source: str = DEFAULT_SOURCE
    content_hash: Optional[str] = None
    access_count: int = 0
    last_access_millis: Optional[int] = None
    properties: Optional[Dict[str, Any]] = None
    value_type: Optional[str] = None
    is_pinned: bool = False
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def __post_init__(self):
        if self.direction is None:
            self.direction = text_direction(self.language)
        if self.last_access_millis is None:
            self.last_access_millis = self.created_at_millis

    @property
    def storage_key(self) -> str:
        """Key of this record inside the metadata namespace."""
        return f"{self.namespace}:{self.original_key}"

    @property
    def expires_at_millis(self) -> Optional[int]:
        if self.ttl_millis is None:
            return None
        return self.created_at_millis + self.ttl_millis

    def is_expired(self, now: Optional[int] = None) -> bool:
        """
        Check whether the entry has outlived its TTL.

        Args:
            now: Current time in epoch milliseconds (defaults to the wall clock)

        Returns:
            True once ``now`` is past ``created_at_millis + ttl_millis``
        """
        expires_at = self.expires_at_millis
        if expires_at is None:
            return False
        return (now if now is not None else now_millis()) > expires_at

    def remaining_ttl_millis(self, now: Optional[int] = None) -> Optional[int]:
        expires_at = self.expires_at_millis
        if expires_at is None:
            return None
        return max(0, expires_at - (now if now is not None else now_millis()))

    def age_millis(self, now: Optional[int] = None) -> int:
        return (now if now is not None else now_millis()) - self.created_at_millis

    def record_access(self, now: Optional[int] = None) -> "CacheMetadata":
        """Return a copy with the access count bumped and last access refreshed."""
        now = now if now is not None else now_millis()
        return replace(
            self,
            access_count=self.access_count + 1,
            last_access_millis=max(now, self.last_access_millis or 0),
        )

    def copy_with(self, **changes: Any) -> "CacheMetadata":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {json_name: getattr(self, attr) for attr, json_name in _FIELD_NAMES.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheMetadata":
        """
        Build metadata from its JSON form.

        Raises:
            SerializationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise SerializationError(f"metadata must be an object, got {type(data).__name__}")
        try:
            kwargs = {
                attr: data[json_name]
                for attr, json_name in _FIELD_NAMES.items()
                if json_name in data
            }
            metadata = cls(**kwargs)
            int(metadata.created_at_millis)
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"malformed metadata record: {e}", e) from e
        return metadata

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> "CacheMetadata":
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise SerializationError("metadata record is not valid JSON", e) from e
        return cls.from_dict(data)


@dataclass
class CacheEntry(Generic[T]):
    """
    A cached value paired with its metadata.

    ``metadata`` is None for payloads stored without a metadata record.
    """
    data: Optional[T]
    metadata: Optional[CacheMetadata] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        return self.metadata is not None and self.metadata.is_expired(now)

    @property
    def is_valid(self) -> bool:
        return self.data is not None and not self.is_expired()
