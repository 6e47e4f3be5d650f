"""
Preferences Cache Module

User preferences, bookmarks and reading progress stored through
``CacheManager`` in the preferences namespace. Entries never expire.
"""

import logging
from typing import Any, Dict, List, Optional

from reader_cache.cache.key_builder import KeyBuilder
from reader_cache.cache.manager import CacheManager
from reader_cache.common import constants
from reader_cache.common.serialization import ValueType

logger = logging.getLogger(__name__)


class PreferencesCacheManager:
    """
    Typed preference storage.

    Values are written with the codec matching their Python type and read
    back with the codec the caller asks for, so ``get_bool`` on a stored
    ``"true"`` string still yields ``True``.
    """

    def __init__(self, cache_manager: CacheManager, namespace: str = constants.PREFERENCES_NAMESPACE):
        self.cache_manager = cache_manager
        self.namespace = namespace

    async def initialize(self) -> None:
        await self.cache_manager.storage.open(self.namespace)

    async def set_preference(self, key: str, value: Any, value_type: Optional[ValueType] = None) -> None:
        """
        Store a preference.

        Args:
            key: Preference name
            value: Value to store
            value_type: Codec to use; inferred from the value when omitted

        Raises:
            StorageError: If the value could not be written
        """
        await self.cache_manager.put(
            key, value, self.namespace, ttl=None, source="local", value_type=value_type
        )

    async def get_preference(self, key: str, value_type: ValueType = ValueType.ANY,
                             default: Any = None) -> Any:
        """
        Read a preference decoded as ``value_type``.

        Returns:
            The stored value, or ``default`` when absent or not decodable
        """
        requested = None if value_type == ValueType.ANY else value_type
        value = await self.cache_manager.get(key, self.namespace, value_type=requested)
        return default if value is None else value

    async def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return await self.get_preference(key, ValueType.STRING, default)

    async def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        return await self.get_preference(key, ValueType.BOOL, default)

    async def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        return await self.get_preference(key, ValueType.INT, default)

    async def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return await self.get_preference(key, ValueType.FLOAT, default)

    async def get_json(self, key: str, default: Any = None) -> Any:
        return await self.get_preference(key, ValueType.JSON, default)

    async def remove_preference(self, key: str) -> None:
        await self.cache_manager.remove(key, self.namespace)

    # Bookmarks

    async def save_bookmarks(self, book_id: str, bookmarks: List[Dict[str, Any]]) -> None:
        await self.set_preference(KeyBuilder.bookmarks_key(book_id), bookmarks, ValueType.JSON)

    async def get_bookmarks(self, book_id: str) -> List[Dict[str, Any]]:
        bookmarks = await self.get_json(KeyBuilder.bookmarks_key(book_id))
        return bookmarks if isinstance(bookmarks, list) else []

    async def remove_bookmarks(self, book_id: str) -> None:
        await self.remove_preference(KeyBuilder.bookmarks_key(book_id))

    async def get_all_bookmark_ids(self) -> List[str]:
        return await self._ids_with_prefix(constants.BOOKMARKS_KEY_PREFIX)

    async def clear_all_bookmarks(self) -> int:
        return await self._clear_prefix(constants.BOOKMARKS_KEY_PREFIX)

    # Reading progress

    async def save_reading_progress(self, book_id: str, progress: Dict[str, Any]) -> None:
        await self.set_preference(KeyBuilder.reading_progress_key(book_id), progress, ValueType.JSON)

    async def get_reading_progress(self, book_id: str) -> Optional[Dict[str, Any]]:
        progress = await self.get_json(KeyBuilder.reading_progress_key(book_id))
        return progress if isinstance(progress, dict) else None

    async def remove_reading_progress(self, book_id: str) -> None:
        await self.remove_preference(KeyBuilder.reading_progress_key(book_id))

    async def get_all_reading_progress_ids(self) -> List[str]:
        return await self._ids_with_prefix(constants.READING_PROGRESS_KEY_PREFIX)

    async def clear_all_reading_progress(self) -> int:
        return await self._clear_prefix(constants.READING_PROGRESS_KEY_PREFIX)

    # Whole namespace

    async def _keys_with_prefix(self, prefix: str) -> List[str]:
        keys = await self.cache_manager.get_all_keys(self.namespace)
        return [key for key in keys if key.startswith(prefix)]

    async def _ids_with_prefix(self, prefix: str) -> List[str]:
        return sorted(key[len(prefix):] for key in await self._keys_with_prefix(prefix))

    async def _clear_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``, payload and metadata."""
        keys = await self._keys_with_prefix(prefix)
        for key in keys:
            await self.cache_manager.remove(key, self.namespace)
        logger.info(f"Removed {len(keys)} '{prefix}' entries from {self.namespace}")
        return len(keys)

    async def clear_all(self) -> None:
        await self.cache_manager.clear_namespace(self.namespace)

    async def get_total_size(self) -> int:
        return await self.cache_manager.get_namespace_size(self.namespace)

    async def get_access_count(self, key: str) -> int:
        metadata = await self.cache_manager.get_metadata(key, self.namespace)
        return metadata.access_count if metadata else 0
