"""
Key Builder Module

This module provides utilities for creating standardized cache keys,
ensuring consistent key structure and handling complex parameters appropriately.
"""

import hashlib
import json
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

from reader_cache.common import constants


class KeyBuilder:
    """
    Utility for building standardized cache keys.

    Resource keys are ``<type>_<id>`` with an optional 8-character hash of
    the request parameters; metadata records are stored under
    ``<namespace>:<key>``.
    """

    @staticmethod
    def build(*parts: Any, namespace: Optional[str] = None,
              version: Optional[str] = None) -> str:
        """
        Build a cache key from parts.

        Args:
            *parts: Parts of the key, will be converted to strings and joined
            namespace: Optional namespace for the key
            version: Optional version string for the key

        Returns:
            A colon-separated key string
        """
        processed_parts = []

        if namespace:
            processed_parts.append(str(namespace))

        for part in parts:
            if part is None:
                processed_parts.append("null")
            elif isinstance(part, (int, float, bool, str)):
                processed_parts.append(str(part))
            elif isinstance(part, (dict, list, tuple, set)):
                processed_parts.append(KeyBuilder.params_hash(part, length=10))
            else:
                class_name = part.__class__.__name__
                str_value = str(part)
                if len(str_value) > 40:
                    str_value = hashlib.sha256(str_value.encode()).hexdigest()[:10]
                processed_parts.append(f"{class_name}:{str_value}")

        if version:
            processed_parts.append(f"v{version}")

        return ":".join(processed_parts)

    @staticmethod
    def params_hash(params: Any, length: int = 8) -> str:
        """Short, order-independent SHA-256 digest of request parameters."""
        if isinstance(params, set):
            params = sorted(params, key=str)
        params_json = json.dumps(params, sort_keys=True, default=str)
        return hashlib.sha256(params_json.encode("utf-8")).hexdigest()[:length]

    @staticmethod
    def key_prefix(resource_type: str) -> str:
        return f"{resource_type.lower()}_"

    @staticmethod
    def resource_key(resource_type: str, resource_id: Union[str, int],
                     params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build a key for a resource such as a book, chapter or video.

        Args:
            resource_type: Resource type (e.g., 'book', 'chapter')
            resource_id: ID of the resource
            params: Optional request parameters folded into the key

        Returns:
            A key like ``book_42`` or ``book_42_1a2b3c4d``
        """
        key = f"{KeyBuilder.key_prefix(resource_type)}{resource_id}"
        if params:
            key = f"{key}_{KeyBuilder.params_hash(params)}"
        return key

    @staticmethod
    def extract_id(key: str) -> str:
        """Strip a known resource prefix from a key, returning the bare id."""
        for prefix in constants.RESOURCE_KEY_PREFIXES:
            if key.startswith(prefix):
                return key[len(prefix):]
        return key

    @staticmethod
    def metadata_key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    @staticmethod
    def metadata_prefix(namespace: str) -> str:
        return f"{namespace}:"

    @staticmethod
    def split_metadata_key(metadata_key: str) -> tuple:
        """Split ``namespace:key`` at the first colon."""
        namespace, _, key = metadata_key.partition(":")
        return namespace, key

    @staticmethod
    def image_key(url: str) -> str:
        """
        Normalize an image URL into its cache key.

        The query string and fragment are dropped so cache-busting parameters
        collapse onto one entry: ``scheme://host/path``.
        """
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return url.split("?", 1)[0].split("#", 1)[0]
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        return f"{parts.scheme}://{host}{parts.path}"

    @staticmethod
    def thumbnail_key(video_id: str) -> str:
        return f"{constants.THUMBNAIL_KEY_PREFIX}{video_id}"

    @staticmethod
    def bookmarks_key(book_id: str) -> str:
        return f"{constants.BOOKMARKS_KEY_PREFIX}{book_id}"

    @staticmethod
    def reading_progress_key(book_id: str) -> str:
        return f"{constants.READING_PROGRESS_KEY_PREFIX}{book_id}"
