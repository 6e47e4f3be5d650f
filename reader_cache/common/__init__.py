"""
Common Components for Reader Cache

Infrastructure shared by the cache package:
1. Logging - Centralized logging configuration
2. Error Handling - Exception taxonomy
3. Configuration - Typed settings loaded from files and the environment
4. Serialization - JSON-safe conversion and value type strategies
"""

from reader_cache.common.logger import app_logger
from reader_cache.common.exceptions import (
    BaseError, CacheError, StorageError, SerializationError,
    FetchError, ConfigurationError
)

__all__ = [
    'app_logger',
    'BaseError', 'CacheError', 'StorageError', 'SerializationError',
    'FetchError', 'ConfigurationError',
]
