"""
Common Exception Classes

This module defines custom exceptions used throughout the cache package.
"""

from typing import Optional


class BaseError(Exception):
    """Base class for all custom exceptions."""
    
    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the exception.
        
        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class CacheError(BaseError):
    """Exception raised for cache-related errors."""
    
    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the cache error.
        
        Args:
            message: Error message
            original_exception: Original cache exception
        """
        super().__init__(f"Cache error: {message}", original_exception)


class StorageError(CacheError):
    """Exception raised when a storage backend cannot complete an operation."""
    
    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        """
        Initialize the storage error.
        
        Args:
            message: Error message
            namespace: Namespace the failing operation targeted
            original_exception: Original driver exception
        """
        if namespace:
            message = f"{message} (namespace={namespace})"
        super().__init__(f"storage: {message}", original_exception)
        self.namespace = namespace


class SerializationError(CacheError):
    """Exception raised when a value cannot be encoded or decoded."""
    
    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(f"serialization: {message}", original_exception)


class FetchError(BaseError):
    """Exception raised when a network fetch fails."""
    
    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        original_exception: Optional[Exception] = None
    ):
        """
        Initialize the fetch error.
        
        Args:
            message: Error message
            url: URL that was requested
            status: HTTP status code, if a response was received
            original_exception: Original transport exception
        """
        super().__init__(f"Fetch error: {message}", original_exception)
        self.url = url
        self.status = status


class ConfigurationError(BaseError):
    """Exception raised for configuration-related errors."""
    
    def __init__(self, message: str, config_key: Optional[str] = None):
        """
        Initialize the configuration error.
        
        Args:
            message: Error message
            config_key: The configuration key that caused the error
        """
        super().__init__(f"Configuration error: {message}")
        self.config_key = config_key
