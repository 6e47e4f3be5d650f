"""
Reader Cache

Offline cache layer for a reading application (books, videos, articles).

The package provides:
1. A generic namespaced key/value cache with TTL expiry, access tracking and
   pin-aware LRU eviction, with metadata stored apart from the payload
2. Image and video thumbnail caches backed by files on disk
3. A typed preferences store for bookmarks and reading progress
4. A cache service facade that composes all of the above
"""

__version__ = "1.0.0"
