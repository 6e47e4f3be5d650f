"""
Cache constants: namespace names, key prefixes, TTLs and size budgets.
"""

from datetime import timedelta

# Namespaces
METADATA_NAMESPACE = "cache_metadata"
PRIORITY_NAMESPACE = "cache_priorities"
BOOKS_NAMESPACE = "books_box"
VIDEO_METADATA_NAMESPACE = "video_metadata_cache"
PLAYLIST_NAMESPACE = "playlist_cache"
THUMBNAIL_METADATA_NAMESPACE = "thumbnail_metadata_box"
IMAGE_METADATA_NAMESPACE = "image_metadata_box"
PREFERENCES_NAMESPACE = "preferences"
SETTINGS_NAMESPACE = "settings_box"

# Key prefixes
BOOK_KEY_PREFIX = "book_"
CHAPTER_KEY_PREFIX = "chapter_"
VIDEO_KEY_PREFIX = "video_"
PLAYLIST_KEY_PREFIX = "playlist_"
IMAGE_KEY_PREFIX = "image_"
THUMBNAIL_KEY_PREFIX = "thumbnail:"
THUMBNAIL_FILE_PREFIX = "thumbnail_"
BOOKMARKS_KEY_PREFIX = "bookmarks_"
READING_PROGRESS_KEY_PREFIX = "reading_progress_"

RESOURCE_KEY_PREFIXES = (
    BOOK_KEY_PREFIX,
    CHAPTER_KEY_PREFIX,
    VIDEO_KEY_PREFIX,
    PLAYLIST_KEY_PREFIX,
    IMAGE_KEY_PREFIX,
)

# Time-to-live values
DEFAULT_TTL = timedelta(days=7)
BOOK_TTL = timedelta(days=30)
VIDEO_TTL = timedelta(days=14)
IMAGE_TTL = timedelta(days=30)
THUMBNAIL_TTL = timedelta(days=14)

# Size budgets in bytes
MB = 1024 * 1024
MAX_CACHE_SIZE = 200 * MB
MAX_IMAGE_CACHE_SIZE = 50 * MB
MAX_VIDEO_CACHE_SIZE = 500 * MB

# L1 memory tier
MEMORY_TIER_MAX_SIZE = 100 * MB
MEMORY_TIER_TRIM_RATIO = 0.7
MEMORY_TIER_TTL = timedelta(hours=8)

# Maintenance and transport
MAINTENANCE_INTERVAL = timedelta(hours=1)
NETWORK_TIMEOUT = timedelta(seconds=15)

RTL_LANGUAGES = frozenset({"ur", "ar", "he", "fa", "ku", "ps", "sd", "yi"})

THUMBNAIL_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
