"""
Redis Storage Backend Module

This module implements a ``StorageBackend`` on Redis. Each namespace is one
Redis hash named ``<key_prefix><namespace>``, so clearing or enumerating a
namespace never scans the keyspace.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from reader_cache.cache.base import StorageBackend
from reader_cache.common.config import RedisConfig
from reader_cache.common.exceptions import StorageError

# Setup logging
logger = logging.getLogger(__name__)


class RedisStorageBackend(StorageBackend):
    """
    Redis storage backend implementation.

    Features:
    - Shared cache across processes on one device or host
    - Namespace isolation through one hash per namespace
    - Prefixing so several applications can share a Redis database
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "reader_cache:",
        name: str = "redis"
    ):
        """
        Initialize the Redis storage backend.

        Args:
            redis_client: Optional existing asyncio Redis client to use
            host: Redis server hostname (default: "localhost")
            port: Redis server port (default: 6379)
            db: Redis database number (default: 0)
            password: Redis password (optional)
            key_prefix: Prefix for all Redis keys (default: "reader_cache:")
            name: Name for this backend (default: "redis")
        """
        self._key_prefix = key_prefix
        self._name = name

        if redis_client is not None:
            self._redis = redis_client
        else:
            self._redis = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True
            )

        self._hits = 0
        self._misses = 0

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisStorageBackend":
        client = redis.Redis.from_url(
            config.connection_string,
            socket_connect_timeout=config.connection_timeout,
            decode_responses=True,
        )
        return cls(redis_client=client, key_prefix=config.key_prefix)

    @property
    def name(self) -> str:
        """Get the name of this storage backend."""
        return self._name

    def _build_key(self, namespace: str) -> str:
        """
        Build the Redis key of a namespace hash.

        Args:
            namespace: Cache namespace

        Returns:
            The prefixed Redis key
        """
        return f"{self._key_prefix}{namespace}"

    @staticmethod
    def _decode(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def get(self, namespace: str, key: str) -> Optional[str]:
        try:
            value = await self._redis.hget(self._build_key(namespace), key)
        except RedisError as e:
            logger.error(f"Redis error in get: {e}")
            raise StorageError(f"get {key} failed", namespace, e) from e

        if value is None:
            self._misses += 1
            return None
        self._hits += 1
        return self._decode(value)

    async def put(self, namespace: str, key: str, value: str) -> None:
        try:
            await self._redis.hset(self._build_key(namespace), key, value)
        except RedisError as e:
            logger.error(f"Redis error in put: {e}")
            raise StorageError(f"put {key} failed", namespace, e) from e

    async def delete(self, namespace: str, key: str) -> bool:
        try:
            return bool(await self._redis.hdel(self._build_key(namespace), key))
        except RedisError as e:
            logger.error(f"Redis error in delete: {e}")
            raise StorageError(f"delete {key} failed", namespace, e) from e

    async def clear(self, namespace: str) -> None:
        try:
            await self._redis.delete(self._build_key(namespace))
        except RedisError as e:
            logger.error(f"Redis error in clear: {e}")
            raise StorageError("clear failed", namespace, e) from e

    async def keys(self, namespace: str) -> List[str]:
        try:
            keys = await self._redis.hkeys(self._build_key(namespace))
        except RedisError as e:
            logger.error(f"Redis error in keys: {e}")
            raise StorageError("listing keys failed", namespace, e) from e
        return [self._decode(k) for k in keys]

    async def contains(self, namespace: str, key: str) -> bool:
        try:
            return bool(await self._redis.hexists(self._build_key(namespace), key))
        except RedisError as e:
            logger.error(f"Redis error in contains: {e}")
            raise StorageError(f"contains {key} failed", namespace, e) from e

    async def namespaces(self) -> List[str]:
        try:
            keys = await self._redis.keys(f"{self._key_prefix}*")
        except RedisError as e:
            logger.error(f"Redis error in namespaces: {e}")
            raise StorageError("listing namespaces failed", None, e) from e
        return [self._decode(k)[len(self._key_prefix):] for k in keys]

    async def get_many(self, namespace: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)
        if not keys:
            return {}
        try:
            values = await self._redis.hmget(self._build_key(namespace), keys)
        except RedisError as e:
            logger.error(f"Redis error in get_many: {e}")
            raise StorageError("get_many failed", namespace, e) from e
        return {key: self._decode(value) for key, value in zip(keys, values)}

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        try:
            return int(await self._redis.hdel(self._build_key(namespace), *keys))
        except RedisError as e:
            logger.error(f"Redis error in delete_many: {e}")
            raise StorageError("delete_many failed", namespace, e) from e

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the Redis backend.

        Returns:
            Dictionary containing backend statistics
        """
        try:
            info = await self._redis.info()
            total = self._hits + self._misses
            return {
                'backend': 'redis',
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
                'memory_used': info.get('used_memory', 0),
                'total_connections': info.get('total_connections_received', 0),
            }
        except RedisError as e:
            logger.error(f"Redis error in get_stats: {e}")
            return {
                'backend': 'redis',
                'error': str(e)
            }
