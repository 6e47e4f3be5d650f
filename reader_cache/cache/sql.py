"""
SQL Storage Backend Module

Durable ``StorageBackend`` on SQLAlchemy's asyncio extension. The default
URL targets a local SQLite file through aiosqlite; every namespace shares
one ``cache_records`` table keyed by (namespace, key).
"""

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import Column, DateTime, String, Text, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from reader_cache.cache.base import StorageBackend
from reader_cache.common.config import StorageConfig
from reader_cache.common.exceptions import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///reader_cache.db"


class CacheRecord(Base):
    """One stored value: a payload or a metadata record."""
    __tablename__ = "cache_records"

    namespace = Column(String(255), primary_key=True)
    key = Column(String(1024), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow,
                        onupdate=datetime.datetime.utcnow, nullable=False)


def get_engine_kwargs(database_url: str, echo: bool = False) -> Dict[str, Any]:
    """
    Get engine keyword arguments based on database type.
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise each checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    elif database_url.startswith("postgresql"):
        kwargs.update({"pool_pre_ping": True, "pool_recycle": 300})
    return kwargs


class SQLStorageBackend(StorageBackend):
    """
    SQLAlchemy storage backend.

    Tables are created lazily on first use. Driver errors are wrapped in
    ``StorageError``.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False,
                 name: str = "sql"):
        self._name = name
        self.database_url = database_url
        self.engine = create_async_engine(database_url, **get_engine_kwargs(database_url, echo))
        self.session_factory = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._schema_ready = False

    @classmethod
    def from_config(cls, config: StorageConfig) -> "SQLStorageBackend":
        return cls(database_url=config.database_url, echo=config.echo)

    @property
    def name(self) -> str:
        return self._name

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create cache tables: {e}")
            raise StorageError("schema creation failed", None, e) from e
        self._schema_ready = True
        logger.info(f"Cache tables ready on {self.engine.url.render_as_string(hide_password=True)}")

    async def open(self, namespace: str) -> None:
        await self._ensure_schema()

    async def get(self, namespace: str, key: str) -> Optional[str]:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                record = await session.get(CacheRecord, (namespace, key))
                return record.value if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Database error reading {namespace}/{key}: {e}")
            raise StorageError(f"get {key} failed", namespace, e) from e

    async def put(self, namespace: str, key: str, value: str) -> None:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.merge(CacheRecord(namespace=namespace, key=key, value=value))
        except SQLAlchemyError as e:
            logger.error(f"Database error writing {namespace}/{key}: {e}")
            raise StorageError(f"put {key} failed", namespace, e) from e

    async def delete(self, namespace: str, key: str) -> bool:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(CacheRecord).where(
                            CacheRecord.namespace == namespace,
                            CacheRecord.key == key,
                        )
                    )
                    return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting {namespace}/{key}: {e}")
            raise StorageError(f"delete {key} failed", namespace, e) from e

    async def delete_many(self, namespace: str, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(CacheRecord).where(
                            CacheRecord.namespace == namespace,
                            CacheRecord.key.in_(keys),
                        )
                    )
                    return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting from {namespace}: {e}")
            raise StorageError("delete_many failed", namespace, e) from e

    async def clear(self, namespace: str) -> None:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(CacheRecord).where(CacheRecord.namespace == namespace)
                    )
        except SQLAlchemyError as e:
            logger.error(f"Database error clearing {namespace}: {e}")
            raise StorageError("clear failed", namespace, e) from e

    async def keys(self, namespace: str) -> List[str]:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CacheRecord.key).where(CacheRecord.namespace == namespace)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Database error listing {namespace}: {e}")
            raise StorageError("listing keys failed", namespace, e) from e

    async def namespaces(self) -> List[str]:
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(CacheRecord.namespace).distinct())
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Database error listing namespaces: {e}")
            raise StorageError("listing namespaces failed", None, e) from e

    async def get_many(self, namespace: str, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)
        if not keys:
            return {}
        await self._ensure_schema()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CacheRecord.key, CacheRecord.value).where(
                        CacheRecord.namespace == namespace,
                        CacheRecord.key.in_(keys),
                    )
                )
                found = {record_key: value for record_key, value in result}
        except SQLAlchemyError as e:
            logger.error(f"Database error reading from {namespace}: {e}")
            raise StorageError("get_many failed", namespace, e) from e
        return {key: found.get(key) for key in keys}

    async def close(self) -> None:
        await self.engine.dispose()

    async def get_stats(self) -> Dict[str, Any]:
        try:
            await self._ensure_schema()
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CacheRecord.namespace, func.count()).group_by(CacheRecord.namespace)
                )
                counts = {row[0]: row[1] for row in result}
        except (SQLAlchemyError, StorageError) as e:
            logger.error(f"Database error in get_stats: {e}")
            return {"backend": "sql", "error": str(e)}
        return {"backend": "sql", "namespaces": counts, "records": sum(counts.values())}
