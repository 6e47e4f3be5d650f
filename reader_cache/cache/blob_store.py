"""
Disk blob store for downloaded images and thumbnails.

Each key maps to one file named after the SHA-256 of the key, keeping the
extension of the original resource so the file can be handed to a viewer
as-is.
"""

import asyncio
import hashlib
import logging
import os
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import urlsplit

import aiofiles
import aiofiles.os

from reader_cache.cache.eviction import EvictionCandidate, select_victims
from reader_cache.common.exceptions import StorageError
from reader_cache.common.logger import log_cache_eviction

logger = logging.getLogger(__name__)

KNOWN_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".svg")


def extension_from_url(url: str, default: str = ".jpg") -> str:
    """File extension of the URL path, or ``default`` when unknown."""
    suffix = os.path.splitext(urlsplit(url).path)[1].lower()
    return suffix if suffix in KNOWN_EXTENSIONS else default


class FileBlobStore:
    """
    Key-addressed files inside one directory.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    async def initialize(self) -> None:
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

    @staticmethod
    def file_stem(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]

    def path_for(self, key: str, extension: str = ".jpg") -> Path:
        return self.directory / f"{self.file_stem(key)}{extension}"

    def _candidates(self, key: str) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(self.directory.glob(f"{self.file_stem(key)}.*"))

    async def get_file(self, key: str) -> Optional[Path]:
        """Path of the stored file for ``key``, if one exists."""
        for candidate in self._candidates(key):
            if await aiofiles.os.path.isfile(candidate):
                return candidate
        return None

    async def put(self, key: str, data: bytes, extension: str = ".jpg") -> Path:
        """
        Write the blob for ``key``, replacing any previous file.

        Raises:
            StorageError: If the file cannot be written
        """
        path = self.path_for(key, extension)
        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            for stale in self._candidates(key):
                if stale != path:
                    await aiofiles.os.remove(stale)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error(f"Failed to write blob {path}: {e}")
            raise StorageError(f"write of {path.name} failed", str(self.directory), e) from e
        return path

    async def read(self, key: str) -> Optional[bytes]:
        path = await self.get_file(key)
        if path is None:
            return None
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.warning(f"Failed to read blob {path}: {e}")
            return None

    async def remove(self, key: str) -> bool:
        removed = False
        for path in self._candidates(key):
            try:
                await aiofiles.os.remove(path)
                removed = True
            except FileNotFoundError:
                continue
        return removed

    async def list_files(self) -> List[Path]:
        return await list_files(self.directory)

    async def empty(self) -> int:
        """Delete every stored file; returns the number deleted."""
        removed = 0
        for path in await self.list_files():
            try:
                await aiofiles.os.remove(path)
                removed += 1
            except OSError as e:
                logger.warning(f"Could not delete {path}: {e}")
        return removed

    async def size(self) -> int:
        return await directory_size(self.directory)


def _walk_files(root: Path) -> List[Path]:
    return [p for p in root.rglob("*") if p.is_file()]


async def list_files(directory: Union[str, Path]) -> List[Path]:
    """Every regular file under ``directory``, recursively."""
    root = Path(directory)
    if not await aiofiles.os.path.isdir(root):
        return []
    return await asyncio.to_thread(_walk_files, root)


async def directory_size(directory: Union[str, Path]) -> int:
    total = 0
    for path in await list_files(directory):
        try:
            total += (await aiofiles.os.stat(path)).st_size
        except OSError:
            continue
    return total


async def enforce_directory_limit(directory: Union[str, Path], max_size_bytes: int) -> int:
    """
    Delete files under ``directory`` until its total size fits the budget.

    Files are removed least recently accessed first (filesystem access
    time) through the shared eviction routine.

    Returns:
        Number of files deleted
    """
    root = Path(directory)
    candidates = []
    total = 0
    for path in await list_files(root):
        try:
            stat = await aiofiles.os.stat(path)
        except OSError:
            continue
        total += stat.st_size
        candidates.append(EvictionCandidate(
            key=str(path), size_bytes=stat.st_size, last_access=stat.st_atime, ref=path
        ))

    removed = 0
    for victim in select_victims(candidates, total, max_size_bytes):
        try:
            await aiofiles.os.remove(victim.ref)
            total -= victim.size_bytes
            removed += 1
            log_cache_eviction(victim.ref.name, str(root), "size limit")
        except OSError as e:
            logger.warning(f"Could not evict {victim.ref}: {e}")

    if removed:
        logger.info(f"Evicted {removed} files from {root}, now {total} bytes")
    return removed
