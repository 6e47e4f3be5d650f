"""
Network fetch capability used by the image and video caches.

The caches depend only on the ``Fetcher`` protocol: an async ``fetch(url)``
returning the status code and raw body. ``HttpFetcher`` implements it with
aiohttp; tests substitute their own fetchers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import aiohttp

from reader_cache.common.config import FetchConfig
from reader_cache.common.exceptions import FetchError

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 200

    @property
    def content_type(self) -> Optional[str]:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value.split(";", 1)[0].strip()
        return None


class Fetcher(Protocol):
    async def fetch(self, url: str) -> FetchResponse:
        ...

    async def close(self) -> None:
        ...


class HttpFetcher:
    """
    aiohttp based fetcher.

    The session is created lazily on first use and shared by all requests.
    Non-200 responses are returned as-is; transport failures and timeouts
    raise ``FetchError``.
    """

    def __init__(self, config: Optional[FetchConfig] = None):
        self.config = config or FetchConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._initialize_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None and not self._session.closed:
            return self._session

        async with self._initialize_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                    headers={"User-Agent": self.config.user_agent},
                )
        return self._session

    async def fetch(self, url: str) -> FetchResponse:
        """
        Download a URL.

        Args:
            url: Absolute URL to fetch

        Returns:
            Status code, body and headers of the response

        Raises:
            FetchError: On connection errors or timeouts
        """
        session = await self._ensure_session()
        try:
            async with session.get(url) as response:
                body = await response.read()
                if response.status != 200:
                    logger.warning(f"HTTP {response.status} fetching {url}")
                return FetchResponse(
                    status=response.status,
                    body=body,
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise FetchError("request timed out", url, original_exception=e) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"request failed: {e}", url, original_exception=e) from e

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
