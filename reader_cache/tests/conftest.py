"""
Shared fixtures for the cache test suite.
"""

from typing import Dict, List, Optional

import pytest

from reader_cache.cache.fetcher import FetchResponse
from reader_cache.cache.manager import CacheManager
from reader_cache.cache.memory import MemoryStorageBackend
from reader_cache.cache.priority import PriorityRegistry
from reader_cache.common.exceptions import FetchError
from reader_cache.common.utils import now_millis

HOUR_MILLIS = 60 * 60 * 1000
DAY_MILLIS = 24 * HOUR_MILLIS


class FakeClock:
    """Manually advanced millisecond clock, starting at the wall clock."""

    def __init__(self, start: Optional[int] = None):
        self.now = start if start is not None else now_millis()

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


class FakeFetcher:
    """Fetcher returning canned responses and recording every request."""

    def __init__(self, body: bytes = b"\x89PNG fake image bytes", status: int = 200):
        self.body = body
        self.status = status
        self.responses: Dict[str, FetchResponse] = {}
        self.calls: List[str] = []
        self.failures_remaining = 0
        self.closed = False

    async def fetch(self, url: str) -> FetchResponse:
        self.calls.append(url)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise FetchError("connection reset", url)
        if url in self.responses:
            return self.responses[url]
        return FetchResponse(status=self.status, body=self.body)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def storage():
    return MemoryStorageBackend()


@pytest.fixture
def registry(storage, clock):
    return PriorityRegistry(storage, clock=clock)


@pytest.fixture
def manager(storage, registry, clock):
    return CacheManager(storage, priority_registry=registry, clock=clock)
