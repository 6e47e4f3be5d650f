"""
Download progress tracking.

``DownloadProgress`` is the per-content state machine used by prefetching;
``ProgressStream`` fans progress values out to any number of async
listeners.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import AsyncIterator, Generic, List, Optional, TypeVar

from reader_cache.common.exceptions import CacheError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DownloadStatus(Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DownloadStatus.COMPLETED, DownloadStatus.CANCELED, DownloadStatus.FAILED})

_ALLOWED_TRANSITIONS = {
    DownloadStatus.QUEUED: {DownloadStatus.IN_PROGRESS, DownloadStatus.PAUSED,
                            DownloadStatus.CANCELED, DownloadStatus.FAILED},
    DownloadStatus.IN_PROGRESS: {DownloadStatus.IN_PROGRESS, DownloadStatus.PAUSED,
                                 DownloadStatus.COMPLETED, DownloadStatus.CANCELED,
                                 DownloadStatus.FAILED},
    DownloadStatus.PAUSED: {DownloadStatus.IN_PROGRESS, DownloadStatus.PAUSED,
                            DownloadStatus.CANCELED, DownloadStatus.FAILED},
}


@dataclass(frozen=True)
class DownloadProgress:
    """
    Immutable progress snapshot for one content id.

    Transition helpers return a new snapshot and raise ``CacheError`` when
    asked to leave a terminal state.
    """
    content_id: str
    status: DownloadStatus = DownloadStatus.QUEUED
    completed_items: int = 0
    total_items: int = 0
    error_message: Optional[str] = None

    @property
    def progress(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return self.completed_items / self.total_items

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, status: DownloadStatus, **changes) -> "DownloadProgress":
        if status not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise CacheError(
                f"download {self.content_id} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, **changes)

    def start(self) -> "DownloadProgress":
        return self._transition(DownloadStatus.IN_PROGRESS)

    def advance(self, count: int = 1) -> "DownloadProgress":
        completed = min(self.completed_items + count, self.total_items or self.completed_items + count)
        # Items finishing while paused keep the download paused
        status = DownloadStatus.PAUSED if self.status == DownloadStatus.PAUSED else DownloadStatus.IN_PROGRESS
        return self._transition(status, completed_items=completed)

    def pause(self) -> "DownloadProgress":
        return self._transition(DownloadStatus.PAUSED)

    def resume(self) -> "DownloadProgress":
        return self._transition(DownloadStatus.IN_PROGRESS)

    def complete(self) -> "DownloadProgress":
        return self._transition(DownloadStatus.COMPLETED)

    def cancel(self) -> "DownloadProgress":
        return self._transition(DownloadStatus.CANCELED)

    def fail(self, message: str) -> "DownloadProgress":
        return self._transition(DownloadStatus.FAILED, error_message=message)

    def to_dict(self) -> dict:
        return {
            "contentId": self.content_id,
            "status": self.status.value,
            "completedItems": self.completed_items,
            "totalItems": self.total_items,
            "progress": self.progress,
            "errorMessage": self.error_message,
        }


class ProgressStream(Generic[T]):
    """
    Broadcast stream of progress values.

    Each ``subscribe()`` call gets its own queue; ``listen()`` wraps one in
    an async iterator that ends when the stream is closed.
    """

    _CLOSED = object()

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []
        self._closed = False
        self.last_value: Optional[T] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(self._CLOSED)
        else:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, value: T) -> None:
        if self._closed:
            logger.debug("Dropping progress update on a closed stream")
            return
        self.last_value = value
        for queue in self._subscribers:
            queue.put_nowait(value)

    async def listen(self) -> AsyncIterator[T]:
        queue = self.subscribe()
        try:
            while True:
                value = await queue.get()
                if value is self._CLOSED:
                    return
                yield value
        finally:
            self.unsubscribe(queue)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(self._CLOSED)
        self._subscribers.clear()
