"""
Cache metrics: hit/miss/write/eviction counters per cache instance.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class CacheMetrics:
    """
    Operation counters with a periodic summary log.

    Every ``log_every`` recorded operations a one-line summary is logged at
    INFO level.
    """

    def __init__(self, log_every: int = 100):
        self.log_every = log_every
        self.reset()

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.writes = 0
        self.evictions = 0
        self.expirations = 0
        self.errors = 0
        self._operations = 0

    def record_hit(self) -> None:
        self.hits += 1
        self._tick()

    def record_miss(self) -> None:
        self.misses += 1
        self._tick()

    def record_write(self) -> None:
        self.writes += 1
        self._tick()

    def record_eviction(self, count: int = 1) -> None:
        self.evictions += count

    def record_expiration(self, count: int = 1) -> None:
        self.expirations += count

    def record_error(self) -> None:
        self.errors += 1

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def _tick(self) -> None:
        self._operations += 1
        if self.log_every and self._operations % self.log_every == 0:
            self.log_summary()

    def log_summary(self) -> None:
        logger.info(
            f"Cache metrics: hits={self.hits} misses={self.misses} "
            f"hit_rate={self.hit_rate:.1%} writes={self.writes} "
            f"evictions={self.evictions} expirations={self.expirations}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "writes": self.writes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "errors": self.errors,
        }
