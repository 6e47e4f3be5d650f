"""
Size-based eviction.

One victim-selection routine shared by every tier that enforces a byte
budget: persistent namespaces, the in-memory L1 tier and the on-disk
video directory.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List


@dataclass
class EvictionCandidate:
    """
    An entry that may be evicted.

    Attributes:
        key: Identifier of the entry (cache key or file path)
        size_bytes: Bytes freed by evicting it
        last_access: Last access time; older entries go first
        rank: Retention rank; lower ranks go first
        protected: Never evicted when True (pinned entries)
        ref: Opaque payload for the caller
    """
    key: str
    size_bytes: int
    last_access: float
    rank: int = 1
    protected: bool = False
    ref: Any = None


def select_victims(
    candidates: Iterable[EvictionCandidate],
    current_size: int,
    max_size: int,
) -> List[EvictionCandidate]:
    """
    Choose the entries to delete to bring ``current_size`` within ``max_size``.

    Nothing is selected when the budget is already met. Otherwise unprotected
    entries are taken in (rank, last access) order until the projected size
    fits. If the unprotected entries are not enough, all of them are
    returned and the budget stays exceeded.

    Args:
        candidates: Entries competing for the budget
        current_size: Current total size in bytes
        max_size: Byte budget

    Returns:
        Entries to evict, in eviction order
    """
    if current_size <= max_size:
        return []

    evictable = sorted(
        (c for c in candidates if not c.protected),
        key=lambda c: (c.rank, c.last_access),
    )

    victims = []
    remaining = current_size
    for candidate in evictable:
        if remaining <= max_size:
            break
        victims.append(candidate)
        remaining -= candidate.size_bytes
    return victims
