"""In-process tier of the weather cache.

Holds deserialized entries so repeated renders of the same slot do not
re-parse the durable JSON. A miss here is never a cache miss; it only means
the durable row has to be deserialized again.
"""

import logging
from collections import OrderedDict
from typing import Optional

from wxdash.cache.models import CacheEntry, SlotIdentity

logger = logging.getLogger(__name__)

MEMORY_TIER_CAPACITY = 10

MemoryKey = tuple[str, str]


class MemoryTier:
    """Bounded FIFO map of ``(slot storage key, fetched_at string)`` to entries.

    Eviction drops the oldest *inserted* key, not the least recently used
    one. Re-inserting an existing key replaces the value in place.
    """

    def __init__(self, capacity: int = MEMORY_TIER_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[MemoryKey, CacheEntry] = OrderedDict()

    @staticmethod
    def make_key(slot: SlotIdentity, fetched_at: str) -> MemoryKey:
        return (slot.storage_key, fetched_at)

    def get(self, slot: SlotIdentity, fetched_at: str) -> Optional[CacheEntry]:
        return self._entries.get(self.make_key(slot, fetched_at))

    def put(self, slot: SlotIdentity, fetched_at: str, entry: CacheEntry) -> None:
        key = self.make_key(slot, fetched_at)
        if key in self._entries:
            self._entries[key] = entry
            return

        self._entries[key] = entry
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Memory tier evicted {evicted}")

    def purge(self, slot: SlotIdentity) -> int:
        """Drop every key belonging to a slot.

        Returns:
            Number of keys removed
        """
        storage_key = slot.storage_key
        stale = [key for key in self._entries if key[0] == storage_key]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[MemoryKey]:
        """Keys in insertion order (oldest first)."""
        return list(self._entries)

    def __contains__(self, key: MemoryKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
