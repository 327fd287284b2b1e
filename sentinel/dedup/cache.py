"""Bounded, time-limited memory of already-handled event ids."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from sentinel.runtime.timers import Cancelable, Clock, LoopClock

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_TTL_SECONDS = 3600.0


@dataclass(eq=False)
class DedupEntry:
    id: str
    inserted_at: float
    expiry: Optional[Cancelable] = None


class DedupCache:
    """Answers "first time seeing this id?" at most once per id.

    Entries leave the cache either when their own TTL timer fires or when an
    insertion pushes the size past ``capacity``; in the latter case the oldest
    inserted entries go first, whatever their remaining TTL.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock: Clock = clock or LoopClock()
        self._entries: OrderedDict[str, DedupEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item: object) -> bool:
        return item in self._entries

    def observe_once(self, item_id: str) -> bool:
        """Record ``item_id`` and return True if it was not already present."""

        if item_id in self._entries:
            return False
        entry = DedupEntry(id=item_id, inserted_at=self._clock.time())
        entry.expiry = self._clock.call_later(self.ttl_seconds, self._expire, entry)
        self._entries[item_id] = entry
        if len(self._entries) > self.capacity:
            self._evict_oldest(len(self._entries) - self.capacity)
        return True

    def discard(self, item_id: str) -> None:
        entry = self._entries.pop(item_id, None)
        if entry is not None and entry.expiry is not None:
            entry.expiry.cancel()

    def clear(self) -> None:
        for entry in self._entries.values():
            if entry.expiry is not None:
                entry.expiry.cancel()
        self._entries.clear()

    def _evict_oldest(self, count: int) -> None:
        for _ in range(count):
            _, entry = self._entries.popitem(last=False)
            if entry.expiry is not None:
                entry.expiry.cancel()
            LOGGER.debug("Evicted dedup entry %s at capacity %s", entry.id, self.capacity)

    def _expire(self, entry: DedupEntry) -> None:
        # an evicted-then-reinserted id owns a newer entry; leave it alone
        if self._entries.get(entry.id) is entry:
            del self._entries[entry.id]
