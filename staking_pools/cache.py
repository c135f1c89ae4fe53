# cache.py
# Holds the committed delegators snapshot shared by the scheduler and the HTTP handlers

import asyncio
import time
from typing import Callable, FrozenSet, Optional

from .models import CacheSnapshot


SnapshotUpdate = Callable[[CacheSnapshot], Optional[CacheSnapshot]]


class CacheStore:
    def __init__(self, snapshot: CacheSnapshot | None = None, cache_ttl: float = 1800):
        self.cache_ttl = cache_ttl
        self._snapshot = snapshot or CacheSnapshot()
        self._lock = asyncio.Lock()

    def read(self) -> CacheSnapshot:
        """Latest committed snapshot. Never waits for a writer."""
        return self._snapshot

    async def mutate(self, fn: SnapshotUpdate) -> CacheSnapshot:
        """
        Run `fn` on the current snapshot with exclusive write access.

        `fn` returns the replacement snapshot, or None to leave the cache as is.
        The replacement is built off to the side and swapped in as a whole.
        """
        async with self._lock:
            updated = fn(self._snapshot)
            if updated is not None:
                self._snapshot = updated
            return self._snapshot

    def age(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return now - self._snapshot.timestamp

    def is_stale(self, now: float | None = None) -> bool:
        return self.age(now) > self.cache_ttl

    def is_populated(self) -> bool:
        return self._snapshot.timestamp != 0

    def delegator_pools(self, account_id: str) -> Optional[FrozenSet[str]]:
        return self._snapshot.inverse.get(account_id)

    def validator_delegators(self, account_id: str) -> Optional[FrozenSet[str]]:
        return self._snapshot.forward.get(account_id)
