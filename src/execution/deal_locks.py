"""
Per-pair deal lock registry.

At most one deal is ACTIVE per pair, so a lock scoped to the pair serializes
deal creation and every mutation of that pair's deals. All bot code paths that
write a deal take the lock first, whichever trigger they came from.
"""

from __future__ import annotations

import asyncio
from typing import Dict


class DealLocks:
    def __init__(self) -> None:
        # map pair -> asyncio.Lock
        self._locks: Dict[str, asyncio.Lock] = {}

    def get_lock(self, pair: str) -> asyncio.Lock:
        """Return the shared asyncio.Lock for the given pair."""
        lock = self._locks.get(pair)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[pair] = lock
        return lock
