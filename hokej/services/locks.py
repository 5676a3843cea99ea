"""Per-match serialisation of registration changes."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager


class MatchLocks:
    """One asyncio.Lock per match id. Matches never block each other.

    This serialises writers inside one process; the match row is also loaded
    FOR UPDATE so databases with row locks serialise across processes.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def is_held(self, match_id: int) -> bool:
        lock = self._locks.get(match_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, match_id: int):
        lock = self._locks.setdefault(match_id, asyncio.Lock())
        self._users[match_id] = self._users.get(match_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock once nobody holds or waits for it
            self._users[match_id] -= 1
            if self._users[match_id] == 0:
                del self._users[match_id]
                del self._locks[match_id]
