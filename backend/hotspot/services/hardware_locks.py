"""
Per-device mutual exclusion.

Every mutation of a session row (grant, restore, roam, pause, expiry) runs
while holding the lock of each hardware id it touches. Mutations on different
devices proceed concurrently.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class HardwareLockArena:
    """Lazily created asyncio locks keyed by hardware id"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, hardware_id: str) -> asyncio.Lock:
        lock = self._locks.get(hardware_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[hardware_id] = lock
        self._users[hardware_id] = self._users.get(hardware_id, 0) + 1
        return lock

    def _release(self, hardware_id: str):
        remaining = self._users.get(hardware_id, 1) - 1
        if remaining <= 0:
            self._users.pop(hardware_id, None)
            self._locks.pop(hardware_id, None)
        else:
            self._users[hardware_id] = remaining

    @asynccontextmanager
    async def hold(self, *hardware_ids: str):
        """
        Hold the locks of all given hardware ids.

        Locks are taken in sorted order so two requests touching the same
        pair of devices cannot deadlock.
        """
        ids = sorted({h for h in hardware_ids if h})
        locks = [self._checkout(h) for h in ids]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for h in ids:
                self._release(h)

    def is_locked(self, hardware_id: str) -> bool:
        lock = self._locks.get(hardware_id)
        return bool(lock and lock.locked())

    def __len__(self):
        return len(self._locks)
