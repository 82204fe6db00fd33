import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class VehicleLocks:
    """
    Per-vehicle asyncio locks for this process. Entries are dropped once no
    task holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, vehicle_id: int):
        lock = self._locks.setdefault(vehicle_id, asyncio.Lock())
        self._waiters[vehicle_id] = self._waiters.get(vehicle_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[vehicle_id] -= 1
            if self._waiters[vehicle_id] == 0:
                del self._waiters[vehicle_id]
                del self._locks[vehicle_id]
