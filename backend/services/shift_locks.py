"""
Per-shift write locks.

Every writer that reads-then-changes an existing shift (the monitor's
"is this alert already sent" check, alert responses, completion, cancel,
manual updates, delete) holds that shift's lock for the whole
read-check-write, and re-reads the shift after acquiring it.

Entries are weak: a lock lives while some coroutine holds or waits on it,
then drops out of the registry.

Locks are per process. Run the monitor in one worker only
(MONITORING_ENABLED) - the conditional mark-sent UPDATE in shift_store
keeps the alert flags consistent for any other writer.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager


class ShiftLockRegistry:

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def lock_for(self, shift_id: int) -> asyncio.Lock:
        lock = self._locks.get(shift_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[shift_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, shift_id: int):
        lock = self.lock_for(shift_id)
        async with lock:
            yield

    def __len__(self):
        return len(self._locks)
