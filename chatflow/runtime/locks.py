"""Per-contact serialization of execution steps."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ContactLockRegistry:
    """
    One asyncio.Lock per contact.

    Every step of every execution belonging to a contact runs under that
    contact's lock, so two events arriving together cannot both advance the
    same ``current_node_id``. Different contacts never block each other.

    A lock lives only while someone holds or waits for it; the entry is
    dropped when the last ``hold()`` exits.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def get_lock(self, contact_id: str) -> asyncio.Lock:
        if contact_id not in self._locks:
            self._locks[contact_id] = asyncio.Lock()
        return self._locks[contact_id]

    @asynccontextmanager
    async def hold(self, contact_id: str) -> AsyncIterator[None]:
        lock = self.get_lock(contact_id)
        # Counted before waiting so a queued waiter keeps the entry alive
        self._holders[contact_id] = self._holders.get(contact_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[contact_id] -= 1
            if self._holders[contact_id] == 0:
                del self._holders[contact_id]
                self._locks.pop(contact_id, None)

    def is_locked(self, contact_id: str) -> bool:
        lock = self._locks.get(contact_id)
        return lock is not None and lock.locked()

    @property
    def active_count(self) -> int:
        """Contacts with a lock currently held or awaited."""
        return len(self._locks)
