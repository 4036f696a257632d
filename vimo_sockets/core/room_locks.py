import asyncio


class RoomLocks:
    """
    One asyncio.Lock per room code.

    Handlers interleave at every await, so a read-check-write on a room document
    has to hold the room's lock to avoid lost updates.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, room_code: str) -> asyncio.Lock:
        lock = self._locks.get(room_code)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_code] = lock
        return lock

    def discard(self, room_code: str) -> None:
        lock = self._locks.get(room_code)
        if lock is not None and not lock.locked():
            del self._locks[room_code]

    def reset(self) -> None:
        self._locks.clear()


# Global lock registry, the server is a single process
room_locks = RoomLocks()
