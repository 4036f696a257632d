import asyncio
import logging
from datetime import timedelta

from nats.aio.client import Client
from pymongo.database import Database

from vimo_sockets.broadcast import broadcast
from vimo_sockets.core.room_locks import room_locks
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.events import names
from vimo_sockets.helpers import time_now, get_room_name
from vimo_sockets.membership import prune_inactive_participants
from vimo_sockets.models.socket import RoomDeletedResponse
from vimo_sockets.registry import delete_room
from vimo_sockets.settings import (
    PARTICIPANT_TIMEOUT_SECONDS,
    ROOM_EXPIRATION_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)
from vimo_sockets.store import get_expired_room_codes


async def expire_rooms(
        app: SocketioApplication,
        db: Database,
        expiration_seconds: float = ROOM_EXPIRATION_SECONDS,
        nc: Client | None = None,
) -> list[str]:
    """Deletes rooms with an empty roster and no activity for ``expiration_seconds``."""
    cutoff = time_now() - timedelta(seconds=expiration_seconds)
    expired = []

    for room_code in await get_expired_room_codes(db, cutoff):
        async with room_locks.get(room_code):
            deleted = await delete_room(db, room_code, nc)
        room_locks.discard(room_code)
        if not deleted:
            continue

        expired.append(room_code)
        await broadcast(app, room_code, names.ROOM_DELETED, RoomDeletedResponse(room_code=room_code))
        await app.close_room(get_room_name(room_code))

    if expired:
        logging.info(f"Expired rooms: {', '.join(expired)}")
    return expired


async def sweep_once(
        app: SocketioApplication,
        db: Database,
        participant_timeout: float = PARTICIPANT_TIMEOUT_SECONDS,
        expiration_seconds: float = ROOM_EXPIRATION_SECONDS,
        nc: Client | None = None,
) -> tuple[int, list[str]]:
    # prune first, a room emptied by the sweep can expire in the same pass
    pruned = await prune_inactive_participants(app, db, participant_timeout, nc)
    expired = await expire_rooms(app, db, expiration_seconds, nc)
    return pruned, expired


async def run_sweeper(app: SocketioApplication, db: Database, nc: Client | None = None,
                      interval: float = SWEEP_INTERVAL_SECONDS):
    logging.info(f"Starting room sweeper, interval {interval}s")
    while True:
        try:
            await sweep_once(app, db, nc=nc)
        except Exception as e:
            logging.error(f"Room sweep failed: {e}")
        await asyncio.sleep(interval)
