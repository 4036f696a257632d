import logging
import secrets
import string
from typing import Callable

from nats.aio.client import Client
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from vimo_sockets.event_publisher import publish_room_created, publish_room_deleted
from vimo_sockets.exceptions import RoomNotFound, CodeSpaceExhausted
from vimo_sockets.helpers import time_now
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.database import Room, Movie, RoomUpdate
from vimo_sockets.models.socket import normalize_room_code
from vimo_sockets.settings import ROOM_CODE_LENGTH, ROOM_CODE_MAX_ATTEMPTS
from vimo_sockets.store import (
    insert_room, get_room_by_code, update_room_by_code, delete_room_by_code,
    delete_chat_messages_by_room_code,
)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


async def create_room(
        db: Database,
        host: UserSioSession,
        movie: Movie | None = None,
        is_private: bool = False,
        subtitles_enabled: bool = False,
        nc: Client | None = None,
        code_factory: Callable[[], str] = generate_room_code,
        max_attempts: int = ROOM_CODE_MAX_ATTEMPTS,
) -> Room:
    """
    Creates a room hosted by ``host``. The host is fixed for the room's lifetime.

    Codes are random, uniqueness is enforced by the unique index on ``room_code``:
    on a collision a new code is drawn, up to ``max_attempts`` times.
    """
    for attempt in range(1, max_attempts + 1):
        now = time_now()
        room = Room(
            room_code=code_factory(),
            host_id=host.user_id,
            movie=movie,
            is_private=is_private,
            subtitles_enabled=subtitles_enabled,
            is_playing=False,
            current_time=0,
            participants=[],
            created_at=now,
            last_activity=now,
        )
        try:
            await insert_room(db, room)
        except DuplicateKeyError:
            logging.warning(f"Room code {room.room_code} is taken, attempt {attempt}/{max_attempts}")
            continue

        logging.info(f"Room {room.room_code} created by {host.user_id}")
        await publish_room_created(nc, room.room_code, host.user_id)
        return room

    raise CodeSpaceExhausted()


async def get_room(db: Database, room_code: str) -> Room:
    room_code = normalize_room_code(room_code)
    room_data = await get_room_by_code(db, room_code)
    if not room_data:
        raise RoomNotFound(room_code)

    return Room.model_validate(room_data)


async def update_room(db: Database, room_code: str, changes: RoomUpdate) -> Room:
    """
    Read-merge-write of the fields set on ``changes``, refreshes ``last_activity``.
    """
    fields = changes.model_dump(exclude_unset=True)
    fields["last_activity"] = time_now()

    room_data = await update_room_by_code(db, room_code, fields)
    if not room_data:
        raise RoomNotFound(room_code)

    return Room.model_validate(room_data)


async def delete_room(db: Database, room_code: str, nc: Client | None = None) -> bool:
    deleted = await delete_room_by_code(db, room_code)
    await delete_chat_messages_by_room_code(db, room_code)

    if deleted:
        logging.info(f"Room {room_code} deleted")
        await publish_room_deleted(nc, room_code)

    return deleted > 0
