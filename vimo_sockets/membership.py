import logging
from datetime import timedelta

from nats.aio.client import Client
from pymongo.database import Database

from vimo_sockets.broadcast import broadcast, send_to
from vimo_sockets.core.room_locks import room_locks
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.event_publisher import publish_user_joined_room, publish_user_left_room
from vimo_sockets.events import names
from vimo_sockets.helpers import get_room_name, time_now
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.database import Participant, Room
from vimo_sockets.models.socket import (
    RoomSnapshotResponse, ParticipantEventResponse, ChatHistoryResponse, ChatMessageResponse,
    normalize_room_code,
)
from vimo_sockets.registry import get_room
from vimo_sockets.settings import CHAT_HISTORY_LIMIT, PARTICIPANT_TIMEOUT_SECONDS
from vimo_sockets.store import (
    push_participant, touch_participant, pull_participant, get_rooms_with_stale_participants,
    get_chat_messages_by_room_code,
)


def _participant_event(session: UserSioSession) -> ParticipantEventResponse:
    return ParticipantEventResponse(
        user_id=session.user_id,
        username=session.username,
        profile_picture=session.profile_picture,
    )


async def join(
        app: SocketioApplication,
        db: Database,
        sid: str,
        session: UserSioSession,
        room_code: str,
        nc: Client | None = None,
) -> RoomSnapshotResponse:
    """
    Adds the connection's identity to the room and sends it the full snapshot.

    Idempotent per identity: the roster never holds the same user twice, a repeated
    join only refreshes ``last_seen`` and re-sends the snapshot. The connection
    leaves whatever room it was in before.
    """
    room = await get_room(db, room_code)
    room_code = room.room_code

    already_joined = session.room_code == room_code
    if session.room_code and not already_joined:
        await leave(app, db, sid, session, session.room_code, nc)

    now = time_now()
    participant = Participant(
        user_id=session.user_id,
        username=session.username,
        profile_picture=session.profile_picture,
        joined_at=now,
        last_seen=now,
    )

    async with room_locks.get(room_code):
        added = await push_participant(db, room_code, participant, now)
        if not added:
            await touch_participant(db, room_code, session.user_id, now)
        # read after the write, the snapshot has to include it
        room = await get_room(db, room_code)

    await app.enter_room(sid, get_room_name(room_code))

    session.room_code = room_code
    await app.save_session(sid, session)

    snapshot = RoomSnapshotResponse.for_user(room, session.user_id)
    await send_to(app, sid, names.ROOM_JOINED, snapshot)

    chat_messages = await get_chat_messages_by_room_code(db, room_code, CHAT_HISTORY_LIMIT)
    await send_to(
        app,
        sid,
        names.CHAT_HISTORY,
        ChatHistoryResponse(root=[ChatMessageResponse.from_message(m) for m in chat_messages]),
    )

    # a connection pruned by the sweep is back on the roster, the others were told it left
    if added or not already_joined:
        await broadcast(app, room_code, names.PARTICIPANT_JOINED, _participant_event(session),
                        exclude_sid=sid)
    if added:
        logging.info(f"User {session.user_id} joined room {room_code}")
        await publish_user_joined_room(nc, session.user_id, room_code)

    return snapshot


async def leave(
        app: SocketioApplication,
        db: Database,
        sid: str,
        session: UserSioSession,
        room_code: str | None = None,
        nc: Client | None = None,
) -> None:
    """
    Explicit leave removes the roster entry right away. Leaving a room the identity
    is not in only drops the socket.io group membership.
    """
    room_code = normalize_room_code(room_code) if room_code else session.room_code
    if not room_code:
        return

    try:
        await app.leave_room(sid, get_room_name(room_code))
    except Exception as e:
        logging.error(f"Error leaving sio room {room_code} for user {session.user_id}: {e}")

    async with room_locks.get(room_code):
        removed = await pull_participant(db, room_code, session.user_id, time_now())

    if session.room_code == room_code:
        session.room_code = None
        await app.save_session(sid, session)

    if removed:
        logging.info(f"User {session.user_id} left room {room_code}")
        await broadcast(app, room_code, names.PARTICIPANT_LEFT, _participant_event(session),
                        exclude_sid=sid)
        await publish_user_left_room(nc, session.user_id, room_code)


async def mark_disconnected(app: SocketioApplication, sid: str, session: UserSioSession) -> None:
    """
    A dropped transport is not a leave: the participant stays on the roster until
    it leaves explicitly or the liveness sweep prunes it.
    """
    if not session.room_code:
        return

    await broadcast(
        app,
        session.room_code,
        names.PARTICIPANT_INACTIVE,
        _participant_event(session),
        exclude_sid=sid,
    )


async def heartbeat(db: Database, session: UserSioSession) -> bool:
    if not session.room_code:
        return False

    return await touch_participant(db, session.room_code, session.user_id, time_now())


async def prune_inactive_participants(
        app: SocketioApplication,
        db: Database,
        timeout_seconds: float = PARTICIPANT_TIMEOUT_SECONDS,
        nc: Client | None = None,
) -> int:
    """
    Removes participants that sent no heartbeat for ``timeout_seconds``.
    Returns how many were removed.
    """
    cutoff = time_now() - timedelta(seconds=timeout_seconds)
    removed_count = 0

    for room_data in await get_rooms_with_stale_participants(db, cutoff):
        room = Room.model_validate(room_data)
        stale = [p for p in room.participants if p.last_seen is not None and p.last_seen < cutoff]

        for participant in stale:
            async with room_locks.get(room.room_code):
                # no last_activity refresh, a pruned room must still be able to expire
                removed = await pull_participant(db, room.room_code, participant.user_id)
            if not removed:
                continue

            removed_count += 1
            logging.info(f"Pruned inactive user {participant.user_id} from room {room.room_code}")
            await broadcast(
                app,
                room.room_code,
                names.PARTICIPANT_LEFT,
                ParticipantEventResponse(
                    user_id=participant.user_id,
                    username=participant.username,
                    profile_picture=participant.profile_picture,
                ),
            )
            await publish_user_left_room(nc, participant.user_id, room.room_code)

    return removed_count
