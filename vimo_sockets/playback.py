import logging
import math

from nats.aio.client import Client
from pymongo.database import Database

from vimo_sockets.broadcast import broadcast
from vimo_sockets.core.room_locks import room_locks
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.event_publisher import publish_video_selected, publish_room_chat_message
from vimo_sockets.events import names
from vimo_sockets.exceptions import NotAuthorized, NotInRoom, InvalidRequest
from vimo_sockets.helpers import time_now
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.database import Room, RoomUpdate, Movie, ChatMessage
from vimo_sockets.models.socket import (
    PlaybackEventResponse, RoomStateResponse, SubtitlesToggledResponse, ChatMessageResponse,
    ReactionResponse,
)
from vimo_sockets.registry import get_room, update_room
from vimo_sockets.settings import CHAT_MESSAGE_MAX_LENGTH
from vimo_sockets.store import insert_chat_message


def clamp_time(room: Room, current_time: float) -> float:
    """Playback time is never negative, and stays at 0 while no movie is selected."""
    if not math.isfinite(current_time):
        raise InvalidRequest("Playback time must be a finite number.")
    if room.movie is None:
        return 0
    return max(0.0, current_time)


def _require_member(room: Room, actor: UserSioSession):
    if not room.has_participant(actor.user_id) and not room.is_host(actor.user_id):
        raise NotInRoom(f"You are not in room {room.room_code}.")


async def _control_playback(
        app: SocketioApplication,
        db: Database,
        room_code: str,
        actor: UserSioSession,
        current_time: float,
        event: str,
        is_playing: bool | None = None,
        sid: str | None = None,
) -> Room:
    async with room_locks.get(room_code):
        room = await get_room(db, room_code)
        # fail closed: nothing is written or sent for anyone but the host
        if not room.is_host(actor.user_id):
            logging.info(f"User {actor.user_id} tried {event} in room {room_code} without being host")
            raise NotAuthorized()

        changes = {"current_time": clamp_time(room, current_time)}
        if is_playing is not None:
            changes["is_playing"] = is_playing
        room = await update_room(db, room.room_code, RoomUpdate(**changes))

    await broadcast(
        app,
        room.room_code,
        event,
        PlaybackEventResponse(
            current_time=room.current_time,
            actor_id=actor.user_id,
            username=actor.username,
        ),
        exclude_sid=sid,
    )
    return room


async def play(app: SocketioApplication, db: Database, room_code: str, actor: UserSioSession,
               current_time: float, sid: str | None = None) -> Room:
    return await _control_playback(app, db, room_code, actor, current_time,
                                   names.VIDEO_PLAYED, is_playing=True, sid=sid)


async def pause(app: SocketioApplication, db: Database, room_code: str, actor: UserSioSession,
                current_time: float, sid: str | None = None) -> Room:
    return await _control_playback(app, db, room_code, actor, current_time,
                                   names.VIDEO_PAUSED, is_playing=False, sid=sid)


async def seek(app: SocketioApplication, db: Database, room_code: str, actor: UserSioSession,
               current_time: float, sid: str | None = None) -> Room:
    return await _control_playback(app, db, room_code, actor, current_time,
                                   names.VIDEO_SEEKED, sid=sid)


async def select_video(
        app: SocketioApplication,
        db: Database,
        room_code: str,
        actor: UserSioSession,
        movie: Movie,
        nc: Client | None = None,
) -> Room:
    """
    Any participant may switch the movie. Playback restarts paused at 0 and the
    full state goes to everybody, the originator included, so its optimistic
    local state gets overwritten by the stored one.
    """
    async with room_locks.get(room_code):
        room = await get_room(db, room_code)
        _require_member(room, actor)
        room = await update_room(
            db,
            room.room_code,
            RoomUpdate(movie=movie, current_time=0, is_playing=False),
        )

    logging.info(f"User {actor.user_id} selected movie {movie.id} in room {room.room_code}")
    await broadcast(app, room.room_code, names.ROOM_STATE_UPDATE, RoomStateResponse.from_room(room))
    await publish_video_selected(nc, room.room_code, actor.user_id, movie.id)
    return room


async def toggle_subtitles(
        app: SocketioApplication,
        db: Database,
        room_code: str,
        actor: UserSioSession,
        enabled: bool,
        sid: str | None = None,
) -> Room:
    async with room_locks.get(room_code):
        room = await get_room(db, room_code)
        _require_member(room, actor)
        room = await update_room(db, room.room_code, RoomUpdate(subtitles_enabled=enabled))

    await broadcast(
        app,
        room.room_code,
        names.SUBTITLES_TOGGLED,
        SubtitlesToggledResponse(enabled=room.subtitles_enabled, actor_id=actor.user_id),
        exclude_sid=sid,
    )
    return room


async def report_time(db: Database, room_code: str, actor: UserSioSession,
                      current_time: float) -> bool:
    """
    A member's periodic position hint. Never changes ``is_playing`` and is not
    broadcast, reports from outside the room or without a movie are dropped.
    """
    async with room_locks.get(room_code):
        room = await get_room(db, room_code)
        is_member = room.has_participant(actor.user_id) or room.is_host(actor.user_id)
        if not is_member or room.movie is None:
            logging.debug(f"Dropped time report from {actor.user_id} in room {room_code}")
            return False

        await update_room(
            db, room.room_code, RoomUpdate(current_time=clamp_time(room, current_time))
        )
    return True


async def send_message(
        app: SocketioApplication,
        db: Database,
        room_code: str,
        actor: UserSioSession,
        content: str,
        nc: Client | None = None,
) -> ChatMessageResponse:
    content = content.strip()
    if not content:
        raise InvalidRequest("Message can't be empty.")

    room = await get_room(db, room_code)
    _require_member(room, actor)

    chat_message = ChatMessage(
        room_code=room.room_code,
        user_id=actor.user_id,
        sender=actor.username,
        profile_picture=actor.profile_picture,
        content=content[:CHAT_MESSAGE_MAX_LENGTH],
        created_at=time_now(),
    )
    await insert_chat_message(db, chat_message)

    # chat counts as activity for expiration
    async with room_locks.get(room.room_code):
        await update_room(db, room.room_code, RoomUpdate())

    response = ChatMessageResponse.from_message(chat_message)
    await broadcast(app, room.room_code, names.MESSAGE_RECEIVED, response)
    await publish_room_chat_message(nc, room.room_code, actor.user_id, chat_message.content)
    return response


async def send_reaction(app: SocketioApplication, db: Database, room_code: str,
                        actor: UserSioSession, reaction: str) -> ReactionResponse:
    room = await get_room(db, room_code)
    _require_member(room, actor)

    response = ReactionResponse(
        user_id=actor.user_id,
        username=actor.username,
        reaction=reaction,
        timestamp=time_now(),
    )
    await broadcast(app, room.room_code, names.REACTION_RECEIVED, response)
    return response
