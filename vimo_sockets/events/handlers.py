import logging

from nats.aio.client import Client
from pymongo.database import Database
from socketio.exceptions import ConnectionRefusedError

from vimo_sockets import membership, playback
from vimo_sockets.auth import authenticate, extract_token
from vimo_sockets.broadcast import send_to
from vimo_sockets.core.di import Depends
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.events import names
from vimo_sockets.exceptions import VimoSocketsError, NotInRoom
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.socket import (
    CreateRoomRequest, JoinRoomRequest, LeaveRoomRequest, PlaybackRequest, TimeReportRequest,
    ToggleSubtitlesRequest, SelectVideoRequest, ChatMessageRequest, ReactionRequest,
    RoomCreatedResponse,
)
from vimo_sockets.registry import create_room


def _current_room(session: UserSioSession, room_code: str | None = None) -> str:
    room_code = room_code or session.room_code
    if not room_code:
        raise NotInRoom()
    return room_code


async def connect(
        sid,
        environ=None,
        auth=None,
        app: SocketioApplication = Depends("app"),
):
    """
    Authenticates the connection. The token is expected in the auth payload:

    .. code-block:: json

        {
            "token": "eyJhbGciOiJIUzI1NiIs..."
        }

    A ``token`` query string parameter is accepted as well. A refused connection
    carries ``{"code": "AUTH_ERROR"}`` (or ``CONNECTION_TIMEOUT``) in its data.
    """
    token = extract_token(environ, auth)

    try:
        session = await authenticate(token)
    except VimoSocketsError as e:
        logging.info(f"Refused connection {sid}: {e.message}")
        raise ConnectionRefusedError(e.message, {"code": e.code.value})

    await app.save_session(sid, session)
    logging.info(f"User {session.user_id} authenticated successfully")


async def disconnect(
        sid,
        reason=None,
        app: SocketioApplication = Depends("app"),
):
    """
    Called automatically when the transport goes away. The participant stays on
    the roster, the others get ``participant-inactive``.
    """
    if reason:
        logging.info(f"User {sid} disconnected with reason: {reason}")

    session = await app.get_session(sid)
    if not session:
        logging.warning(f"On disconnect: user session not found for sid {sid}")
        return

    await membership.mark_disconnected(app, sid, session)


async def ping(
        sid,
        app: SocketioApplication = Depends("app"),
):
    """
    Connection check, answers with ``pong``:

    .. code-block:: json

        {
            "message": "pong"
        }
    """
    await app.emit(names.PONG, {"message": "pong"}, room=sid)


async def create_room_event(
        sid,
        data: CreateRoomRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        nc: Client = Depends("nats"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Creates a room hosted by the caller. The caller is not joined automatically.

    Request:
    :py:class:`vimo_sockets.models.socket.CreateRoomRequest`

    Event ``room-created`` is emitted to the caller:
    :py:class:`vimo_sockets.models.socket.RoomCreatedResponse`
    """
    room = await create_room(
        db,
        session,
        movie=data.movie.to_movie() if data.movie else None,
        is_private=data.is_private,
        subtitles_enabled=data.subtitles_enabled,
        nc=nc,
    )
    await send_to(app, sid, names.ROOM_CREATED, RoomCreatedResponse(room_code=room.room_code))


async def join_room(
        sid,
        data: JoinRoomRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        nc: Client = Depends("nats"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Joins the room. Safe to repeat, a repeated join re-sends the snapshot.

    Request:
    :py:class:`vimo_sockets.models.socket.JoinRoomRequest`

    Event ``room-joined`` is emitted to the caller:
    :py:class:`vimo_sockets.models.socket.RoomSnapshotResponse`

    followed by ``chat-history``, a list of
    :py:class:`vimo_sockets.models.socket.ChatMessageResponse`

    Event ``participant-joined`` is emitted to the others in the room:
    :py:class:`vimo_sockets.models.socket.ParticipantEventResponse`
    """
    await membership.join(app, db, sid, session, data.room_code, nc)


async def leave_room(
        sid,
        data: LeaveRoomRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        nc: Client = Depends("nats"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Leaves the room, ``participant-left`` is emitted to the others.

    Request:
    :py:class:`vimo_sockets.models.socket.LeaveRoomRequest`
    """
    await membership.leave(app, db, sid, session, data.room_code, nc)


async def play(
        sid,
        data: PlaybackRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Host only. Event ``video-played`` is emitted to the others:

    .. code-block:: json

        {
            "currentTime": 10.5,
            "actorId": "user-1",
            "username": "alice"
        }
    """
    room_code = _current_room(session, data.room_code)
    await playback.play(app, db, room_code, session, data.current_time, sid)


async def pause(
        sid,
        data: PlaybackRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    """Host only. Event ``video-paused`` is emitted to the others."""
    room_code = _current_room(session, data.room_code)
    await playback.pause(app, db, room_code, session, data.current_time, sid)


async def seek(
        sid,
        data: PlaybackRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    """Host only. Event ``video-seeked`` is emitted to the others."""
    room_code = _current_room(session, data.room_code)
    await playback.seek(app, db, room_code, session, data.current_time, sid)


async def time_report(
        data: TimeReportRequest,
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    room_code = _current_room(session)
    await playback.report_time(db, room_code, session, data.current_time)


async def toggle_subtitles(
        sid,
        data: ToggleSubtitlesRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Event ``subtitles-toggled`` is emitted to the others:
    :py:class:`vimo_sockets.models.socket.SubtitlesToggledResponse`
    """
    room_code = _current_room(session)
    await playback.toggle_subtitles(app, db, room_code, session, data.enabled, sid)


async def select_video(
        data: SelectVideoRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        nc: Client = Depends("nats"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Switches the room's movie. Playback restarts paused at 0.

    Request:
    :py:class:`vimo_sockets.models.socket.SelectVideoRequest`

    Event ``room-state-update`` is emitted to everybody in the room, the caller included:
    :py:class:`vimo_sockets.models.socket.RoomStateResponse`
    """
    room_code = _current_room(session)
    await playback.select_video(app, db, room_code, session, data.movie.to_movie(), nc)


async def chat_message(
        data: ChatMessageRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        nc: Client = Depends("nats"),
        session: UserSioSession = Depends("sio_session"),
):
    """
    Event ``message-received`` is emitted to everybody in the room:
    :py:class:`vimo_sockets.models.socket.ChatMessageResponse`
    """
    room_code = _current_room(session)
    await playback.send_message(app, db, room_code, session, data.content, nc)


async def send_reaction(
        data: ReactionRequest,
        app: SocketioApplication = Depends("app"),
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    room_code = _current_room(session)
    await playback.send_reaction(app, db, room_code, session, data.reaction)


async def heartbeat(
        db: Database = Depends("db"),
        session: UserSioSession = Depends("sio_session"),
):
    await membership.heartbeat(db, session)


def register_events(app: SocketioApplication) -> None:
    app.event("connect")(connect)
    app.event("disconnect")(disconnect)
    app.event(names.PING)(ping)
    app.event(names.CREATE_ROOM)(create_room_event)
    app.event(names.JOIN_ROOM)(join_room)
    app.event(names.LEAVE_ROOM)(leave_room)
    app.event(names.PLAY)(play)
    app.event(names.PAUSE)(pause)
    app.event(names.SEEK)(seek)
    app.event(names.TIME_REPORT)(time_report)
    app.event(names.TOGGLE_SUBTITLES)(toggle_subtitles)
    app.event(names.SELECT_VIDEO)(select_video)
    app.event(names.CHAT_MESSAGE)(chat_message)
    app.event(names.SEND_REACTION)(send_reaction)
    app.event(names.HEARTBEAT)(heartbeat)
