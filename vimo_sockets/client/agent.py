import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

import socketio
from pydantic import ValidationError

from vimo_sockets.client.state import ClientSession, LocalRoomState
from vimo_sockets.events import names
from vimo_sockets.exceptions import (
    VimoSocketsError, AuthError, RoomNotFound, NotAuthorized, NotInRoom, InvalidRequest,
    CodeSpaceExhausted, ServerConnectionError, ConnectionTimeout,
)
from vimo_sockets.helpers import parse_data
from vimo_sockets.models.enums import ClientState, ErrorCode
from vimo_sockets.models.socket import (
    MovieRef, MovieResponse, ParticipantResponse, ChatMessageResponse, RoomStateResponse,
    RoomSnapshotResponse, PlaybackEventResponse, ReactionResponse, normalize_room_code,
)
from vimo_sockets.settings import (
    CLIENT_CONNECT_TIMEOUT_SECONDS,
    CLIENT_JOIN_TIMEOUT_SECONDS,
    TIME_REPORT_THRESHOLD_SECONDS,
    DRIFT_SNAP_TOLERANCE_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_BACKOFF_SECONDS,
    RECONNECT_BACKOFF_MAX_SECONDS,
)

ERROR_CLASSES: dict[str, type[VimoSocketsError]] = {
    ErrorCode.AUTH_ERROR.value: AuthError,
    ErrorCode.ROOM_NOT_FOUND.value: RoomNotFound,
    ErrorCode.NOT_AUTHORIZED.value: NotAuthorized,
    ErrorCode.NOT_IN_ROOM.value: NotInRoom,
    ErrorCode.INVALID_REQUEST.value: InvalidRequest,
    ErrorCode.CODE_SPACE_EXHAUSTED.value: CodeSpaceExhausted,
    ErrorCode.CONNECTION_ERROR.value: ServerConnectionError,
    ErrorCode.CONNECTION_TIMEOUT.value: ConnectionTimeout,
}

# allowed moves of the connection state machine
TRANSITIONS = {
    ClientState.DISCONNECTED: {ClientState.CONNECTING},
    ClientState.CONNECTING: {ClientState.AUTHENTICATED, ClientState.DISCONNECTED},
    ClientState.AUTHENTICATED: {ClientState.JOINING, ClientState.LEAVING,
                                ClientState.DISCONNECTED},
    ClientState.JOINING: {ClientState.JOINING, ClientState.JOINED, ClientState.AUTHENTICATED,
                          ClientState.LEAVING, ClientState.DISCONNECTED},
    ClientState.JOINED: {ClientState.JOINING, ClientState.JOINED, ClientState.AUTHENTICATED,
                         ClientState.LEAVING, ClientState.DISCONNECTED},
    ClientState.LEAVING: {ClientState.DISCONNECTED},
}


def error_from_payload(data: Any) -> VimoSocketsError:
    data = parse_data(data)
    error_class = ERROR_CLASSES.get(data.get("code"), VimoSocketsError)
    return error_class(message=data.get("message"))


def refusal_code(data: Any) -> str | None:
    """
    A refused connection arrives as ``{"message": ..., "data": {"code": ...}}``,
    older servers put the code at the top level.
    """
    if not isinstance(data, dict):
        return None
    if data.get("code"):
        return data["code"]
    inner = data.get("data")
    if isinstance(inner, dict):
        return inner.get("code")
    return None


@dataclass
class _Waiter:
    generation: int
    room_code: str | None
    future: asyncio.Future


class SyncAgent:
    """
    Owns one socket.io connection to the room server and keeps a local copy of
    the room it is in.

    Intents (``play``, ``select_video``, ``send_message``...) go to the server,
    authoritative updates coming back are reconciled into :py:attr:`room`.
    Local code subscribes with :py:meth:`on` to ``state``, ``room``, ``snap``,
    ``message``, ``reaction``, ``participant``, ``error``, ``unreachable`` and
    ``room-deleted``.
    """

    def __init__(
            self,
            url: str,
            token: str,
            sio_client: socketio.AsyncClient | None = None,
            connect_timeout: float = CLIENT_CONNECT_TIMEOUT_SECONDS,
            join_timeout: float = CLIENT_JOIN_TIMEOUT_SECONDS,
            report_threshold: float = TIME_REPORT_THRESHOLD_SECONDS,
            snap_tolerance: float = DRIFT_SNAP_TOLERANCE_SECONDS,
            heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
            reconnect_max_attempts: int = RECONNECT_MAX_ATTEMPTS,
            reconnect_backoff: float = RECONNECT_BACKOFF_SECONDS,
            reconnect_backoff_max: float = RECONNECT_BACKOFF_MAX_SECONDS,
    ):
        self.url = url
        self.token = token
        # reconnection is driven by the agent, it has to replay the join
        self.sio = sio_client or socketio.AsyncClient(reconnection=False)

        self.connect_timeout = connect_timeout
        self.join_timeout = join_timeout
        self.report_threshold = report_threshold
        self.snap_tolerance = snap_tolerance
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_max_attempts = reconnect_max_attempts
        self.reconnect_backoff = reconnect_backoff
        self.reconnect_backoff_max = reconnect_backoff_max

        self.state = ClientState.DISCONNECTED
        self.session = ClientSession()
        self.room = LocalRoomState()
        self.snapshot: RoomSnapshotResponse | None = None
        self.unreachable = False

        self._listeners: dict[str, list[Callable]] = {}
        self._listener_tasks: set[asyncio.Task] = set()
        self._connect_task: asyncio.Task | None = None
        self._connect_error: Any = None
        self._join_waiter: _Waiter | None = None
        self._create_waiter: asyncio.Future | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False
        self._fatal = False

        self._register_handlers()

    def _register_handlers(self) -> None:
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on(names.ROOM_CREATED, self._on_room_created)
        self.sio.on(names.ROOM_JOINED, self._on_room_joined)
        self.sio.on(names.CHAT_HISTORY, self._on_chat_history)
        self.sio.on(names.ROOM_STATE_UPDATE, self._on_room_state_update)
        self.sio.on(names.PARTICIPANT_JOINED, self._on_participant_joined)
        self.sio.on(names.PARTICIPANT_LEFT, self._on_participant_left)
        self.sio.on(names.PARTICIPANT_INACTIVE, self._on_participant_inactive)
        self.sio.on(names.VIDEO_PLAYED, self._on_video_played)
        self.sio.on(names.VIDEO_PAUSED, self._on_video_paused)
        self.sio.on(names.VIDEO_SEEKED, self._on_video_seeked)
        self.sio.on(names.SUBTITLES_TOGGLED, self._on_subtitles_toggled)
        self.sio.on(names.MESSAGE_RECEIVED, self._on_message_received)
        self.sio.on(names.REACTION_RECEIVED, self._on_reaction_received)
        self.sio.on(names.ROOM_DELETED, self._on_room_deleted)
        self.sio.on(names.ERROR, self._on_error)
        self.sio.on(names.FATAL_ERROR, self._on_fatal_error)

    # listeners

    def on(self, event: str, callback: Callable) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def _notify(self, event: str, *args) -> None:
        for callback in self._listeners.get(event, []):
            try:
                result = callback(*args)
            except Exception as e:
                logging.error(f"Listener for {event} failed: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_tasks.discard)

    # state machine

    def _set_state(self, new_state: ClientState) -> bool:
        if new_state == self.state and new_state not in TRANSITIONS[self.state]:
            return True
        if new_state not in TRANSITIONS[self.state]:
            logging.warning(f"Ignored transition {self.state.value} -> {new_state.value}")
            return False

        logging.debug(f"Agent state {self.state.value} -> {new_state.value}")
        self.state = new_state
        self._notify("state", new_state)
        return True

    # connection

    async def connect(self) -> None:
        """
        Opens the connection and authenticates. Concurrent callers share the one
        attempt in flight.
        """
        self._closing = False
        self._fatal = False
        await self._ensure_connected()

    async def _ensure_connected(self) -> None:
        if self.sio.connected and self.state != ClientState.DISCONNECTED:
            return

        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.ensure_future(self._connect())

        # a cancelled caller must not cancel the attempt the others are waiting for
        await asyncio.shield(self._connect_task)

    async def _connect(self) -> None:
        self._set_state(ClientState.CONNECTING)
        self._connect_error = None

        try:
            await asyncio.wait_for(
                self.sio.connect(
                    self.url,
                    auth={"token": self.token},
                    transports=["websocket"],
                    wait_timeout=self.connect_timeout,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            self._set_state(ClientState.DISCONNECTED)
            raise ConnectionTimeout()
        except socketio.exceptions.ConnectionError as e:
            self._set_state(ClientState.DISCONNECTED)
            raise self._connect_failure(e)

        self.unreachable = False
        self._set_state(ClientState.AUTHENTICATED)

    def _connect_failure(self, e: Exception) -> VimoSocketsError:
        code = refusal_code(self._connect_error)
        message = None
        if isinstance(self._connect_error, dict):
            message = self._connect_error.get("message")

        if code == ErrorCode.AUTH_ERROR.value:
            return AuthError(message)
        if code == ErrorCode.CONNECTION_TIMEOUT.value:
            return ConnectionTimeout(message)
        return ServerConnectionError(message or str(e))

    async def _on_connect(self):
        logging.info(f"Connected to {self.url}")

    async def _on_connect_error(self, data=None):
        logging.info(f"Connection to {self.url} refused: {data}")
        self._connect_error = data

    async def _on_disconnect(self, reason=None):
        self._stop_heartbeat()
        room_code = self.session.room_code if self.session.joined else None
        self._set_state(ClientState.DISCONNECTED)

        if self._closing or self._fatal:
            return

        logging.warning(f"Lost connection to {self.url}: {reason}")
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.ensure_future(self._reconnect(room_code))

    async def _reconnect(self, room_code: str | None) -> None:
        delay = self.reconnect_backoff

        for attempt in range(1, self.reconnect_max_attempts + 1):
            await asyncio.sleep(delay)
            if self._closing:
                return

            try:
                await self._ensure_connected()
            except AuthError as e:
                self._notify("error", e)
                return
            except ServerConnectionError as e:
                logging.warning(
                    f"Reconnect attempt {attempt}/{self.reconnect_max_attempts} failed: {e.message}"
                )
                delay = min(delay * 2, self.reconnect_backoff_max)
                continue

            if room_code:
                try:
                    await self.join(room_code)
                except VimoSocketsError as e:
                    self._notify("error", e)
            return

        self.unreachable = True
        self._notify("unreachable", self.url)

    # rooms

    async def create_room(self, movie: dict | MovieRef | None = None, is_private: bool = False,
                          subtitles_enabled: bool = False) -> RoomSnapshotResponse | None:
        """Asks the server for a new room, then joins it as its host."""
        await self._ensure_connected()

        payload: dict[str, Any] = {"isPrivate": is_private, "subtitlesEnabled": subtitles_enabled}
        if movie is not None:
            payload["movie"] = self._movie_ref(movie).to_movie().model_dump(exclude_none=True)

        self._create_waiter = asyncio.get_running_loop().create_future()
        await self.sio.emit(names.CREATE_ROOM, payload)
        try:
            room_code = await asyncio.wait_for(self._create_waiter, timeout=self.join_timeout)
        except asyncio.TimeoutError:
            raise ConnectionTimeout("Timed out waiting for the room to be created.")
        finally:
            self._create_waiter = None

        return await self.join(room_code)

    async def join(self, room_code: str) -> RoomSnapshotResponse | None:
        """
        Joins the room and waits for its snapshot. Returns None when a newer join
        superseded this one before it completed.
        """
        room_code = normalize_room_code(room_code)
        if self.state == ClientState.JOINED and self.session.room_code == room_code:
            return self.snapshot

        await self._ensure_connected()

        generation = self.session.begin(room_code)
        self._set_state(ClientState.JOINING)

        if self._join_waiter and not self._join_waiter.future.done():
            self._join_waiter.future.set_result(None)
        waiter = _Waiter(generation, room_code, asyncio.get_running_loop().create_future())
        self._join_waiter = waiter

        await self.sio.emit(names.JOIN_ROOM, {"roomCode": room_code})

        try:
            snapshot = await asyncio.wait_for(waiter.future, timeout=self.join_timeout)
        except asyncio.TimeoutError:
            if self.session.is_current(generation):
                self.session.end()
                self._set_state(ClientState.AUTHENTICATED)
            raise ConnectionTimeout(f"Timed out joining room {room_code}.")
        except VimoSocketsError:
            if self.session.is_current(generation):
                self.session.end()
                self._set_state(ClientState.AUTHENTICATED)
            raise

        if snapshot is None or not self.session.is_current(generation, room_code):
            return None
        return snapshot

    async def leave(self) -> None:
        if self.state == ClientState.DISCONNECTED and not self.sio.connected:
            self.session.end()
            self.room.reset()
            return

        self._closing = True
        self._set_state(ClientState.LEAVING)
        self._stop_heartbeat()
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()

        room_code = self.session.room_code
        self.session.end()
        if self._join_waiter and not self._join_waiter.future.done():
            self._join_waiter.future.set_result(None)

        if self.sio.connected:
            if room_code:
                await self.sio.emit(names.LEAVE_ROOM, {"roomCode": room_code})
            await self.sio.disconnect()

        self.room.reset()
        self.snapshot = None
        self._set_state(ClientState.DISCONNECTED)

    # intents

    async def _send(self, event: str, data: dict | None = None) -> bool:
        if self.state != ClientState.JOINED:
            logging.debug(f"Not sending {event}, agent is {self.state.value}")
            return False

        await self.sio.emit(event, data)
        return True

    async def _control(self, event: str, current_time: float,
                       is_playing: bool | None = None) -> bool:
        # the server checks authority again, this only saves a round trip
        if not self.room.is_host:
            return False

        sent = await self._send(event, {"roomCode": self.session.room_code,
                                        "currentTime": current_time})
        if sent:
            # the server doesn't echo control events back to their sender
            self.room.authoritative_time = current_time
            self.room.local_time = current_time
            if is_playing is not None:
                self.room.is_playing = is_playing
        return sent

    async def play(self, current_time: float) -> bool:
        return await self._control(names.PLAY, current_time, is_playing=True)

    async def pause(self, current_time: float) -> bool:
        return await self._control(names.PAUSE, current_time, is_playing=False)

    async def seek(self, current_time: float) -> bool:
        return await self._control(names.SEEK, current_time)

    @staticmethod
    def _movie_ref(movie: dict | MovieRef) -> MovieRef:
        if isinstance(movie, MovieRef):
            return movie
        try:
            return MovieRef.model_validate(movie)
        except ValidationError as e:
            raise InvalidRequest(f"Invalid movie: {e.errors()[0]['msg']}")

    async def select_video(self, movie: dict | MovieRef) -> bool:
        """
        Shows the movie locally right away, the ``room-state-update`` that follows
        replaces this guess with the stored state.
        """
        selected = self._movie_ref(movie).to_movie()
        if self.state != ClientState.JOINED:
            return False

        self.room.movie = MovieResponse.from_movie(selected)
        self.room.is_playing = False
        self.room.authoritative_time = 0.0
        self.room.local_time = 0.0
        self._notify("room", self.room)

        return await self._send(names.SELECT_VIDEO,
                                {"movie": selected.model_dump(exclude_none=True)})

    async def toggle_subtitles(self, enabled: bool) -> bool:
        sent = await self._send(names.TOGGLE_SUBTITLES, {"enabled": enabled})
        if sent:
            self.room.subtitles_enabled = enabled
        return sent

    async def send_message(self, content: str) -> bool:
        if not content or not content.strip():
            return False
        return await self._send(names.CHAT_MESSAGE, {"content": content})

    async def send_reaction(self, reaction: str) -> bool:
        return await self._send(names.SEND_REACTION, {"reaction": reaction})

    async def report_local_time(self, local_time: float) -> bool:
        """
        Records the local player position. It is reported only once it drifted
        more than the threshold from the last known server time.
        """
        self.room.local_time = local_time
        if self.state != ClientState.JOINED or self.room.movie is None:
            return False

        if abs(local_time - self.room.authoritative_time) <= self.report_threshold:
            return False

        sent = await self._send(names.TIME_REPORT, {"currentTime": local_time})
        if sent:
            self.room.authoritative_time = local_time
        return sent

    # heartbeat

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.ensure_future(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self.state != ClientState.JOINED or not self.sio.connected:
                return
            await self.sio.emit(names.HEARTBEAT)

    # authoritative updates

    def _apply_authoritative_time(self, current_time: float) -> None:
        self.room.authoritative_time = current_time
        if abs(self.room.local_time - current_time) > self.snap_tolerance:
            self.room.local_time = current_time
            self._notify("snap", current_time)

    def _is_current_room(self, room_code: str | None) -> bool:
        return room_code is not None and room_code == self.session.room_code

    async def _on_room_created(self, data):
        room_code = parse_data(data).get("roomCode")
        if self._create_waiter and not self._create_waiter.done() and room_code:
            self._create_waiter.set_result(room_code)

    async def _on_room_joined(self, data):
        snapshot = RoomSnapshotResponse.model_validate(parse_data(data))
        if not self._is_current_room(snapshot.room_code):
            logging.info(f"Discarded snapshot of room {snapshot.room_code}")
            return

        self.room.apply_snapshot(snapshot)
        self._apply_authoritative_time(snapshot.current_time)
        self.snapshot = snapshot
        self.session.joined = True
        self._set_state(ClientState.JOINED)
        self._start_heartbeat()

        waiter = self._join_waiter
        if waiter and waiter.room_code == snapshot.room_code and not waiter.future.done():
            waiter.future.set_result(snapshot)
        self._notify("room", self.room)

    async def _on_chat_history(self, data):
        messages = [ChatMessageResponse.model_validate(m) for m in data or []]
        self.room.messages = messages

    async def _on_room_state_update(self, data):
        state = RoomStateResponse.model_validate(parse_data(data))
        if not self._is_current_room(state.room_code):
            return

        self.room.apply_state(state)
        self._apply_authoritative_time(state.current_time)
        self._notify("room", self.room)

    async def _on_participant_joined(self, data):
        participant = ParticipantResponse.model_validate(parse_data(data))
        self.room.add_participant(participant)
        self._notify("participant", "joined", participant)

    async def _on_participant_left(self, data):
        participant = ParticipantResponse.model_validate(parse_data(data))
        self.room.remove_participant(participant.user_id)
        self._notify("participant", "left", participant)

    async def _on_participant_inactive(self, data):
        participant = ParticipantResponse.model_validate(parse_data(data))
        if participant.user_id in self.room.participants:
            self.room.inactive_user_ids.add(participant.user_id)
        self._notify("participant", "inactive", participant)

    async def _on_video_played(self, data):
        event = PlaybackEventResponse.model_validate(parse_data(data))
        self.room.is_playing = True
        self._apply_authoritative_time(event.current_time)
        self._notify("room", self.room)

    async def _on_video_paused(self, data):
        event = PlaybackEventResponse.model_validate(parse_data(data))
        self.room.is_playing = False
        self._apply_authoritative_time(event.current_time)
        self._notify("room", self.room)

    async def _on_video_seeked(self, data):
        event = PlaybackEventResponse.model_validate(parse_data(data))
        self._apply_authoritative_time(event.current_time)
        self._notify("room", self.room)

    async def _on_subtitles_toggled(self, data):
        self.room.subtitles_enabled = bool(parse_data(data).get("enabled"))
        self._notify("room", self.room)

    async def _on_message_received(self, data):
        message = ChatMessageResponse.model_validate(parse_data(data))
        self.room.messages.append(message)
        self._notify("message", message)

    async def _on_reaction_received(self, data):
        self._notify("reaction", ReactionResponse.model_validate(parse_data(data)))

    async def _on_room_deleted(self, data):
        room_code = parse_data(data).get("roomCode")
        if not self._is_current_room(room_code):
            return

        self._stop_heartbeat()
        self.session.end()
        self.room.reset()
        self.snapshot = None
        self._set_state(ClientState.AUTHENTICATED)
        self._notify("room-deleted", room_code)

    async def _on_error(self, data):
        error = error_from_payload(data)
        logging.info(f"Server error {error.code.value}: {error.message}")

        # a failed join or create is answered with an error instead of the response
        if self.state == ClientState.JOINING and isinstance(error, (RoomNotFound, InvalidRequest)):
            waiter = self._join_waiter
            if waiter and not waiter.future.done():
                waiter.future.set_exception(error)
        if self._create_waiter and not self._create_waiter.done() \
                and isinstance(error, (CodeSpaceExhausted, InvalidRequest)):
            self._create_waiter.set_exception(error)

        self._notify("error", error)

    async def _on_fatal_error(self, data):
        # the server disconnects right after, there is nothing to retry
        self._fatal = True
        self._notify("error", error_from_payload(data))
