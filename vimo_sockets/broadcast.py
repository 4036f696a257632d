import logging
from typing import Any

from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.helpers import get_room_name


async def broadcast(app: SocketioApplication, room_code: str, event: str, payload: Any,
                    exclude_sid: str | None = None) -> None:
    """
    Fire-and-forget emit to everybody in the room, optionally skipping the originator.
    No ack, no retry: a client that misses an event resyncs on its next join.
    """
    try:
        await app.emit(event, payload, room=get_room_name(room_code), skip_sid=exclude_sid)
    except Exception as e:
        logging.error(f"Could not broadcast {event} to room {room_code}: {e}")


async def send_to(app: SocketioApplication, sid: str, event: str, payload: Any) -> None:
    try:
        await app.emit(event, payload, room=sid)
    except Exception as e:
        logging.error(f"Could not send {event} to {sid}: {e}")
