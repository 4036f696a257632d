import asyncio
import socket

import pytest
import uvicorn

from vimo_sockets import api
from vimo_sockets.client.agent import SyncAgent
from vimo_sockets.core.di import container
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.events.handlers import register_events
from vimo_sockets.exceptions import AuthError
from vimo_sockets.models.enums import ClientState
from vimo_sockets.registry import get_room
from tests.test_helper import TestHelper


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def _wait_until(predicate, timeout: float = 5):
    for _ in range(int(timeout / 0.02)):
        if predicate():
            return
        await asyncio.sleep(0.02)
    raise AssertionError("condition not reached in time")


async def _serve(port: int) -> tuple[SocketioApplication, uvicorn.Server, asyncio.Task]:
    sio_app = SocketioApplication()
    register_events(sio_app)
    container.override("app", sio_app)

    config = uvicorn.Config(
        sio_app.get_asgi_app(other_asgi_app=api.app),
        host="127.0.0.1",
        port=port,
        lifespan="off",
        log_level="warning",
    )
    server = uvicorn.Server(config)
    task = asyncio.ensure_future(server.serve())
    await _wait_until(lambda: server.started)
    return sio_app, server, task


def _agent(port: int, user_id: str, **kwargs) -> SyncAgent:
    kwargs.setdefault("heartbeat_interval", 3600)
    return SyncAgent(f"http://127.0.0.1:{port}", TestHelper.make_token(user_id), **kwargs)


def test_rooms_sync_over_socketio(db):
    port = _free_port()

    async def scenario():
        sio_app, server, task = await _serve(port)
        host = _agent(port, "host-1")
        guest = _agent(port, "guest-1", reconnect_backoff=0.05)
        intruder = SyncAgent(f"http://127.0.0.1:{port}", "garbage")
        try:
            with pytest.raises(AuthError):
                await intruder.connect()

            await host.connect()
            room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
            await guest.connect()
            await guest.join(room_code)

            await host.play(10)
            await host.pause(42)
            await _wait_until(lambda: guest.room.authoritative_time == 42)
            assert guest.room.is_playing is False
            assert set(guest.room.participants) == {"host-1", "guest-1"}
            await _wait_until(lambda: set(host.room.participants) == {"host-1", "guest-1"})

            # the server drops the guest, the agent comes back into the room
            await sio_app.sio.disconnect(guest.sio.get_sid())
            await _wait_until(lambda: "guest-1" in host.room.inactive_user_ids)
            await _wait_until(lambda: guest.state == ClientState.JOINED)
            await _wait_until(lambda: "guest-1" not in host.room.inactive_user_ids)
            assert guest.room.authoritative_time == 42

            room = await get_room(db, room_code)
            assert sorted(p.user_id for p in room.participants) == ["guest-1", "host-1"]
        finally:
            for agent in (guest, host, intruder):
                await agent.leave()
            server.should_exit = True
            await task

    asyncio.run(scenario())
