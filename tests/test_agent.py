import asyncio

import pytest

from vimo_sockets.client.agent import SyncAgent, refusal_code, error_from_payload
from vimo_sockets.client.state import ClientSession
from vimo_sockets.events import names
from vimo_sockets.exceptions import AuthError, RoomNotFound, InvalidRequest, NotAuthorized
from vimo_sockets.models.enums import ClientState
from vimo_sockets.registry import get_room
from tests.test_helper import TestHelper, FakeSioClient


def test_client_session_generations():
    session = ClientSession()
    first = session.begin("ROOM01")
    second = session.begin("ROOM02")

    assert not session.is_current(first)
    assert session.is_current(second)
    assert session.is_current(second, "ROOM02")
    assert not session.is_current(second, "ROOM01")

    session.end()
    assert session.room_code is None
    assert not session.is_current(second)


def test_refusal_code_shapes():
    assert refusal_code({"message": "no", "data": {"code": "AUTH_ERROR"}}) == "AUTH_ERROR"
    assert refusal_code({"message": "no", "code": "AUTH_ERROR"}) == "AUTH_ERROR"
    assert refusal_code("Connection rejected by server") is None
    assert isinstance(error_from_payload({"message": "x", "code": "NOT_AUTHORIZED"}),
                      NotAuthorized)


def test_concurrent_connects_share_one_attempt(app, server):
    async def scenario():
        agent = await TestHelper.make_agent(server, "user-1", connect=False)

        await asyncio.gather(agent.connect(), agent.connect(), agent.connect())

        assert agent.sio.connect_calls == 1
        assert agent.state == ClientState.AUTHENTICATED
        assert len(server.connected) == 1

    asyncio.run(scenario())


def test_bad_token_is_auth_error(app, server):
    async def scenario():
        client = FakeSioClient(server)
        agent = SyncAgent("http://testserver", "garbage", sio_client=client)

        with pytest.raises(AuthError):
            await agent.connect()

        assert agent.state == ClientState.DISCONNECTED
        assert server.connected == set()

    asyncio.run(scenario())


def test_create_and_join_shares_roster(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        snapshot = await host.create_room(TestHelper.make_movie(1))

        room_code = snapshot.room_code
        assert len(room_code) == 6 and room_code.isalnum() and room_code.isupper()
        assert host.room.is_host is True
        assert host.state == ClientState.JOINED

        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code.lower())
        await server.settle()

        assert guest.room.is_host is False
        assert set(host.room.participants) == {"host-1", "guest-1"}
        assert set(guest.room.participants) == {"host-1", "guest-1"}
        assert guest.room.movie.video_url == guest.room.movie.source

    asyncio.run(scenario())


def test_join_same_room_twice_is_noop(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        first = await host.create_room()

        again = await host.join(first.room_code)

        assert again is first
        assert len(host.sio.emitted_events(names.JOIN_ROOM)) == 1

    asyncio.run(scenario())


def test_join_missing_room(app, server):
    async def scenario():
        agent = await TestHelper.make_agent(server, "user-1")

        with pytest.raises(RoomNotFound):
            await agent.join("NOPE00")

        assert agent.state == ClientState.AUTHENTICATED
        assert agent.session.room_code is None

    asyncio.run(scenario())


def test_superseded_join_is_discarded(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        first = (await host.create_room()).room_code
        # creating again moves the host to the new room
        second = (await host.create_room()).room_code
        await server.settle()

        guest = await TestHelper.make_agent(server, "guest-1")
        stale = asyncio.ensure_future(guest.join(first))
        await asyncio.sleep(0)
        current = await guest.join(second)
        await server.settle()

        assert await stale is None
        assert current.room_code == second
        assert guest.room.room_code == second
        assert guest.state == ClientState.JOINED

        # the server moved the connection, it is only on the second roster
        assert (await get_room(db, first)).participants == []
        assert {p.user_id for p in (await get_room(db, second)).participants} == {
            "host-1", "guest-1"}

    asyncio.run(scenario())


def test_pause_reaches_others_and_late_joiner(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)

        await host.play(10)
        assert await host.pause(42) is True
        await server.settle()

        assert guest.room.is_playing is False
        assert guest.room.authoritative_time == 42
        assert guest.sio.handler_errors == []

        late = await TestHelper.make_agent(server, "late-1")
        snapshot = await late.join(room_code)

        assert snapshot.is_playing is False
        assert snapshot.current_time == 42
        assert late.room.local_time == 42

    asyncio.run(scenario())


def test_guest_cannot_drive_playback(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)

        errors = []
        guest.on("error", errors.append)

        # filtered locally
        assert await guest.play(10) is False
        assert guest.sio.emitted_events(names.PLAY) == []

        # and refused by the server when sent anyway
        await guest.sio.emit(names.PLAY, {"roomCode": room_code, "currentTime": 10})
        await server.settle()

        room = await get_room(db, room_code)
        assert room.is_playing is False
        assert room.current_time == 0
        assert server.emitted_events(names.VIDEO_PLAYED) == []
        assert [type(e) for e in errors] == [NotAuthorized]

    asyncio.run(scenario())


def test_time_report_threshold(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        await host.seek(100.5)

        assert await host.report_local_time(100) is False
        assert host.sio.emitted_events(names.TIME_REPORT) == []

        assert await host.report_local_time(104) is True
        assert host.sio.emitted_events(names.TIME_REPORT) == [{"currentTime": 104}]
        # the reported time is the new reference
        assert await host.report_local_time(105) is False

        assert (await get_room(db, room_code)).current_time == 104

    asyncio.run(scenario())


def test_guest_reports_drift_once(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        await host.seek(100)
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)
        assert guest.room.authoritative_time == 100
        emitted_before = len(server.emitted)

        assert await guest.report_local_time(100.5) is False
        assert await guest.report_local_time(104) is True
        assert await guest.report_local_time(104.5) is False
        assert guest.sio.emitted_events(names.TIME_REPORT) == [{"currentTime": 104}]

        room = await get_room(db, room_code)
        assert room.current_time == 104
        assert room.is_playing is False
        # a report is never broadcast
        assert len(server.emitted) == emitted_before

    asyncio.run(scenario())


def test_snap_only_beyond_tolerance(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)
        snaps = []
        guest.on("snap", snaps.append)

        guest.room.local_time = 41.8
        await host.seek(42)
        await server.settle()
        assert snaps == []
        assert guest.room.local_time == 41.8

        await host.seek(90)
        await server.settle()
        assert snaps == [90]
        assert guest.room.local_time == 90

    asyncio.run(scenario())


def test_select_video_is_optimistic_then_reconciled(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room(TestHelper.make_movie(1))).room_code
        await host.play(300)
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)

        legacy_movie = {"id": "movie2", "title": "Sintel", "videoUrl": "https://v.example/s.mp4"}
        assert await guest.select_video(legacy_movie) is True
        # applied before the server answered
        assert guest.room.movie.id == "movie2"
        assert guest.room.movie.source == "https://v.example/s.mp4"

        await server.settle()
        for agent in (host, guest):
            assert agent.room.movie.id == "movie2"
            assert agent.room.movie.video_url == agent.room.movie.source
            assert agent.room.is_playing is False
            assert agent.room.authoritative_time == 0

        with pytest.raises(InvalidRequest):
            await guest.select_video({"title": "no source"})

    asyncio.run(scenario())


def test_chat_and_reactions(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room()).room_code
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)
        reactions = []
        host.on("reaction", reactions.append)

        await guest.send_message("hi all")
        await guest.send_reaction("👏")
        await server.settle()

        assert [m.content for m in host.room.messages] == ["hi all"]
        assert [m.content for m in guest.room.messages] == ["hi all"]
        assert [r.reaction for r in reactions] == ["👏"]

        late = await TestHelper.make_agent(server, "late-1")
        await late.join(room_code)
        await server.settle()
        assert [m.content for m in late.room.messages] == ["hi all"]

    asyncio.run(scenario())


def test_leave_goes_through_leaving(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room()).room_code
        guest = await TestHelper.make_agent(server, "guest-1")
        await guest.join(room_code)
        states = []
        guest.on("state", states.append)

        await guest.leave()
        await server.settle()

        assert states == [ClientState.LEAVING, ClientState.DISCONNECTED]
        assert guest.room.participants == {}
        assert set(host.room.participants) == {"host-1"}
        room = await get_room(db, room_code)
        assert [p.user_id for p in room.participants] == ["host-1"]
        # leaving is not a transport drop
        assert guest.sio.connect_calls == 1

    asyncio.run(scenario())


def test_reconnect_replays_join(app, db, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room()).room_code
        guest = await TestHelper.make_agent(server, "guest-1", reconnect_backoff=0.01)
        await guest.join(room_code)

        await server.drop(guest.sio.sid)
        await server.settle()

        for _ in range(20):
            if guest.state == ClientState.JOINED:
                break
            await asyncio.sleep(0.02)
        await server.settle()

        assert guest.state == ClientState.JOINED
        assert guest.sio.connect_calls == 2
        room = await get_room(db, room_code)
        assert sorted(p.user_id for p in room.participants) == ["guest-1", "host-1"]
        assert "guest-1" not in host.room.inactive_user_ids

    asyncio.run(scenario())


def test_reconnect_gives_up(app, server):
    async def scenario():
        host = await TestHelper.make_agent(server, "host-1")
        room_code = (await host.create_room()).room_code
        guest = await TestHelper.make_agent(server, "guest-1", reconnect_backoff=0.01,
                                            reconnect_backoff_max=0.02,
                                            reconnect_max_attempts=3)
        await guest.join(room_code)
        unreachable = []
        guest.on("unreachable", unreachable.append)

        guest.sio.fail_connects = 10
        await server.drop(guest.sio.sid)
        await server.settle()
        assert "guest-1" in host.room.inactive_user_ids

        for _ in range(20):
            if guest.unreachable:
                break
            await asyncio.sleep(0.02)

        assert guest.unreachable is True
        assert unreachable == ["http://testserver"]
        assert guest.sio.connect_calls == 4
        assert guest.state == ClientState.DISCONNECTED

    asyncio.run(scenario())
