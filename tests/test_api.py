import asyncio

import pytest
from fastapi.testclient import TestClient

from vimo_sockets import membership, playback
from vimo_sockets.api import app as api_app
from vimo_sockets.events import names
from vimo_sockets.helpers import get_room_name
from tests.test_helper import TestHelper


@pytest.fixture
def client(app):
    return TestClient(api_app)


def _auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {TestHelper.make_token(user_id)}"}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_room(client):
    body = {"movie": TestHelper.make_movie(1), "subtitlesEnabled": True}

    response = client.post("/api/rooms", json=body, headers=_auth("host-1"))

    assert response.status_code == 201
    room = response.json()
    assert len(room["roomCode"]) == 6
    assert room["hostId"] == "host-1"
    assert room["subtitlesEnabled"] is True
    assert room["isPlaying"] is False
    assert room["currentTime"] == 0
    assert room["movie"]["videoUrl"] == room["movie"]["source"]


def test_create_room_requires_token(client):
    response = client.post("/api/rooms", json={})

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_ERROR"


def test_create_room_rejects_movie_without_source(client):
    response = client.post("/api/rooms", json={"movie": {"title": "nothing to play"}},
                           headers=_auth("host-1"))

    assert response.status_code == 422


def test_get_room(client):
    created = client.post("/api/rooms", json={}, headers=_auth("host-1")).json()

    response = client.get(f"/api/rooms/{created['roomCode'].lower()}", headers=_auth("guest-1"))

    assert response.status_code == 200
    assert response.json()["roomCode"] == created["roomCode"]


def test_get_missing_room(client):
    response = client.get("/api/rooms/NOPE00", headers=_auth("guest-1"))

    assert response.status_code == 404
    assert response.json()["code"] == "ROOM_NOT_FOUND"


def test_only_host_deletes_room(client, app, db, server):
    room_code = client.post("/api/rooms", json={}, headers=_auth("host-1")).json()["roomCode"]

    guest = TestHelper.make_identity("guest-1")
    guest_sid = asyncio.run(server.add_connection(guest))
    asyncio.run(membership.join(app, db, guest_sid, guest, room_code))

    response = client.delete(f"/api/rooms/{room_code}", headers=_auth("guest-1"))
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_AUTHORIZED"

    response = client.delete(f"/api/rooms/{room_code}", headers=_auth("host-1"))
    assert response.status_code == 200
    assert db.rooms.count_documents({"room_code": room_code}) == 0
    assert server.received(guest_sid, names.ROOM_DELETED) == [{"roomCode": room_code}]
    assert get_room_name(room_code) not in server.rooms

    assert client.get(f"/api/rooms/{room_code}", headers=_auth("host-1")).status_code == 404


def test_list_room_messages(client, app, db, server):
    room_code = client.post("/api/rooms", json={}, headers=_auth("host-1")).json()["roomCode"]

    host = TestHelper.make_identity("host-1")
    host_sid = asyncio.run(server.add_connection(host))
    asyncio.run(membership.join(app, db, host_sid, host, room_code))
    for content in ("one", "two", "three"):
        asyncio.run(playback.send_message(app, db, room_code, host, content))

    response = client.get(f"/api/rooms/{room_code}/messages?limit=2", headers=_auth("host-1"))

    assert response.status_code == 200
    assert [m["content"] for m in response.json()] == ["two", "three"]
