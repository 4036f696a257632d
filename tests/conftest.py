import mongomock
import pytest

# noinspection PyUnresolvedReferences
import vimo_sockets.dependencies  # Ensure dependencies are registered
from vimo_sockets.core.di import container
from vimo_sockets.core.room_locks import room_locks
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.events.handlers import register_events
from vimo_sockets.store import ensure_indexes
from tests.test_helper import FakeSioServer


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["vimo_sockets_test"]
    ensure_indexes(database)

    container.override("db", database)
    container.override("nats", None)
    room_locks.reset()

    yield database

    container.reset()
    room_locks.reset()


@pytest.fixture
def server():
    return FakeSioServer()


@pytest.fixture
def app(db, server):
    sio_app = SocketioApplication(sio=server)
    register_events(sio_app)
    container.override("app", sio_app)
    return sio_app
