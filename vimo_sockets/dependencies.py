from nats.aio.client import Client
from pymongo.database import Database

from vimo_sockets.core.di import register_dependency, Context, container
from vimo_sockets.exceptions import AuthError
from vimo_sockets.models.base import UserSioSession


@register_dependency("db")
async def get_database() -> Database:
    from vimo_sockets.store import get_database
    return get_database()


@register_dependency("nats")
async def get_nats() -> Client | None:
    """Publishing is optional, without NATS_HOST handlers get None."""
    import nats
    from vimo_sockets.settings import NATS_TOKEN, NATS_HOST
    if not NATS_HOST:
        return None

    options = {"token": NATS_TOKEN} if NATS_TOKEN else {}
    return await nats.connect(f"{NATS_HOST}", **options)


@register_dependency("sio_session", cache=False)
async def get_sio_session(context: Context) -> UserSioSession:
    session = await context.app.get_session(context.sid)
    if not session:
        raise AuthError("No socket session found")

    return session


async def get_db() -> Database:
    """FastAPI dependency, shares the database instance with the socket handlers."""
    return await container.get("db")


async def get_nats_client() -> Client | None:
    return await container.get("nats")
