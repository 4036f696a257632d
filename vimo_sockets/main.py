import asyncio

import uvicorn

# noinspection PyUnresolvedReferences
import vimo_sockets.dependencies  # Ensure dependencies are registered
from vimo_sockets import api
from vimo_sockets.core.di import container
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.debug_data import load_debug_data
from vimo_sockets.events.handlers import register_events
from vimo_sockets.helpers import configure_logging, configure_sentry, run_async_task
from vimo_sockets.settings import APP_ENV, HOST, PORT, LOG_LEVEL

# Configure logging and monitoring
configure_logging()
configure_sentry()

# Create a new event loop for a background thread
loop = asyncio.new_event_loop()


async def setup_dependencies():
    """Initialize async dependencies."""
    db = await container.get("db")

    if APP_ENV in ["dev", "local"]:
        await load_debug_data(db)

    sio_app = SocketioApplication()
    register_events(sio_app)
    # the REST layer and the sweeper reach the socket.io app through the container
    container.override("app", sio_app)

    return sio_app


# Run the async function in a separate thread
app = run_async_task(setup_dependencies(), loop=loop)

if not app:
    raise RuntimeError("SocketioApplication not initialized")

# Expose `asgi_app` for Uvicorn, everything that is not socket.io goes to the REST api
asgi_app = app.get_asgi_app(other_asgi_app=api.app)


def run() -> None:
    uvicorn.run(asgi_app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
