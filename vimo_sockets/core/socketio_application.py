import inspect
import json
import logging
from functools import wraps
from typing import Any, Optional

import socketio
from pydantic import ValidationError, BaseModel
from socketio.exceptions import ConnectionRefusedError

from vimo_sockets.core.di import container, Context, Dependency
from vimo_sockets.exceptions import VimoSocketsError, AuthError
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.enums import ErrorCode
from vimo_sockets.settings import REDIS_CONNECTION_STRING, LOG_LEVEL, SIO_ADMIN_USERNAME, \
    SIO_ADMIN_PASSWORD, APP_ENV, USE_REDIS_MANAGER, CORS_ALLOWED_ORIGINS

# events that run before a session exists or after it is gone
SESSIONLESS_EVENTS = ("connect", "disconnect")


class SocketioApplication:
    def __init__(self, sio: socketio.AsyncServer | None = None):
        if sio is None:
            sio = self._create_server()
        self.sio = sio

    @staticmethod
    def _create_server() -> socketio.AsyncServer:
        enable_socketio_logger = LOG_LEVEL.upper() == "DEBUG"

        # the in-memory manager is enough for one process, redis fans out across workers
        mgr = socketio.AsyncRedisManager(REDIS_CONNECTION_STRING) if USE_REDIS_MANAGER else None

        if CORS_ALLOWED_ORIGINS == "*":
            cors_allowed_origins = "*"
        else:
            cors_allowed_origins = [o.strip() for o in CORS_ALLOWED_ORIGINS.split(",")]

        sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=cors_allowed_origins,
            client_manager=mgr,
            logger=enable_socketio_logger,
            engineio_logger=enable_socketio_logger,
        )
        if APP_ENV != "prod" and SIO_ADMIN_USERNAME:
            sio.instrument(
                auth={
                    'username': SIO_ADMIN_USERNAME,
                    'password': SIO_ADMIN_PASSWORD
                }
            )
        return sio

    async def resolve_dependency(self, dep: Dependency, sid: str) -> Any:
        """Resolves a ``Depends`` marker, "app" is always this application"""
        if dep.key == "app":
            return self

        return await container.get(dep.key, Context(sid=sid, app=self))

    async def _bind_arguments(self, event_name: str, sig: inspect.Signature, sid: str,
                              data: Any, args: tuple) -> dict | None:
        """
        Builds the handler's keyword arguments. Returns None when the request was
        rejected and the caller was already told why.
        """
        arguments = {}
        for name, param in sig.parameters.items():
            if name == "sid":
                arguments[name] = sid
            elif name == "environ" and event_name == "connect":
                arguments[name] = data
            elif name == "auth" and event_name == "connect":
                arguments[name] = args[0] if args else None
            elif name == "reason" and event_name == "disconnect":
                arguments[name] = data
            elif name == "data":
                annotation = param.annotation
                if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
                    try:
                        if isinstance(data, str):
                            arguments[name] = annotation.model_validate_json(data)
                        else:
                            arguments[name] = annotation.model_validate(
                                data if data is not None else {}
                            )
                    except ValidationError as e:
                        await self.send_error_message(
                            sid,
                            f"Invalid request for model: {annotation.__name__}",
                            ErrorCode.INVALID_REQUEST,
                            json.loads(e.json()),
                        )
                        return None
                else:
                    arguments[name] = data
            elif isinstance(param.default, Dependency):
                try:
                    arguments[name] = await self.resolve_dependency(param.default, sid)
                except VimoSocketsError:
                    raise
                except Exception as e:
                    logging.error(f"Error resolving dependency {name} for {event_name}: {e}")
                    await self.send_error_message(
                        sid,
                        f"Error resolving dependency: {name}",
                        ErrorCode.INTERNAL_ERROR,
                        str(e),
                    )
                    return None
        return arguments

    def event(self, event_name: str):
        """
        Registers ``func`` for ``event_name`` behind a wrapper that checks the
        connection is authenticated, validates the payload into the handler's
        pydantic model and injects ``Depends`` arguments.

        Domain errors raised by the handler are sent back to the caller as ``error``,
        an ``AuthError`` or anything unexpected ends the connection with ``fatal-error``.
        """

        def decorator(func: Any):
            sig = inspect.signature(func)

            @wraps(func)
            async def wrapper(sid: str, data=None, *args):
                try:
                    if event_name not in SESSIONLESS_EVENTS:
                        session = await self.get_session(sid)
                        if not session:
                            await self.send_fatal_error_message(
                                sid,
                                "Unauthorized: no identity bound to this connection",
                                ErrorCode.AUTH_ERROR,
                            )
                            return

                    arguments = await self._bind_arguments(event_name, sig, sid, data, args)
                    if arguments is None:
                        return

                    return await func(**arguments)
                except ConnectionRefusedError:
                    raise
                except AuthError as e:
                    await self.send_fatal_error_message(sid, e.message, e.code)
                except VimoSocketsError as e:
                    logging.info(f"{event_name} rejected for {sid}: {e.code.value} {e.message}")
                    await self.send_error_message(sid, e.message, e.code)
                except Exception as e:
                    await self.send_fatal_error_message(
                        sid, f"An unexpected error occurred: {str(e)}"
                    )
                    raise

            self.sio.on(event_name, wrapper)
            return func

        return decorator

    def get_asgi_app(self, other_asgi_app=None) -> socketio.ASGIApp:
        return socketio.ASGIApp(self.sio, other_asgi_app=other_asgi_app)

    async def get_session(self, sid) -> Optional[UserSioSession]:
        try:
            session_dict = await self.sio.get_session(sid)
        except KeyError:
            return None

        if not session_dict:
            return None

        try:
            return UserSioSession.model_validate(session_dict)
        except ValidationError as e:
            logging.warning(
                f"Could not validate UserSioSession {e.errors()} for sid {sid}. "
                + f"Raw session: {session_dict}"
            )
            return None

    async def save_session(self, sid: str, session: UserSioSession) -> None:
        await self.sio.save_session(sid, session.model_dump())

    async def emit(self, event: str, data: Any, room: Optional[str] = None,
                   skip_sid: Optional[str] = None) -> None:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode='json', by_alias=True)
        await self.sio.emit(event, data, room=room, skip_sid=skip_sid)

    async def send_error_message(self, sid: str, message: str,
                                 code: ErrorCode = ErrorCode.INTERNAL_ERROR,
                                 body: Any = None) -> None:
        if body is None:
            body = {}
        await self.sio.emit(
            "error", {"message": message, "code": code.value, "body": body}, room=sid
        )
        logging.debug(f"Emitting error message to {sid}: {message}")

    async def send_fatal_error_message(self, sid: str, message: str,
                                       code: ErrorCode = ErrorCode.INTERNAL_ERROR,
                                       body: Any = None) -> None:
        if body is None:
            body = {}
        await self.sio.emit(
            "fatal-error", {"message": message, "code": code.value, "body": body}, room=sid
        )
        logging.debug(f"Emitting fatal error message to {sid}: {message}")
        await self.sio.disconnect(sid)

    async def enter_room(self, sid: str, room: str) -> None:
        await self.sio.enter_room(sid, room)

    async def leave_room(self, sid: str, room: str) -> None:
        await self.sio.leave_room(sid, room)

    async def close_room(self, room: str) -> None:
        await self.sio.close_room(room)
