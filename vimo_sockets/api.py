import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from nats.aio.client import Client
from pymongo.database import Database

from vimo_sockets.auth import authenticate
from vimo_sockets.broadcast import broadcast
from vimo_sockets.core.di import container
from vimo_sockets.core.room_locks import room_locks
from vimo_sockets.core.socketio_application import SocketioApplication
from vimo_sockets.dependencies import get_db, get_nats_client
from vimo_sockets.events import names
from vimo_sockets.exceptions import VimoSocketsError, NotAuthorized
from vimo_sockets.helpers import configure_logging, get_room_name
from vimo_sockets.models.base import UserSioSession
from vimo_sockets.models.enums import ErrorCode
from vimo_sockets.models.socket import (
    CreateRoomRequest, RoomStateResponse, RoomDeletedResponse, ChatHistoryResponse,
    ChatMessageResponse,
)
from vimo_sockets.registry import create_room, get_room, delete_room
from vimo_sockets.settings import CHAT_HISTORY_LIMIT, CORS_ALLOWED_ORIGINS
from vimo_sockets.store import get_chat_messages_by_room_code
from vimo_sockets.sweeper import run_sweeper

configure_logging()

ERROR_STATUS_CODES = {
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.ROOM_NOT_FOUND: 404,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.NOT_IN_ROOM: 403,
    ErrorCode.INVALID_REQUEST: 422,
    ErrorCode.CODE_SPACE_EXHAUSTED: 503,
    ErrorCode.CONNECTION_ERROR: 503,
    ErrorCode.CONNECTION_TIMEOUT: 504,
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # the socket.io app is pinned into the container by main before serving
    sio_app = await container.get("app")
    db = await container.get("db")
    nc = await container.get("nats")

    sweeper = asyncio.create_task(run_sweeper(sio_app, db, nc))
    yield
    sweeper.cancel()


app = FastAPI(lifespan=lifespan)
# noinspection PyTypeChecker
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if CORS_ALLOWED_ORIGINS == "*" else CORS_ALLOWED_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer = HTTPBearer(auto_error=False)


@app.exception_handler(VimoSocketsError)
async def vimo_sockets_error_handler(_request: Request, exc: VimoSocketsError):
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.code, 500),
        content={"message": exc.message, "code": exc.code.value},
    )


async def get_identity(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> UserSioSession:
    token = credentials.credentials if credentials else None
    return await authenticate(token)


async def get_sio_app() -> SocketioApplication:
    return await container.get("app")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/api/rooms", status_code=201)
async def create_room_endpoint(
        data: CreateRoomRequest,
        identity: UserSioSession = Depends(get_identity),
        db: Database = Depends(get_db),
        nc: Client | None = Depends(get_nats_client),
) -> dict:
    room = await create_room(
        db,
        identity,
        movie=data.movie.to_movie() if data.movie else None,
        is_private=data.is_private,
        subtitles_enabled=data.subtitles_enabled,
        nc=nc,
    )
    return RoomStateResponse.from_room(room).model_dump(mode="json", by_alias=True)


@app.get("/api/rooms/{room_code}")
async def get_room_endpoint(
        room_code: str,
        _identity: UserSioSession = Depends(get_identity),
        db: Database = Depends(get_db),
) -> dict:
    room = await get_room(db, room_code)
    return RoomStateResponse.from_room(room).model_dump(mode="json", by_alias=True)


@app.delete("/api/rooms/{room_code}")
async def delete_room_endpoint(
        room_code: str,
        identity: UserSioSession = Depends(get_identity),
        db: Database = Depends(get_db),
        nc: Client | None = Depends(get_nats_client),
        sio_app: SocketioApplication = Depends(get_sio_app),
) -> dict:
    room = await get_room(db, room_code)
    if not room.is_host(identity.user_id):
        raise NotAuthorized("Only the host can delete the room.")

    async with room_locks.get(room.room_code):
        await delete_room(db, room.room_code, nc)
    room_locks.discard(room.room_code)

    await broadcast(sio_app, room.room_code, names.ROOM_DELETED,
                    RoomDeletedResponse(room_code=room.room_code))
    await sio_app.close_room(get_room_name(room.room_code))
    logging.info(f"Room {room.room_code} deleted by host {identity.user_id}")

    return {"roomCode": room.room_code, "deleted": True}


@app.get("/api/rooms/{room_code}/messages")
async def list_room_messages(
        room_code: str,
        limit: int = CHAT_HISTORY_LIMIT,
        _identity: UserSioSession = Depends(get_identity),
        db: Database = Depends(get_db),
) -> list:
    room = await get_room(db, room_code)
    messages = await get_chat_messages_by_room_code(db, room.room_code, limit)
    history = ChatHistoryResponse(root=[ChatMessageResponse.from_message(m) for m in messages])
    return history.model_dump(mode="json", by_alias=True)
