from enum import Enum


class ErrorCode(Enum):
    AUTH_ERROR = "AUTH_ERROR"
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    NOT_IN_ROOM = "NOT_IN_ROOM"
    INVALID_REQUEST = "INVALID_REQUEST"
    CODE_SPACE_EXHAUSTED = "CODE_SPACE_EXHAUSTED"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ClientState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"
