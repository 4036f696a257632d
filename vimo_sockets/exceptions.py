from vimo_sockets.models.enums import ErrorCode


class VimoSocketsError(Exception):
    """Base for errors that are reported to the client as an ``error`` event."""
    code = ErrorCode.INTERNAL_ERROR
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(VimoSocketsError):
    """Bad, missing or expired token. The client must re-authenticate instead of retrying."""
    code = ErrorCode.AUTH_ERROR
    default_message = "Authentication failed."


class RoomNotFound(VimoSocketsError):
    code = ErrorCode.ROOM_NOT_FOUND
    default_message = "Room not found."

    def __init__(self, room_code: str | None = None, message: str | None = None):
        self.room_code = room_code
        if message is None and room_code:
            message = f"Room {room_code} not found."
        super().__init__(message)


class NotAuthorized(VimoSocketsError):
    code = ErrorCode.NOT_AUTHORIZED
    default_message = "Only the host can control playback."


class NotInRoom(VimoSocketsError):
    code = ErrorCode.NOT_IN_ROOM
    default_message = "You are not in any room."


class InvalidRequest(VimoSocketsError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid request."


class CodeSpaceExhausted(VimoSocketsError):
    code = ErrorCode.CODE_SPACE_EXHAUSTED
    default_message = "Could not allocate a unique room code."


class ServerConnectionError(VimoSocketsError, ConnectionError):
    """Transient transport failure, eligible for retry with backoff."""
    code = ErrorCode.CONNECTION_ERROR
    default_message = "Can't reach the server."


class ConnectionTimeout(ServerConnectionError):
    code = ErrorCode.CONNECTION_TIMEOUT
    default_message = "Timed out while connecting."
