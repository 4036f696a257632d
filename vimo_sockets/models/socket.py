from datetime import datetime, timedelta
from typing import Any

from pydantic import RootModel, computed_field, field_validator, model_validator

from vimo_sockets.helpers import time_now
from vimo_sockets.models.base import CamelModel
from vimo_sockets.models.database import Movie, Room, ChatMessage
from vimo_sockets.settings import ROOM_EXPIRATION_SECONDS


def normalize_room_code(room_code: str) -> str:
    return room_code.strip().upper()


class MovieRef(CamelModel):
    """
    A movie as proposed by a client. Older clients only send ``videoUrl``,
    it is folded into ``source`` here.
    """
    id: str | None = None
    title: str | None = None
    source: str | None = None
    video_url: str | None = None
    thumbnail: str | None = None
    duration: float | str | None = None

    @model_validator(mode="after")
    def require_source(self):
        self.source = (self.source or self.video_url or "").strip()
        if not self.source:
            raise ValueError("movie must have a playable source")
        return self

    def to_movie(self) -> Movie:
        return Movie(
            id=self.id or f"movie-{int(time_now().timestamp() * 1000)}",
            title=self.title or "Untitled",
            source=self.source,
            thumbnail=self.thumbnail,
            duration=self.duration,
        )


class CreateRoomRequest(CamelModel):
    movie: MovieRef | None = None
    is_private: bool = False
    subtitles_enabled: bool = False


class JoinRoomRequest(CamelModel):
    room_code: str

    @field_validator("room_code")
    @classmethod
    def normalize(cls, value: str) -> str:
        return normalize_room_code(value)


class LeaveRoomRequest(CamelModel):
    room_code: str | None = None

    @field_validator("room_code")
    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        return normalize_room_code(value) if value else None


class PlaybackRequest(CamelModel):
    room_code: str | None = None
    current_time: float

    @field_validator("room_code")
    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        return normalize_room_code(value) if value else None


class TimeReportRequest(CamelModel):
    current_time: float


class ToggleSubtitlesRequest(CamelModel):
    enabled: bool


class SelectVideoRequest(CamelModel):
    movie: MovieRef

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        # accepted shapes: {"movie": {...}}, {"movieRef": {...}} or the bare movie
        if isinstance(data, dict):
            if "movie" in data:
                return data
            if "movieRef" in data:
                return {"movie": data["movieRef"]}
            return {"movie": data}
        return data


class ChatMessageRequest(CamelModel):
    content: str


class ReactionRequest(CamelModel):
    reaction: str

    @field_validator("reaction")
    @classmethod
    def not_empty(cls, value: str) -> str:
        value = value.strip()
        if not value or len(value) > 32:
            raise ValueError("reaction must be between 1 and 32 characters")
        return value


class MovieResponse(CamelModel):
    id: str
    title: str
    source: str
    thumbnail: str | None = None
    duration: float | str | None = None

    @computed_field(alias="videoUrl")
    @property
    def video_url(self) -> str:
        return self.source

    @classmethod
    def from_movie(cls, movie: Movie | None) -> "MovieResponse | None":
        if movie is None:
            return None
        return cls.model_validate(movie.model_dump())


class ParticipantResponse(CamelModel):
    user_id: str
    username: str
    profile_picture: str | None = None
    joined_at: datetime | None = None


class RoomStateResponse(CamelModel):
    room_code: str
    host_id: str
    movie: MovieResponse | None = None
    is_private: bool
    subtitles_enabled: bool
    is_playing: bool
    current_time: float
    participants: list[ParticipantResponse]
    last_activity: datetime
    expires_at: datetime | None = None

    @classmethod
    def state_fields(cls, room: Room) -> dict:
        return dict(
            room_code=room.room_code,
            host_id=room.host_id,
            movie=MovieResponse.from_movie(room.movie),
            is_private=room.is_private,
            subtitles_enabled=room.subtitles_enabled,
            is_playing=room.is_playing,
            current_time=room.current_time,
            participants=[ParticipantResponse.model_validate(p.model_dump())
                          for p in room.participants],
            last_activity=room.last_activity,
            expires_at=room.last_activity + timedelta(seconds=ROOM_EXPIRATION_SECONDS),
        )

    @classmethod
    def from_room(cls, room: Room) -> "RoomStateResponse":
        return cls(**cls.state_fields(room))


class RoomSnapshotResponse(RoomStateResponse):
    """Full state sent to a joining connection, ``is_host`` is computed per identity."""
    is_host: bool

    @classmethod
    def for_user(cls, room: Room, user_id: str) -> "RoomSnapshotResponse":
        return cls(**cls.state_fields(room), is_host=room.is_host(user_id))


class RoomCreatedResponse(CamelModel):
    room_code: str


class RoomDeletedResponse(CamelModel):
    room_code: str


class ParticipantEventResponse(CamelModel):
    user_id: str
    username: str
    profile_picture: str | None = None


class PlaybackEventResponse(CamelModel):
    current_time: float
    actor_id: str
    username: str | None = None


class SubtitlesToggledResponse(CamelModel):
    enabled: bool
    actor_id: str


class ChatMessageResponse(CamelModel):
    id: str
    user_id: str | None = None
    sender: str
    profile_picture: str | None = None
    content: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(
            id=str(message.id),
            user_id=message.user_id,
            sender=message.sender,
            profile_picture=message.profile_picture,
            content=message.content,
            timestamp=message.created_at,
        )


class ChatHistoryResponse(RootModel[list[ChatMessageResponse]]):
    pass


class ReactionResponse(CamelModel):
    user_id: str
    username: str
    reaction: str
    timestamp: datetime


class ErrorResponse(CamelModel):
    message: str
    code: str
    body: Any = None
