from datetime import datetime

from bson import ObjectId
from pydantic import Field

from vimo_sockets.models.base import PyObjectId, MyBaseModel


class Movie(MyBaseModel):
    id: str
    title: str
    # the only playable uri, aliases are generated on the way out
    source: str
    thumbnail: str | None = None
    duration: float | str | None = None


class Participant(MyBaseModel):
    user_id: str
    username: str
    profile_picture: str | None = None
    joined_at: datetime | None = None
    last_seen: datetime | None = None


class Room(MyBaseModel):
    room_code: str
    host_id: str
    movie: Movie | None = None
    is_private: bool = False
    subtitles_enabled: bool = False
    is_playing: bool = False
    current_time: float = 0
    participants: list[Participant] = []
    created_at: datetime
    last_activity: datetime

    def is_host(self, user_id: str) -> bool:
        return self.host_id == user_id

    def has_participant(self, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self.participants)


class RoomUpdate(MyBaseModel):
    """
    Partial room state. Only the fields that were explicitly set are written,
    everything else in the stored document is preserved.
    """
    movie: Movie | None = None
    is_private: bool | None = None
    subtitles_enabled: bool | None = None
    is_playing: bool | None = None
    current_time: float | None = None


class ChatMessage(MyBaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, validation_alias="_id")
    room_code: str
    user_id: str | None = None
    sender: str
    profile_picture: str | None = None
    content: str
    created_at: datetime
