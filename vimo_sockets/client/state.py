from dataclasses import dataclass, field

from vimo_sockets.models.socket import (
    MovieResponse, ParticipantResponse, ChatMessageResponse, RoomStateResponse,
    RoomSnapshotResponse,
)


@dataclass
class ClientSession:
    """
    Which room the agent is trying to be in, and since which attempt.

    Every join starts a new generation. A response that belongs to an older
    generation, or to another room code, is stale and must not be applied.
    """
    generation: int = 0
    room_code: str | None = None
    joined: bool = False

    def begin(self, room_code: str) -> int:
        self.generation += 1
        self.room_code = room_code
        self.joined = False
        return self.generation

    def end(self) -> None:
        self.generation += 1
        self.room_code = None
        self.joined = False

    def is_current(self, generation: int, room_code: str | None = None) -> bool:
        if generation != self.generation:
            return False
        return room_code is None or room_code == self.room_code


@dataclass
class LocalRoomState:
    room_code: str | None = None
    host_id: str | None = None
    is_host: bool = False
    movie: MovieResponse | None = None
    is_playing: bool = False
    subtitles_enabled: bool = False
    # last time the server stated, and where the local player is
    authoritative_time: float = 0.0
    local_time: float = 0.0
    # keyed by user id, a participant can't appear twice
    participants: dict[str, ParticipantResponse] = field(default_factory=dict)
    inactive_user_ids: set[str] = field(default_factory=set)
    messages: list[ChatMessageResponse] = field(default_factory=list)

    def apply_state(self, state: RoomStateResponse) -> None:
        self.room_code = state.room_code
        self.host_id = state.host_id
        self.movie = state.movie
        self.is_playing = state.is_playing
        self.subtitles_enabled = state.subtitles_enabled
        self.participants = {p.user_id: p for p in state.participants}
        self.inactive_user_ids &= set(self.participants)

    def apply_snapshot(self, snapshot: RoomSnapshotResponse) -> None:
        if snapshot.room_code != self.room_code:
            self.messages = []
            self.inactive_user_ids = set()
        self.apply_state(snapshot)
        self.is_host = snapshot.is_host

    def add_participant(self, participant: ParticipantResponse) -> None:
        self.participants[participant.user_id] = participant
        self.inactive_user_ids.discard(participant.user_id)

    def remove_participant(self, user_id: str) -> None:
        self.participants.pop(user_id, None)
        self.inactive_user_ids.discard(user_id)

    def reset(self) -> None:
        self.room_code = None
        self.host_id = None
        self.is_host = False
        self.movie = None
        self.is_playing = False
        self.subtitles_enabled = False
        self.authoritative_time = 0.0
        self.local_time = 0.0
        self.participants = {}
        self.inactive_user_ids = set()
        self.messages = []
