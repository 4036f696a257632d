from pymongo.database import Database

from vimo_sockets.helpers import time_now
from vimo_sockets.models.database import Movie, Room, ChatMessage, Participant
from vimo_sockets.settings import DEBUG_ROOM_CODE, DEBUG_HOST_ID

SAMPLE_MOVIES = [
    Movie(
        id="movie1",
        title="Big Buck Bunny",
        source="https://sample-videos.com/video123/mp4/720/big_buck_bunny_720p_1mb.mp4",
        thumbnail="https://sample-videos.com/img/Sample-png-image-500kb.png",
        duration="9:56",
    ),
    Movie(
        id="movie2",
        title="Sintel",
        source="https://sample-videos.com/video123/mp4/720/sintel_trailer_720p.mp4",
        thumbnail="https://sample-videos.com/img/Sample-jpg-image-500kb.jpg",
        duration="5:14",
    ),
    Movie(
        id="movie3",
        title="Tears of Steel",
        source="https://sample-videos.com/video123/mp4/720/tears_of_steel_720p_1mb.mp4",
        thumbnail="https://sample-videos.com/img/Sample-jpg-image-200kb.jpg",
        duration="12:14",
    ),
    Movie(
        id="movie4",
        title="Elephant's Dream",
        source="https://sample-videos.com/video123/mp4/720/elephants_dream_720p_1mb.mp4",
        thumbnail="https://sample-videos.com/img/Sample-jpg-image-100kb.jpg",
        duration="10:53",
    ),
]


async def load_debug_data(db: Database):
    """
    Seeds a room with a fixed code so clients can be tried without creating one.
    Re-running it resets the room.
    """
    now = time_now()

    host = Participant(
        user_id=DEBUG_HOST_ID,
        username="debug-host",
        joined_at=now,
        last_seen=now,
    )
    room = Room(
        room_code=DEBUG_ROOM_CODE,
        host_id=DEBUG_HOST_ID,
        movie=SAMPLE_MOVIES[0],
        participants=[host],
        created_at=now,
        last_activity=now,
    )

    db.rooms.replace_one({"room_code": room.room_code}, room.model_dump(), upsert=True)
    db.chat_messages.delete_many({"room_code": room.room_code})

    chat_messages = [
        "Hey everybody!",
        "Grab some popcorn, starting in a minute.",
    ]

    for content in chat_messages:
        msg = ChatMessage(
            room_code=room.room_code,
            user_id=None,
            sender="System",
            content=content,
            created_at=now,
        )
        document = msg.model_dump(exclude={"id"}, exclude_none=True)
        document["_id"] = msg.id
        db.chat_messages.insert_one(document)
