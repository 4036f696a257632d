import logging
from datetime import datetime

from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

from vimo_sockets.models.database import Room, Participant, ChatMessage
from vimo_sockets.settings import (
    MONGO_PORT,
    MONGO_HOST,
    MONGO_USER,
    MONGO_PASSWORD,
    MONGO_DB,
)


def ensure_indexes(db: Database):
    db.rooms.create_index("room_code", unique=True)
    db.rooms.create_index("last_activity")
    db.rooms.create_index("participants.user_id")
    db.chat_messages.create_index([("room_code", 1), ("created_at", 1)])


def get_database():
    connection_url = (
        f"mongodb://{MONGO_USER}:{MONGO_PASSWORD}@{MONGO_HOST}:{MONGO_PORT}"
    )
    client = MongoClient(connection_url)
    db = client[MONGO_DB]

    # set logging level to INFO so it's not too verbose
    logging.getLogger('pymongo').setLevel(logging.INFO)

    ensure_indexes(db)
    return db


async def insert_room(db: Database, room: Room):
    """Raises DuplicateKeyError if the room code is taken."""
    return db.rooms.insert_one(room.model_dump())


async def get_room_by_code(db: Database, room_code: str) -> dict | None:
    return db.rooms.find_one({"room_code": room_code})


async def update_room_by_code(db: Database, room_code: str, fields: dict) -> dict | None:
    return db.rooms.find_one_and_update(
        {"room_code": room_code},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )


async def delete_room_by_code(db: Database, room_code: str) -> int:
    result = db.rooms.delete_one({"room_code": room_code})
    return result.deleted_count


async def push_participant(db: Database, room_code: str, participant: Participant,
                           now: datetime) -> bool:
    """
    Appends the participant unless a participant with the same user_id is already there.
    The check and the push are one document update, so concurrent joins can't duplicate.
    """
    result = db.rooms.update_one(
        {"room_code": room_code, "participants.user_id": {"$ne": participant.user_id}},
        {
            "$push": {"participants": participant.model_dump()},
            "$set": {"last_activity": now},
        },
    )
    return result.modified_count == 1


async def touch_participant(db: Database, room_code: str, user_id: str, now: datetime) -> bool:
    result = db.rooms.update_one(
        {"room_code": room_code, "participants.user_id": user_id},
        {"$set": {"participants.$.last_seen": now}},
    )
    return result.matched_count == 1


async def pull_participant(db: Database, room_code: str, user_id: str,
                           now: datetime | None = None) -> bool:
    update = {"$pull": {"participants": {"user_id": user_id}}}
    if now is not None:
        update["$set"] = {"last_activity": now}

    result = db.rooms.update_one(
        {"room_code": room_code, "participants.user_id": user_id},
        update,
    )
    return result.modified_count == 1


async def get_rooms_with_stale_participants(db: Database, cutoff: datetime) -> list[dict]:
    return list(db.rooms.find({"participants.last_seen": {"$lt": cutoff}}))


async def get_expired_room_codes(db: Database, cutoff: datetime) -> list[str]:
    # rooms that still have people in them are pruned by the liveness sweep first
    rooms = db.rooms.find(
        {"last_activity": {"$lt": cutoff}, "participants": {"$size": 0}},
        {"room_code": 1},
    )
    return [room["room_code"] for room in rooms]


async def insert_chat_message(db: Database, chat_message: ChatMessage):
    document = chat_message.model_dump(exclude={"id"}, exclude_none=True)
    document["_id"] = chat_message.id
    return db.chat_messages.insert_one(document)


async def get_chat_messages_by_room_code(db: Database, room_code: str,
                                         limit: int) -> list[ChatMessage]:
    # newest first to apply the limit, then back to chronological order
    cursor = db.chat_messages.find({"room_code": room_code}).sort(
        [("created_at", -1), ("_id", -1)]
    ).limit(limit)
    messages = [ChatMessage.model_validate(doc) for doc in cursor]
    messages.reverse()
    return messages


async def delete_chat_messages_by_room_code(db: Database, room_code: str) -> int:
    result = db.chat_messages.delete_many({"room_code": room_code})
    return result.deleted_count
