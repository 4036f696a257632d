import json

from nats.aio.client import Client


async def _publish(nc: Client | None, subject: str, payload: dict):
    # publishing is optional, the dependency resolves to None without NATS_HOST
    if nc is None:
        return

    await nc.publish(subject, json.dumps(payload).encode())
    await nc.flush()


async def publish_room_created(nc: Client | None, room_code: str, host_id: str):
    payload = {
        "room_code": room_code,
        "host_id": host_id,
    }

    await _publish(nc, "room.created", payload)


async def publish_room_deleted(nc: Client | None, room_code: str):
    payload = {
        "room_code": room_code,
    }

    await _publish(nc, "room.deleted", payload)


async def publish_user_joined_room(nc: Client | None, user_id: str, room_code: str):
    payload = {
        "user_id": user_id,
        "room_code": room_code,
    }

    await _publish(nc, "room.user_joined", payload)


async def publish_user_left_room(nc: Client | None, user_id: str, room_code: str):
    payload = {
        "user_id": user_id,
        "room_code": room_code,
    }

    await _publish(nc, "room.user_left", payload)


async def publish_video_selected(nc: Client | None, room_code: str, user_id: str, movie_id: str):
    payload = {
        "room_code": room_code,
        "user_id": user_id,
        "movie_id": movie_id,
    }

    await _publish(nc, "room.video_selected", payload)


async def publish_room_chat_message(nc: Client | None, room_code: str, author_id: str,
                                    message: str):
    payload = {
        "room_code": room_code,
        "author_id": author_id,
        "message": message,
    }

    await _publish(nc, "room.chat_message", payload)
