import json
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, DEFAULT_CODE, DEFAULT_LANGUAGE, SUBSCRIBE_TIMEOUT
from redis_keys import (
    REDIS_META_KEY,
    REDIS_USERS_KEY,
    REDIS_NAMES_KEY,
    REDIS_SEQ_KEY,
    REDIS_ROOM_CHANNEL,
    REDIS_ACCOUNT_KEY,
    REDIS_ACCOUNT_ROOMS_KEY,
)
from logging_config import get_logger

logger = get_logger(__name__)


def _new_client():
    return redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)


class RedisBackend:
    """Room document store, presence store and account references on Redis.

    Every mutation that other connections can race on is a single atomic
    Redis command or a MULTI pipeline; nothing here reads a list, edits it
    locally and writes it back.
    """

    def __init__(self, redis_client=None, pubsub_client=None):
        self.redis_client = redis_client if redis_client is not None else _new_client()
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client if pubsub_client is not None else _new_client()
        logger.info(f"Initializing RedisBackend for {REDIS_HOST}:{REDIS_PORT}")

    async def ping(self):
        try:
            await self.redis_client.ping()
            await self.pubsub_client.ping()
            logger.info(f"Redis clients connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    async def close(self):
        await self.redis_client.aclose()
        await self.pubsub_client.aclose()
        logger.info("Redis clients closed")

    # Rooms

    async def create_room(self, room_id: str, name: Optional[str] = None) -> bool:
        """Create the room if it does not exist yet. Returns True when this call created it."""
        key = REDIS_META_KEY.format(slug=room_id)
        room_data = {
            "room_id": room_id,
            "name": name or room_id,
            "code": DEFAULT_CODE,
            "language": DEFAULT_LANGUAGE,
            "created_at": datetime.now().isoformat(),
        }
        # HSETNX per field: concurrent creators converge on whichever wrote first
        pipe = self.redis_client.pipeline(transaction=True)
        for field, value in room_data.items():
            pipe.hsetnx(key, field, value)
        results = await pipe.execute()
        created = bool(results[0])
        if created:
            logger.info(f"Room {room_id} created with name: {room_data['name']}")
        else:
            logger.debug(f"Room {room_id} already exists")
        return created

    async def get_room(self, room_id: str) -> Optional[Dict[str, str]]:
        logger.debug(f"Fetching room {room_id}")
        room_data = await self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not room_data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return room_data

    async def get_rooms(self, room_ids: List[str]) -> List[Dict[str, str]]:
        if not room_ids:
            return []
        pipe = self.redis_client.pipeline(transaction=False)
        for room_id in room_ids:
            pipe.hgetall(REDIS_META_KEY.format(slug=room_id))
        results = await pipe.execute()
        return [room for room in results if room]

    async def set_code(self, room_id: str, code: str):
        await self.redis_client.hset(REDIS_META_KEY.format(slug=room_id), "code", code)
        logger.debug(f"Stored {len(code)} characters of code for room {room_id}")

    async def set_language(self, room_id: str, language: str):
        await self.redis_client.hset(REDIS_META_KEY.format(slug=room_id), "language", language)
        logger.debug(f"Stored language {language} for room {room_id}")

    # Presence

    async def add_participant(self, room_id: str, connection_id: str, display_name: str) -> bool:
        """Add a connection to a room's presence list. Adding the same connection twice is a no-op."""
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        names_key = REDIS_NAMES_KEY.format(slug=room_id)
        seq = await self.redis_client.incr(REDIS_SEQ_KEY.format(slug=room_id))

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.zadd(users_key, {connection_id: seq}, nx=True)
        # Re-joining under a new name updates the name, not the join position
        pipe.hset(names_key, connection_id, display_name)
        added, _ = await pipe.execute()

        if added:
            logger.debug(f"User {connection_id} ({display_name}) added to room {room_id}")
        else:
            logger.debug(f"User {connection_id} already present in room {room_id}")
        return bool(added)

    async def remove_participant(self, room_id: str, connection_id: str) -> bool:
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        names_key = REDIS_NAMES_KEY.format(slug=room_id)

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.zrem(users_key, connection_id)
        pipe.hdel(names_key, connection_id)
        removed, _ = await pipe.execute()

        logger.debug(f"User {connection_id} removed from room {room_id}: removed={removed}")
        return bool(removed)

    async def get_participants(self, room_id: str) -> List[Tuple[str, str]]:
        """Connection IDs and display names in join order."""
        connection_ids = await self.redis_client.zrange(REDIS_USERS_KEY.format(slug=room_id), 0, -1)
        if not connection_ids:
            return []
        names = await self.redis_client.hmget(REDIS_NAMES_KEY.format(slug=room_id), connection_ids)
        # A participant removed between the two reads has no name left; skip it
        return [(conn_id, name) for conn_id, name in zip(connection_ids, names) if name is not None]

    async def get_participant_names(self, room_id: str) -> List[str]:
        return [name for _, name in await self.get_participants(room_id)]

    # Account references

    async def create_account(self, email: str, name: Optional[str] = None) -> bool:
        key = REDIS_ACCOUNT_KEY.format(email=email)
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hsetnx(key, "email", email)
        pipe.hsetnx(key, "name", name or email)
        pipe.hsetnx(key, "created_at", datetime.now().isoformat())
        results = await pipe.execute()
        created = bool(results[0])
        if created:
            logger.info(f"Account reference created for {email}")
        return created

    async def get_account(self, email: str) -> Optional[Dict[str, str]]:
        account = await self.redis_client.hgetall(REDIS_ACCOUNT_KEY.format(email=email))
        return account or None

    async def get_account_rooms(self, email: str) -> List[str]:
        return await self.redis_client.zrange(REDIS_ACCOUNT_ROOMS_KEY.format(email=email), 0, -1)

    async def add_room_to_account(self, email: str, room_id: str) -> bool:
        """Append room_id to the account's visited rooms unless it is already there."""
        if not await self.redis_client.exists(REDIS_ACCOUNT_KEY.format(email=email)):
            logger.debug(f"Account {email} not found, not recording room {room_id}")
            return False
        added = await self.redis_client.zadd(
            REDIS_ACCOUNT_ROOMS_KEY.format(email=email),
            {room_id: datetime.now().timestamp()},
            nx=True,
        )
        if added:
            logger.debug(f"Room {room_id} added to rooms of {email}")
        return bool(added)

    # Pub/sub

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    async def publish_message(self, room_id: str, message: dict) -> int:
        """Publish a message to the room's Redis pub/sub channel."""
        channel = self.get_room_channel_name(room_id)
        subscribers = await self.redis_client.publish(channel, json.dumps(message))
        logger.debug(f"Published message to room {room_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    async def subscribe_to_room(self, room_id: str):
        """Create a pubsub subscriber for a room channel.

        Waits for the subscribe confirmation so a message published right
        after this returns is not missed.
        """
        channel = self.get_room_channel_name(room_id)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_id}")
        pubsub = self.pubsub_client.pubsub()
        await pubsub.subscribe(channel)
        confirmation = await pubsub.get_message(timeout=SUBSCRIBE_TIMEOUT)
        if confirmation is None:
            logger.warning(f"No subscribe confirmation for channel {channel} within {SUBSCRIBE_TIMEOUT}s")
        else:
            logger.debug(f"Successfully subscribed to channel {channel}")
        return pubsub


redis_backend = RedisBackend()
