import asyncio
import json
from typing import Any, Dict, Optional

from connections import ConnectionRegistry
from constants import RESUBSCRIBE_DELAY, RESUBSCRIBE_MAX_DELAY
from logging_config import get_logger

logger = get_logger(__name__)


class LocalBroadcaster:
    """Fan-out inside this process only. Used for single-instance runs and tests."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def attach(self, room_id: str):
        pass

    async def detach(self, room_id: str):
        pass

    async def publish(self, room_id: str, event: str, data: Any = None, exclude: Optional[str] = None):
        await self.registry.deliver(room_id, event, data, exclude=exclude)

    async def close(self):
        pass


class RedisBroadcaster:
    """Fan-out through the room's Redis pub/sub channel.

    Each instance runs one listener per room it has local connections in and
    delivers every envelope to those connections. This is what lets several
    instances serve the same room.
    """

    def __init__(self, backend, registry: ConnectionRegistry, retry_delay: float = RESUBSCRIBE_DELAY, max_retry_delay: float = RESUBSCRIBE_MAX_DELAY):
        self.backend = backend
        self.registry = registry
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        # Format: {room_id: task}
        self.room_pubsub_tasks: Dict[str, asyncio.Task] = {}
        # Resolved once the listener's subscription is confirmed
        self._subscribed: Dict[str, asyncio.Future] = {}

    async def attach(self, room_id: str):
        """Make sure this instance is subscribed to the room before anything is published to it."""
        task = self.room_pubsub_tasks.get(room_id)
        if task is None or task.done():
            subscribed = asyncio.get_running_loop().create_future()
            self._subscribed[room_id] = subscribed
            self.room_pubsub_tasks[room_id] = asyncio.create_task(self._listen(room_id, subscribed))
            logger.debug(f"Started Redis pub/sub listener for room: {room_id}")
        await asyncio.shield(self._subscribed[room_id])

    async def detach(self, room_id: str):
        task = self.room_pubsub_tasks.pop(room_id, None)
        subscribed = self._subscribed.pop(room_id, None)
        if subscribed is not None and not subscribed.done():
            subscribed.cancel()
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Cancelled pub/sub task for room {room_id}")

    async def publish(self, room_id: str, event: str, data: Any = None, exclude: Optional[str] = None):
        await self.backend.publish_message(room_id, {"event": event, "data": data, "exclude": exclude})

    async def close(self):
        for room_id in list(self.room_pubsub_tasks):
            await self.detach(room_id)

    async def _listen(self, room_id: str, subscribed: asyncio.Future):
        """Background task: relay messages from the room channel to local connections.

        A lost pub/sub connection is re-established with backoff for as long
        as the room has local sessions. Only the first subscription's failure
        is reported back to attach().
        """
        logger.info(f"Starting Redis pub/sub listener for room: {room_id}")
        delay = self.retry_delay
        while True:
            try:
                pubsub = await self.backend.subscribe_to_room(room_id)
            except Exception as e:
                if not subscribed.done():
                    logger.error(f"Could not subscribe to room {room_id}: {e}", exc_info=True)
                    subscribed.set_exception(e)
                    return
                logger.error(f"Could not resubscribe to room {room_id}: {e}")
            else:
                if not subscribed.done():
                    subscribed.set_result(True)
                delay = self.retry_delay
                await self._relay(room_id, pubsub)

            if not self.registry.sessions_in_room(room_id):
                logger.info(f"No more connections in room {room_id}, stopping listener")
                return
            logger.warning(f"Resubscribing to room {room_id} in {delay:g}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    async def _relay(self, room_id: str, pubsub):
        """Deliver messages from one subscription until it fails. Cancellation propagates."""
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except json.JSONDecodeError as e:
                    logger.error(f"Error parsing message from Redis for room {room_id}: {e}")
                    continue
                logger.debug(f"Received {envelope.get('event')} from Redis for room {room_id}")
                await self.registry.deliver(
                    room_id,
                    envelope.get("event"),
                    envelope.get("data"),
                    exclude=envelope.get("exclude"),
                )
        except asyncio.CancelledError:
            logger.info(f"Redis listener task cancelled for room: {room_id}")
            raise
        except Exception as e:
            logger.error(f"Error in Redis listener for room {room_id}: {e}", exc_info=True)
        finally:
            try:
                await pubsub.aclose()
                logger.debug(f"Closed pub/sub connection for room: {room_id}")
            except Exception as e:
                logger.error(f"Error closing pub/sub for room {room_id}: {e}")
