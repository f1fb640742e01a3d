import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionSession:
    """One live websocket connection and the room it is bound to (at most one)."""

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.room_id: Optional[str] = None
        self.display_name: Optional[str] = None

    @property
    def is_bound(self) -> bool:
        return self.room_id is not None

    def bind(self, room_id: str, display_name: str):
        self.room_id = room_id
        self.display_name = display_name

    def unbind(self):
        self.room_id = None
        self.display_name = None

    async def send(self, event: str, data: Any = None):
        await self.websocket.send_text(json.dumps({"event": event, "data": data}))

    def __repr__(self):
        return f"<ConnectionSession {self.connection_id} room={self.room_id} name={self.display_name}>"


class ConnectionRegistry:
    """Sessions bound to each room, for this process only.

    Other instances track their own connections; cross-instance fan-out goes
    through the broadcaster.
    """

    def __init__(self):
        # Format: {room_id: {connection_id: session}}
        self.room_connections: Dict[str, Dict[str, ConnectionSession]] = {}

    def add(self, room_id: str, session: ConnectionSession) -> bool:
        """Track session under room_id. Returns True if it is the first local session in the room."""
        first = room_id not in self.room_connections
        self.room_connections.setdefault(room_id, {})[session.connection_id] = session
        logger.debug(f"Added connection {session.connection_id} to room {room_id} (local connections: {len(self.room_connections[room_id])})")
        return first

    def remove(self, room_id: str, session: ConnectionSession) -> bool:
        """Stop tracking session. Returns True if the room has no local sessions left."""
        connections = self.room_connections.get(room_id)
        if connections is None:
            return False
        connections.pop(session.connection_id, None)
        logger.debug(f"Removed connection {session.connection_id} from local tracking for room {room_id}")
        if not connections:
            del self.room_connections[room_id]
            logger.info(f"No more local connections in room {room_id}")
            return True
        return False

    def sessions_in_room(self, room_id: str) -> List[ConnectionSession]:
        return list(self.room_connections.get(room_id, {}).values())

    def all_sessions(self) -> List[ConnectionSession]:
        return [session for connections in self.room_connections.values() for session in connections.values()]

    async def deliver(self, room_id: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        """Send an event to every local session in the room except `exclude`."""
        targets = [s for s in self.sessions_in_room(room_id) if s.connection_id != exclude]
        if not targets:
            return 0

        results = await asyncio.gather(*(s.send(event, data) for s in targets), return_exceptions=True)
        for session, result in zip(targets, results):
            if isinstance(result, Exception):
                # Closed sockets are cleaned up by their own disconnect handler
                logger.warning(f"Error sending {event} to connection {session.connection_id} in room {room_id}: {result}")
        logger.debug(f"Delivered {event} to {len(targets)} local connections in room {room_id}")
        return len(targets)
