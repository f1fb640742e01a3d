import asyncio
from typing import Dict, Optional, Set

from pydantic import ValidationError

from connections import ConnectionRegistry, ConnectionSession
from constants import DEFAULT_CODE, DEFAULT_LANGUAGE
from schemas.events import JoinEvent, CodeChangeEvent, TypingEvent, LanguageChangeEvent, CompileCodeEvent
from logging_config import get_logger

logger = get_logger(__name__)


class RoomSyncEngine:
    """Keeps every session bound to a room in sync with the room's stored state.

    The engine is the only writer of the room and presence stores. Inbound
    events come from sessions; results go out through the broadcaster
    (whole room, or everyone but the sender) or as a targeted send to one
    session.
    """

    def __init__(self, backend, registry: ConnectionRegistry, broadcaster, relay):
        self.backend = backend
        self.registry = registry
        self.broadcaster = broadcaster
        self.relay = relay
        # Serializes code writes and their fan-out per room
        self._room_locks: Dict[str, asyncio.Lock] = {}
        # Executions in flight, kept so they are not garbage collected mid-run
        self._executions: Set[asyncio.Task] = set()
        self._handlers = {
            "join": (JoinEvent, self._on_join),
            "codeChange": (CodeChangeEvent, self._on_code_change),
            "leaveRoom": (None, self._on_leave_room),
            "typing": (TypingEvent, self._on_typing),
            "languageChange": (LanguageChangeEvent, self._on_language_change),
            "compileCode": (CompileCodeEvent, self._on_compile_code),
        }

    async def dispatch(self, session: ConnectionSession, message: dict):
        """Route one inbound {"event", "data"} envelope. Malformed events are dropped."""
        event = message.get("event")
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"Ignoring unknown event {event!r} from connection {session.connection_id}")
            return

        model, callback = handler
        if model is None:
            await callback(session, None)
            return
        try:
            payload = model.model_validate(message.get("data") or {})
        except ValidationError as e:
            logger.debug(f"Ignoring malformed {event} from connection {session.connection_id}: {e.error_count()} errors")
            return
        await callback(session, payload)

    async def _on_join(self, session, payload: JoinEvent):
        await self.join(session, payload.room_id, payload.user_name, email=payload.email)

    async def _on_code_change(self, session, payload: CodeChangeEvent):
        await self.code_change(session, payload.room_id, payload.code)

    async def _on_leave_room(self, session, payload):
        await self.leave_room(session)

    async def _on_typing(self, session, payload: TypingEvent):
        await self.typing(session, payload.room_id, payload.user_name)

    async def _on_language_change(self, session, payload: LanguageChangeEvent):
        await self.language_change(session, payload.room_id, payload.language)

    async def _on_compile_code(self, session, payload: CompileCodeEvent):
        # Runs beside the receive loop so a slow execution service does not hold
        # up the rest of this connection's events
        task = asyncio.create_task(
            self.execute(session, payload.room_id, payload.code, payload.language, payload.version, payload.input)
        )
        self._executions.add(task)
        task.add_done_callback(self._execution_done)

    def _execution_done(self, task: asyncio.Task):
        self._executions.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Failed to broadcast execution result: {error}", exc_info=error)

    # Operations

    async def join(self, session: ConnectionSession, room_id: str, display_name: Optional[str], email: Optional[str] = None):
        display_name = display_name.strip() if isinstance(display_name, str) else ""
        if not display_name or not room_id:
            logger.debug(f"Ignoring join without display name or room from connection {session.connection_id}")
            return

        if session.room_id is not None and session.room_id != room_id:
            logger.info(f"Connection {session.connection_id} switching from room {session.room_id} to {room_id}")
            await self._release(session)

        self.registry.add(room_id, session)
        try:
            await self.broadcaster.attach(room_id)
            await self.backend.create_room(room_id)
            await self.backend.add_participant(room_id, session.connection_id, display_name)
        except Exception:
            if session.room_id != room_id:
                await self._detach_local(room_id, session)
            raise
        session.bind(room_id, display_name)
        logger.info(f"User {session.connection_id} ({display_name}) joined room {room_id}")

        await self._broadcast_participants(room_id)

        room = await self.backend.get_room(room_id) or {}
        await session.send("codeUpdate", room.get("code", DEFAULT_CODE))
        await session.send("languageUpdate", room.get("language", DEFAULT_LANGUAGE))

        if email:
            await self.backend.add_room_to_account(email, room_id)

    async def code_change(self, session: ConnectionSession, room_id: str, code: str):
        if not self._owns(session, room_id, "codeChange"):
            return
        async with self._room_lock(room_id):
            await self.backend.set_code(room_id, code)
            await self.broadcaster.publish(room_id, "codeUpdate", code, exclude=session.connection_id)

    async def typing(self, session: ConnectionSession, room_id: str, display_name: str):
        if not self._owns(session, room_id, "typing"):
            return
        await self.broadcaster.publish(room_id, "userTyping", display_name, exclude=session.connection_id)

    async def language_change(self, session: ConnectionSession, room_id: str, language: str):
        if not self._owns(session, room_id, "languageChange"):
            return
        async with self._room_lock(room_id):
            await self.backend.set_language(room_id, language)
            await self.broadcaster.publish(room_id, "languageUpdate", language)

    async def execute(self, session: ConnectionSession, room_id: str, code: str, language: str, version: str, stdin: Optional[str] = None):
        if session.room_id != room_id:
            # Still answered: every run request gets exactly one room-wide response
            logger.warning(f"Connection {session.connection_id} running code for room {room_id} it is not bound to")
        logger.info(f"Running {language} {version} for room {room_id}")
        result = await self.relay.execute(code, language, version, stdin)
        await self.broadcaster.publish(room_id, "codeResponse", result)

    async def leave_room(self, session: ConnectionSession):
        room_id = await self._release(session)
        if room_id is None:
            return
        await session.send("leftRoom")

    async def disconnect(self, session: ConnectionSession):
        room_id = await self._release(session)
        logger.info(f"Connection {session.connection_id} disconnected (room: {room_id})")

    async def close(self):
        """Stop fan-out and close every local connection. Stores are left as they are."""
        for task in list(self._executions):
            task.cancel()
        await asyncio.gather(*self._executions, return_exceptions=True)
        await self.broadcaster.close()
        for session in self.registry.all_sessions():
            try:
                await session.websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Error closing WebSocket {session.connection_id}: {e}")
        self.registry.room_connections.clear()
        self._room_locks.clear()
        await self.relay.close()
        logger.info("Room sync engine closed")

    # Helpers

    def _owns(self, session: ConnectionSession, room_id: str, event: str) -> bool:
        if session.room_id is not None and session.room_id == room_id:
            return True
        logger.warning(f"Ignoring {event} for room {room_id} from connection {session.connection_id} bound to {session.room_id}")
        return False

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    async def _release(self, session: ConnectionSession) -> Optional[str]:
        """Drop the participant entry and unbind the session. Returns the room it was in.

        The session stays bound if the store call fails, so a later disconnect
        retries the removal.
        """
        if not session.is_bound:
            return None
        room_id = session.room_id
        await self.backend.remove_participant(room_id, session.connection_id)
        session.unbind()
        await self._detach_local(room_id, session)
        logger.info(f"User {session.connection_id} left room {room_id}")
        await self._broadcast_participants(room_id)
        return room_id

    async def _detach_local(self, room_id: str, session: ConnectionSession):
        if self.registry.remove(room_id, session):
            self._room_locks.pop(room_id, None)
            await self.broadcaster.detach(room_id)

    async def _broadcast_participants(self, room_id: str):
        names = await self.backend.get_participant_names(room_id)
        await self.broadcaster.publish(room_id, "userJoined", names)
