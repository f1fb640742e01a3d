"""Test doubles for the store and the websocket transport."""

import asyncio
import json
from datetime import datetime

from redis.exceptions import ConnectionError as RedisConnectionError

from constants import DEFAULT_CODE, DEFAULT_LANGUAGE

class InMemoryBackend:
    """Same async contract as RedisBackend, kept in dicts.

    Every call yields to the event loop once so concurrent events can
    interleave at store accesses the way they do against Redis.
    """

    def __init__(self):
        self.rooms = {}
        self.participants = {}
        self.accounts = {}
        self.account_rooms = {}
        self.mutations = []
        self.fail = False
        # Number of upcoming store calls that should fail
        self.fail_times = 0

    async def _io(self):
        await asyncio.sleep(0)
        if self.fail_times:
            self.fail_times -= 1
            raise RedisConnectionError("store unavailable")
        if self.fail:
            raise RedisConnectionError("store unavailable")

    async def ping(self):
        await self._io()

    async def close(self):
        pass

    async def create_room(self, room_id, name=None):
        await self._io()
        if room_id in self.rooms:
            return False
        self.mutations.append(("create_room", room_id))
        self.rooms[room_id] = {
            "room_id": room_id,
            "name": name or room_id,
            "code": DEFAULT_CODE,
            "language": DEFAULT_LANGUAGE,
            "created_at": datetime.now().isoformat(),
        }
        return True

    async def get_room(self, room_id):
        await self._io()
        room = self.rooms.get(room_id)
        return dict(room) if room else None

    async def get_rooms(self, room_ids):
        await self._io()
        return [dict(self.rooms[r]) for r in room_ids if r in self.rooms]

    async def set_code(self, room_id, code):
        await self._io()
        self.mutations.append(("set_code", room_id))
        self.rooms[room_id]["code"] = code

    async def set_language(self, room_id, language):
        await self._io()
        self.mutations.append(("set_language", room_id))
        self.rooms[room_id]["language"] = language

    async def add_participant(self, room_id, connection_id, display_name):
        await self._io()
        entries = self.participants.setdefault(room_id, [])
        for index, (conn_id, _) in enumerate(entries):
            if conn_id == connection_id:
                entries[index] = (connection_id, display_name)
                return False
        self.mutations.append(("add_participant", room_id, connection_id))
        entries.append((connection_id, display_name))
        return True

    async def remove_participant(self, room_id, connection_id):
        await self._io()
        self.mutations.append(("remove_participant", room_id, connection_id))
        entries = self.participants.get(room_id, [])
        kept = [entry for entry in entries if entry[0] != connection_id]
        self.participants[room_id] = kept
        return len(kept) != len(entries)

    async def get_participants(self, room_id):
        await self._io()
        return list(self.participants.get(room_id, []))

    async def get_participant_names(self, room_id):
        return [name for _, name in await self.get_participants(room_id)]

    async def create_account(self, email, name=None):
        await self._io()
        if email in self.accounts:
            return False
        self.accounts[email] = {"email": email, "name": name or email, "created_at": datetime.now().isoformat()}
        self.account_rooms[email] = []
        return True

    async def get_account(self, email):
        await self._io()
        account = self.accounts.get(email)
        return dict(account) if account else None

    async def get_account_rooms(self, email):
        await self._io()
        return list(self.account_rooms.get(email, []))

    async def add_room_to_account(self, email, room_id):
        await self._io()
        if email not in self.accounts or room_id in self.account_rooms[email]:
            return False
        self.mutations.append(("add_room_to_account", email, room_id))
        self.account_rooms[email].append(room_id)
        return True


class FakeWebSocket:
    def __init__(self):
        self.sent = []
        self.closed_with = None

    async def send_text(self, text):
        if self.closed_with is not None:
            raise RuntimeError("websocket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code=1000, reason=None):
        self.closed_with = code

    def events(self, name):
        return [message["data"] for message in self.sent if message["event"] == name]

    def event_names(self):
        return [message["event"] for message in self.sent]


PISTON_OK = {
    "language": "python",
    "version": "3.10.0",
    "run": {"stdout": "1\n", "stderr": "", "code": 0, "output": "1\n"},
}

