"""Tests for RedisBackend against a mocked redis client."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from backend import RedisBackend
from constants import DEFAULT_CODE


@pytest.fixture
def pipe():
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1])
    return pipe


@pytest.fixture
def redis_client(pipe):
    client = MagicMock()
    client.pipeline.return_value = pipe
    client.incr = AsyncMock(return_value=3)
    client.hgetall = AsyncMock(return_value={})
    client.hset = AsyncMock(return_value=1)
    client.zrange = AsyncMock(return_value=[])
    client.hmget = AsyncMock(return_value=[])
    client.exists = AsyncMock(return_value=1)
    client.zadd = AsyncMock(return_value=1)
    client.publish = AsyncMock(return_value=2)
    return client


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client=redis_client, pubsub_client=MagicMock())


@pytest.mark.asyncio
async def test_create_room_sets_fields_only_if_absent(backend, redis_client, pipe):
    pipe.execute.return_value = [1, 1, 1, 1, 1]
    assert await backend.create_room("r1") is True

    redis_client.pipeline.assert_called_once_with(transaction=True)
    fields = {call.args[1]: call.args[2] for call in pipe.hsetnx.call_args_list}
    assert all(call.args[0] == "room:meta:r1" for call in pipe.hsetnx.call_args_list)
    assert fields["room_id"] == "r1"
    assert fields["name"] == "r1"
    assert fields["code"] == DEFAULT_CODE

    pipe.execute.return_value = [0, 0, 0, 0, 0]
    assert await backend.create_room("r1", "Other name") is False


@pytest.mark.asyncio
async def test_get_room_returns_none_for_missing_room(backend, redis_client):
    assert await backend.get_room("nope") is None


@pytest.mark.asyncio
async def test_get_room_keeps_code_as_text(backend, redis_client):
    redis_client.hgetall.return_value = {"room_id": "r1", "code": "123", "language": "python"}
    room = await backend.get_room("r1")
    assert room["code"] == "123"


@pytest.mark.asyncio
async def test_set_code_overwrites_field(backend, redis_client):
    await backend.set_code("r1", "print(1)")
    redis_client.hset.assert_awaited_once_with("room:meta:r1", "code", "print(1)")


@pytest.mark.asyncio
async def test_add_participant_is_atomic_and_idempotent(backend, redis_client, pipe):
    assert await backend.add_participant("r1", "conn-1", "Alice") is True

    redis_client.incr.assert_awaited_once_with("room:seq:r1")
    redis_client.pipeline.assert_called_once_with(transaction=True)
    pipe.zadd.assert_called_once_with("room:users:r1", {"conn-1": 3}, nx=True)
    pipe.hset.assert_called_once_with("room:names:r1", "conn-1", "Alice")

    pipe.execute.return_value = [0, 0]
    assert await backend.add_participant("r1", "conn-1", "Alice") is False


@pytest.mark.asyncio
async def test_remove_participant(backend, pipe):
    pipe.execute.return_value = [1, 1]
    assert await backend.remove_participant("r1", "conn-1") is True
    pipe.zrem.assert_called_once_with("room:users:r1", "conn-1")
    pipe.hdel.assert_called_once_with("room:names:r1", "conn-1")


@pytest.mark.asyncio
async def test_participant_names_in_join_order(backend, redis_client):
    redis_client.zrange.return_value = ["conn-2", "conn-1", "conn-3"]
    redis_client.hmget.return_value = ["Bob", "Alice", None]

    assert await backend.get_participant_names("r1") == ["Bob", "Alice"]
    redis_client.hmget.assert_awaited_once_with("room:names:r1", ["conn-2", "conn-1", "conn-3"])


@pytest.mark.asyncio
async def test_add_room_to_unknown_account_does_nothing(backend, redis_client):
    redis_client.exists.return_value = 0
    assert await backend.add_room_to_account("ghost@example.com", "r1") is False
    redis_client.zadd.assert_not_awaited()


@pytest.mark.asyncio
async def test_add_room_to_account_appends_if_absent(backend, redis_client):
    assert await backend.add_room_to_account("alice@example.com", "r1") is True
    args, kwargs = redis_client.zadd.call_args
    assert args[0] == "user:rooms:alice@example.com"
    assert list(args[1]) == ["r1"]
    assert kwargs == {"nx": True}


@pytest.mark.asyncio
async def test_publish_message_serializes_envelope(backend, redis_client):
    envelope = {"event": "codeUpdate", "data": "x", "exclude": "conn-1"}
    assert await backend.publish_message("r1", envelope) == 2
    redis_client.publish.assert_awaited_once_with("room:channel:r1", json.dumps(envelope))
