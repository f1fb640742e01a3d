from fastapi import APIRouter, Depends, HTTPException, Query, Request
from redis.exceptions import RedisError
from typing import Optional

from schemas.rooms import (
    AccountResponse,
    AddRoomRequest,
    CreateAccountRequest,
    CreateRoomRequest,
    CreateRoomResponse,
    MessageResponse,
    RoomCheckResponse,
    RoomListResponse,
    RoomResponse,
)
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api/rooms", tags=["rooms"])
users_router = APIRouter(prefix="/api/users", tags=["users"])


def get_backend(request: Request):
    return request.app.state.backend


async def build_room_response(backend, room: dict) -> RoomResponse:
    room_id = room["room_id"]
    return RoomResponse(
        room_id=room_id,
        name=room.get("name"),
        code=room.get("code", ""),
        language=room.get("language"),
        created_at=room.get("created_at"),
        active_users=await backend.get_participant_names(room_id),
    )


@rooms_router.get("", response_model=RoomListResponse)
async def list_rooms(email: Optional[str] = Query(None), backend=Depends(get_backend)):
    """Rooms the account has joined or created, oldest first."""
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    if not await backend.get_account(email):
        logger.warning(f"List rooms failed: User {email} not found")
        raise HTTPException(status_code=404, detail="User not found")

    room_ids = await backend.get_account_rooms(email)
    rooms = await backend.get_rooms(room_ids)
    logger.info(f"Listing {len(rooms)} rooms for {email}")
    return RoomListResponse(rooms=[await build_room_response(backend, room) for room in rooms])


@rooms_router.post("/join", response_model=MessageResponse)
async def add_room_to_user(body: AddRoomRequest, backend=Depends(get_backend)):
    # Records the room on the account only; presence is handled by the websocket join
    if not body.email or not body.room_id:
        raise HTTPException(status_code=400, detail="Email and roomId required")
    try:
        if not await backend.get_account(body.email):
            logger.warning(f"Add room failed: User {body.email} not found")
            raise HTTPException(status_code=404, detail="User not found")
        await backend.add_room_to_account(body.email, body.room_id)
    except RedisError as e:
        logger.error(f"Error adding room {body.room_id} to {body.email}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to add room")
    return MessageResponse(message="Room added")


@rooms_router.get("/check", response_model=RoomCheckResponse)
async def check_room(room_id: Optional[str] = Query(None, alias="roomId"), backend=Depends(get_backend)):
    room = await backend.get_room(room_id) if room_id else None
    if not room:
        return RoomCheckResponse(exists=False, room=None)
    return RoomCheckResponse(exists=True, room=await build_room_response(backend, room))


@rooms_router.post("/create", response_model=CreateRoomResponse)
async def create_room(body: CreateRoomRequest, backend=Depends(get_backend)):
    if not body.room_id or not body.name:
        raise HTTPException(status_code=400, detail="Room ID and name required")

    created = await backend.create_room(body.room_id, body.name)
    if not created:
        logger.warning(f"Create room failed: Room {body.room_id} already exists")
        raise HTTPException(status_code=400, detail="Room ID already exists")

    if body.created_by:
        await backend.add_room_to_account(body.created_by, body.room_id)

    room = await backend.get_room(body.room_id)
    logger.info(f"Room {body.room_id} created via API, name: {body.name}")
    return CreateRoomResponse(message="Room created", room=await build_room_response(backend, room))


@users_router.post("", response_model=AccountResponse, status_code=201)
async def create_account(body: CreateAccountRequest, backend=Depends(get_backend)):
    """Register an account reference so rooms can be recorded against its email."""
    if not body.email:
        raise HTTPException(status_code=400, detail="Email required")
    if not await backend.create_account(body.email, body.name):
        raise HTTPException(status_code=400, detail="User already exists")
    account = await backend.get_account(body.email)
    return AccountResponse(
        email=account["email"],
        name=account.get("name"),
        created_at=account.get("created_at"),
        rooms=[],
    )
