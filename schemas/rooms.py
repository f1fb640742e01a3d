from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRoomRequest(CamelModel):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    name: Optional[str] = None
    created_by: Optional[str] = Field(default=None, alias="createdBy")

class AddRoomRequest(CamelModel):
    email: Optional[str] = None
    room_id: Optional[str] = Field(default=None, alias="roomId")

class CreateAccountRequest(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None

class RoomResponse(CamelModel):
    room_id: str = Field(alias="roomId")
    name: Optional[str] = None
    code: str
    language: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    active_users: list[str] = Field(default_factory=list, alias="activeUsers")

class RoomListResponse(CamelModel):
    rooms: list[RoomResponse]

class RoomCheckResponse(CamelModel):
    exists: bool
    room: Optional[RoomResponse] = None

class CreateRoomResponse(CamelModel):
    message: str
    room: RoomResponse

class AccountResponse(CamelModel):
    email: str
    name: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    rooms: list[str] = Field(default_factory=list)

class MessageResponse(CamelModel):
    message: str
