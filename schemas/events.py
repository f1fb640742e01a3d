from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinEvent(EventPayload):
    room_id: str = Field(alias="roomId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    email: Optional[str] = None

class CodeChangeEvent(EventPayload):
    room_id: str = Field(alias="roomId")
    code: str

class TypingEvent(EventPayload):
    room_id: str = Field(alias="roomId")
    user_name: str = Field(alias="userName")

class LanguageChangeEvent(EventPayload):
    room_id: str = Field(alias="roomId")
    language: str

class CompileCodeEvent(EventPayload):
    room_id: str = Field(alias="roomId")
    code: str
    language: str
    version: str = "*"
    input: Optional[str] = None
