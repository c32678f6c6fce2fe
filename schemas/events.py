from pydantic import AliasChoices, BaseModel, Field
from typing import Any, Optional


class RoomEvent(BaseModel):
    room_id: str = Field(validation_alias=AliasChoices("roomId", "room_id"), min_length=1)


class SignalEvent(RoomEvent):
    payload: Any = None
    to: Optional[str] = None


class ChatMessageEvent(RoomEvent):
    sender_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("senderId", "sender_id"))
    sender_role: Optional[str] = Field(default=None, validation_alias=AliasChoices("senderRole", "sender_role"))
    message: str = ""
    attachment: Optional[Any] = Field(default=None, validation_alias=AliasChoices("attachment", "file"))


class TranscriptionUpdateEvent(RoomEvent):
    text: str = Field(min_length=1)
    sender_role: str = Field(validation_alias=AliasChoices("senderRole", "sender_role"), min_length=1)
