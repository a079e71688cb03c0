from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import MAX_NAME_LENGTH


class ClientFrame(BaseModel):
    event: str
    data: Optional[Any] = None


class CreateRoomRequest(BaseModel):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value):
        return clean_display_name(value)


class JoinRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passcode: Optional[str] = None
    room_id: Optional[str] = Field(default=None, alias="roomId")
    name: Optional[str] = None
    token: Optional[str] = None

    @field_validator("passcode", mode="before")
    @classmethod
    def passcode_as_text(cls, value):
        # clients may send the code as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value):
        return clean_display_name(value)


class RoomCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passcode: str
    room_id: str = Field(alias="roomId")
    expire_at: int = Field(alias="expireAt")
    token: str


class NewMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    sender: str = Field(alias="from")


class TypingNotice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")


def clean_display_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()[:MAX_NAME_LENGTH]
    return value or None
