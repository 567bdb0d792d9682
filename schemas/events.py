from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class InboundPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinRoomPayload(InboundPayload):
    username: Optional[str] = ""
    room: Optional[str] = ""
    theme: Optional[str] = None


class PrivateMessagePayload(InboundPayload):
    to_username: str = Field(alias="toUsername")
    message: str


class PrivateHistoryPayload(InboundPayload):
    other_username: str = Field(alias="otherUsername")


class GroupNamePayload(InboundPayload):
    group_name: Optional[str] = Field(default="", alias="groupName")


class GroupMessagePayload(InboundPayload):
    group_name: str = Field(alias="groupName")
    message: str


class ChangeThemePayload(InboundPayload):
    theme: Optional[str] = None


class Frame(BaseModel):
    """Envelope of an inbound WebSocket frame."""

    event: str
    data: Any = None
