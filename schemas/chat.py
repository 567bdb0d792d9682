from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


def format_display_time(moment: datetime) -> str:
    """Render an instant as a short local clock time, e.g. ``9:05 pm``."""
    local = moment.astimezone() if moment.tzinfo else moment
    hour = local.hour % 12 or 12
    suffix = "am" if local.hour < 12 else "pm"
    return f"{hour}:{local.minute:02d} {suffix}"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection_id: str
    username: str
    room: str
    joined_at: datetime

    @property
    def key(self) -> str:
        return self.username.lower()


class Member(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    connection_id: str
    joined_at: datetime


class Group(BaseModel):
    # Mutated only through GroupDirectory
    name: str
    members: List[Member] = []

    @property
    def key(self) -> str:
        return self.name.lower()

    def member(self, connection_id: str):
        for m in self.members:
            if m.connection_id == connection_id:
                return m
        return None


class Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str
    text: str
    created_at: datetime = Field(alias="createdAt")
    display_time: str = Field(alias="displayTime")

    @classmethod
    def create(cls, sender: str, text: str, created_at: datetime) -> "Message":
        return cls(
            sender=sender,
            text=text,
            created_at=created_at,
            display_time=format_display_time(created_at),
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class UserSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    room: str
    joined_at: datetime = Field(alias="joinedAt")

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(username=user.username, room=user.room, joined_at=user.joined_at)


class GroupSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    members: List[str]
    member_count: int = Field(alias="memberCount")

    @classmethod
    def from_group(cls, group: Group) -> "GroupSummary":
        return cls(
            name=group.name,
            members=[m.username for m in group.members],
            member_count=len(group.members),
        )


class Membership(BaseModel):
    """Result of creating or joining a group."""

    group: Group
    joined_at: datetime
    is_new: bool = True
