from typing import Optional

from pydantic import BaseModel

from schemas.chat import GroupSummary, UserSummary


class HealthResponse(BaseModel):
    status: str
    connections: int
    users: int
    groups: int


class RosterResponse(BaseModel):
    room: Optional[str] = None
    users: list[UserSummary]


class GroupListResponse(BaseModel):
    groups: list[GroupSummary]
