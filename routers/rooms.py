from fastapi import APIRouter, Request

from schemas.rooms import GroupListResponse, HealthResponse, RosterResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])
health_router = APIRouter(tags=["health"])

# Read-only snapshots of the live registries. All changes go through the
# WebSocket protocol.


@health_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    coordinator = request.app.state.coordinator
    return HealthResponse(
        status="ok",
        connections=len(request.app.state.connections),
        users=len(coordinator.roster()),
        groups=len(coordinator.group_list()),
    )


@rooms_router.get("/users", response_model=RosterResponse)
async def all_users(request: Request):
    users = request.app.state.coordinator.roster()
    logger.debug(f"Roster snapshot requested from {request.client.host if request.client else 'unknown'}: {len(users)} users")
    return RosterResponse(users=users)


@rooms_router.get("/groups", response_model=GroupListResponse)
async def all_groups(request: Request):
    return GroupListResponse(groups=request.app.state.coordinator.group_list())


@rooms_router.get("/{room}/users", response_model=RosterResponse)
async def room_users(room: str, request: Request):
    users = request.app.state.coordinator.roster(room)
    logger.debug(f"Room roster requested for '{room}': {len(users)} users")
    return RosterResponse(room=room.strip(), users=users)
