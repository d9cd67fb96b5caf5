"""Room REST API router (read-only).

Endpoints:
    GET /rooms                  - List existing rooms with their sizes
    GET /rooms/{room_id}/users  - List a room's members with display names
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from .registry import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


class RoomSummary(BaseModel):
    """A room and its current member count."""
    roomId: str
    size: int


class RoomMember(BaseModel):
    """A room member. ``userName`` is None once the name has been forgotten."""
    userId: str
    userName: Optional[str] = None


class RoomUsersResponse(BaseModel):
    roomId: str
    users: List[RoomMember]


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms(registry: RoomRegistry = Depends(get_registry)) -> List[RoomSummary]:
    """List rooms that currently have at least one member."""
    return [
        RoomSummary(roomId=room_id, size=registry.size(room_id))
        for room_id in registry.rooms()
    ]


@router.get("/rooms/{room_id}/users", response_model=RoomUsersResponse)
async def get_room_users(
    room_id: str,
    registry: RoomRegistry = Depends(get_registry),
) -> RoomUsersResponse:
    """Get a room's members.

    Args:
        room_id: The room ID.

    Returns:
        RoomUsersResponse with members sorted by user ID. Unknown rooms
        yield an empty list.
    """
    users = [
        RoomMember(userId=user_id, userName=registry.display_name(user_id))
        for user_id in sorted(registry.members(room_id))
    ]
    logger.debug(f"[Rooms] Room {room_id} has {len(users)} members")
    return RoomUsersResponse(roomId=room_id, users=users)
