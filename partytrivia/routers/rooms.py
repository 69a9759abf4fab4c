from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth_utils import get_current_user
from ..coordinator import RoomSessionCoordinator
from ..dependencies import get_coordinator, get_store
from ..models import User
from ..schemas import (
    GameUpdate,
    JoinRoomRequest,
    MemberOut,
    MessageOut,
    RoomOut,
    RoomSnapshot,
    UpdateRoomRequest,
    UserOut,
)
from ..store import TortoiseStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


@router.post("", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
async def create_room(
    current_user: User = Depends(get_current_user),
    store: TortoiseStore = Depends(get_store),
):
    room = await store.create_room(current_user.id)
    return RoomOut.model_validate(room)


@router.post("/join", response_model=RoomOut)
async def join_room(
    req: JoinRoomRequest,
    current_user: User = Depends(get_current_user),
    store: TortoiseStore = Depends(get_store),
):
    room = await store.get_room_by_code(req.code)
    await store.add_user_to_room(room.id, current_user.id)
    return RoomOut.model_validate(room)


@router.get("/{room_id}", response_model=RoomSnapshot)
async def get_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    store: TortoiseStore = Depends(get_store),
):
    room = await store.get_room(room_id)
    members = await store.get_room_users(room.id)
    users: List[MemberOut] = [
        MemberOut(
            id=m.id,
            room_id=m.room_id,
            user_id=m.user_id,
            team=m.team,
            is_host=m.is_host,
            user=UserOut.model_validate(m.user),
        )
        for m in members
    ]
    return RoomSnapshot(**RoomOut.model_validate(room).model_dump(), users=users)


@router.patch("/{room_id}", response_model=RoomOut)
async def update_room(
    room_id: int,
    req: UpdateRoomRequest,
    current_user: User = Depends(get_current_user),
    store: TortoiseStore = Depends(get_store),
    coordinator: RoomSessionCoordinator = Depends(get_coordinator),
):
    room = await store.get_room(room_id)
    if room.host_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the host can change the room")
    changes = req.model_dump(exclude_unset=True, exclude_none=True)
    if "mode" in changes and changes["mode"] != room.mode and room.status != "lobby":
        raise HTTPException(status_code=400, detail="The game mode can only be changed in the lobby")

    room = await store.update_room(room.id, **changes)
    if changes.get("status") == "finished":
        coordinator.turns.forget_room(room.id)
        await store.clear_team_question_for_room(room.id)
    logger.info("Room %s updated by host: %s", room.id, sorted(changes))
    await coordinator.fabric.broadcast(room.id, GameUpdate(room_id=room.id))
    return RoomOut.model_validate(room)


@router.get("/{room_id}/messages", response_model=List[MessageOut])
async def list_messages(
    room_id: int,
    current_user: User = Depends(get_current_user),
    store: TortoiseStore = Depends(get_store),
):
    await store.get_room(room_id)
    return [MessageOut(**m) for m in await store.get_room_messages(room_id)]
