from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from roomsync.domain.matchmaking.queue import parse_queue
from roomsync.store.models import Presence, Room
from roomsync.store.paths import QueuePaths, RoomPaths, presence

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/rooms/{room_code}")
async def get_room(room_code: str, request: Request):
    """
    Current room record (debug/admin).
    """
    store = request.app.state.store
    data = await store.read(RoomPaths(room_code.upper()).room())
    if data is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return Room.model_validate(data).to_store()


@router.get("/matchmaking/{game_id}")
async def get_queue(game_id: str, request: Request):
    """
    Matchmaking queue for one game, oldest entry first.
    """
    store = request.app.state.store
    entries = list(parse_queue(await store.read(QueuePaths(game_id).queue())).values())
    entries.sort(key=lambda e: e.ts or 0)
    return {
        "game_id": game_id,
        "waiting": sum(1 for e in entries if not e.consumed),
        "entries": [e.to_store() for e in entries],
    }


@router.get("/presence/{uid}")
async def get_presence(uid: str, request: Request):
    store = request.app.state.store
    data = await store.read(presence(uid))
    if data is None:
        raise HTTPException(status_code=404, detail="Unknown user")
    return Presence.model_validate(data).to_store()
