from __future__ import annotations

from roomsync.client import GameClient
from roomsync.domain.common.errors import (
    InvalidTransition,
    MatchmakingFailed,
    RoomFull,
    RoomNotFound,
    RoomSyncError,
    StoreUnavailable,
    StoreWriteError,
)
from roomsync.domain.common.identity import StaticIdentity, User
from roomsync.domain.matchmaking.queue import Matchmaker, MatchmakingSearch
from roomsync.domain.rooms.lifecycle import RoomService, RoomSession

__all__ = [
    "GameClient",
    "InvalidTransition",
    "MatchmakingFailed",
    "RoomFull",
    "RoomNotFound",
    "RoomSyncError",
    "StoreUnavailable",
    "StoreWriteError",
    "StaticIdentity",
    "User",
    "Matchmaker",
    "MatchmakingSearch",
    "RoomService",
    "RoomSession",
]
