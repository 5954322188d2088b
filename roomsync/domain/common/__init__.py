from __future__ import annotations

from .errors import (
    InvalidTransition,
    MatchmakingFailed,
    RoomFull,
    RoomNotFound,
    RoomSyncError,
    StoreUnavailable,
    StoreWriteError,
)
from .identity import IdentityProvider, StaticIdentity, User

__all__ = [
    "InvalidTransition",
    "MatchmakingFailed",
    "RoomFull",
    "RoomNotFound",
    "RoomSyncError",
    "StoreUnavailable",
    "StoreWriteError",
    "IdentityProvider",
    "StaticIdentity",
    "User",
]
