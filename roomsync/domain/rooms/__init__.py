from __future__ import annotations

from .lifecycle import RoomService, RoomSession
from .moves import MoveSync

__all__ = [
    "RoomService",
    "RoomSession",
    "MoveSync",
]
