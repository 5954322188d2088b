from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from roomsync.domain.common.types import ANONYMOUS, VACANT_GUEST, RoomStatus


class StoreRecord(BaseModel):
    """
    Records mirror the camelCase layout in the store.
    Unknown fields are kept so newer clients don't lose data on rewrite.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Room(StoreRecord):
    code: str
    game_id: str = Field(alias="gameId")
    host: str = ANONYMOUS
    host_name: str = Field(default="Player 1", alias="hostName")
    guest: Optional[str] = None
    guest_name: Optional[str] = Field(default=None, alias="guestName")
    state: Any = Field(default_factory=dict)    # opaque game payload
    move_id: int = Field(default=0, alias="moveId")
    last_move: Any = Field(default=None, alias="lastMove")
    status: RoomStatus = "waiting"
    winner: Any = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")

    @property
    def has_guest(self) -> bool:
        return self.guest not in VACANT_GUEST


class MatchmakingEntry(StoreRecord):
    key: str
    uid: str
    name: str = "Player"
    ts: Optional[int] = None
    room_code: Optional[str] = Field(default=None, alias="roomCode")

    @property
    def consumed(self) -> bool:
        return bool(self.room_code)


class Presence(StoreRecord):
    online: bool = False
    last_seen: Optional[int] = Field(default=None, alias="lastSeen")


class LeaderboardStats(StoreRecord):
    name: str = "Player"
    photo: Optional[str] = None
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games: int = 0
    last_played: Optional[int] = Field(default=None, alias="lastPlayed")
