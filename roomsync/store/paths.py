from __future__ import annotations

from dataclasses import dataclass

ROOMS = "rooms"
MATCHMAKING = "matchmaking"
PRESENCE = "presence"
LEADERBOARD = "leaderboard"


@dataclass(frozen=True)
class RoomPaths:
    """
    Store path builder for room-scoped nodes.
    """
    room_code: str

    def room(self) -> str:
        return f"{ROOMS}/{self.room_code}"

    def move_id(self) -> str:
        return f"{ROOMS}/{self.room_code}/moveId"

    def state(self) -> str:
        return f"{ROOMS}/{self.room_code}/state"

    def status(self) -> str:
        return f"{ROOMS}/{self.room_code}/status"


@dataclass(frozen=True)
class QueuePaths:
    """
    Matchmaking queue for one game: one child per MatchmakingEntry.
    """
    game_id: str

    def queue(self) -> str:
        return f"{MATCHMAKING}/{self.game_id}"

    def entry(self, key: str) -> str:
        return f"{MATCHMAKING}/{self.game_id}/{key}"


def presence(uid: str) -> str:
    return f"{PRESENCE}/{uid}"


def leaderboard(game_id: str) -> str:
    return f"{LEADERBOARD}/{game_id}"


def leaderboard_entry(game_id: str, uid: str) -> str:
    return f"{LEADERBOARD}/{game_id}/{uid}"
