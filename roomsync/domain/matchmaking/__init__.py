from __future__ import annotations

from .queue import (
    NO_PLAYERS_FOUND,
    Matchmaker,
    MatchmakingSearch,
    is_initiator,
    parse_queue,
    pick_opponent,
)

__all__ = [
    "NO_PLAYERS_FOUND",
    "Matchmaker",
    "MatchmakingSearch",
    "is_initiator",
    "parse_queue",
    "pick_opponent",
]
