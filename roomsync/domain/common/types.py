from __future__ import annotations

from typing import Literal

RoomStatus = Literal["waiting", "playing", "finished"]
Player = Literal[0, 1]
SearchState = Literal["searching", "matched_guest", "matched_host", "timed_out", "cancelled"]
GameResult = Literal["win", "loss", "draw"]

# Values of Room.guest that mean "seat still free"
VACANT_GUEST = (None, "", "empty")
ANONYMOUS = "anonymous"
