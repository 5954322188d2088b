from __future__ import annotations


class RoomSyncError(Exception):
    """Base class for errors surfaced by roomsync."""

    code = "ROOMSYNC_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class StoreUnavailable(RoomSyncError):
    """Transport or connectivity failure talking to the shared store."""

    code = "STORE_UNAVAILABLE"


class StoreWriteError(StoreUnavailable):
    code = "STORE_WRITE_FAILED"


class RoomNotFound(RoomSyncError):
    code = "ROOM_NOT_FOUND"

    def __init__(self, room_code: str) -> None:
        super().__init__("Room not found")
        self.room_code = room_code


class RoomFull(RoomSyncError):
    code = "ROOM_FULL"

    def __init__(self, room_code: str) -> None:
        super().__init__("Room is full")
        self.room_code = room_code


class InvalidTransition(RoomSyncError):
    code = "BAD_STATE"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move room from {current} to {target}")
        self.current = current
        self.target = target


class MatchmakingFailed(RoomSyncError):
    """Hand-off failure after a search committed to a branch. Never raised to callers."""

    code = "MATCHMAKING_FAILED"

    def __init__(self, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.cause = cause
