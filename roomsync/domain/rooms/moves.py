from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from roomsync.store.base import SharedStore
from roomsync.store.paths import RoomPaths

logger = logging.getLogger(__name__)


class MoveSync:
    """
    Sequenced moves on top of a room record (mixed into RoomSession).

    moveId is bumped with a read-then-write, not a compare-and-swap: two
    senders racing on one room can both claim the same id. Callers keep
    turns strictly alternating.
    """
    store: SharedStore
    paths: RoomPaths
    active: bool

    async def _next_move_id(self) -> int:
        current = await self.store.read(self.paths.move_id())
        return int(current or 0) + 1

    async def send_move(self, move: Any) -> Optional[int]:
        if not self.active:
            return None
        move_id = await self._next_move_id()
        await self.store.update(self.paths.room(), {"moveId": move_id, "lastMove": move})
        logger.debug("room %s: move %d sent", self.paths.room_code, move_id)
        return move_id

    async def update_state(self, state: Mapping[str, Any]) -> None:
        """Merge top-level fields into the room state; other fields stay."""
        if not self.active:
            return
        await self.store.update(self.paths.state(), dict(state))

    async def send_move_and_state(self, move: Any, state: Any) -> Optional[int]:
        # One update so no snapshot shows the new moveId with the old state.
        if not self.active:
            return None
        move_id = await self._next_move_id()
        await self.store.update(
            self.paths.room(),
            {"moveId": move_id, "lastMove": move, "state": state},
        )
        logger.debug("room %s: move %d sent with state", self.paths.room_code, move_id)
        return move_id
