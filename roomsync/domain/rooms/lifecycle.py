from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Union

from roomsync.domain.common.callbacks import invoke
from roomsync.domain.common.codes import gen_room_code
from roomsync.domain.common.errors import InvalidTransition, RoomFull, RoomNotFound
from roomsync.domain.common.fsm import can_transition_to
from roomsync.domain.common.identity import IdentityProvider
from roomsync.domain.common.types import ANONYMOUS, Player
from roomsync.domain.rooms.moves import MoveSync
from roomsync.store.base import SERVER_TIMESTAMP, OnError, SharedStore, Subscription
from roomsync.store.models import Room
from roomsync.store.paths import RoomPaths

logger = logging.getLogger(__name__)

RoomCallback = Callable[[Room], Union[None, Awaitable[None]]]


class RoomSession(MoveSync):
    """
    Handle on one room held by one participant (player 0 = host, 1 = guest).
    Sessions are independent; a client may hold several at once.
    """

    def __init__(self, store: SharedStore, code: str, player: Player, room_data: Room) -> None:
        self.store = store
        self.code = code
        self.player = player
        self.room_data = room_data
        self.paths = RoomPaths(code)
        self.active = True
        self._sub: Optional[Subscription] = None

    @property
    def is_host(self) -> bool:
        return self.player == 0

    async def on_update(self, callback: RoomCallback, on_error: Optional[OnError] = None) -> None:
        """
        Deliver the full room on every change. Replaces the previous callback.
        Snapshots of a deleted room are skipped.
        """
        if not self.active:
            return
        await self._unsubscribe()

        async def _on_change(value: Any) -> None:
            if value is None:
                return
            room = Room.model_validate(value)
            self.room_data = room
            await invoke(callback, room)

        async def _on_error(exc: BaseException) -> None:
            self._sub = None
            logger.warning("room %s: subscription ended: %s", self.code, exc)
            await invoke(on_error, exc)

        self._sub = await self.store.watch(self.paths.room(), _on_change, _on_error)

    async def _unsubscribe(self) -> None:
        if self._sub is not None:
            sub, self._sub = self._sub, None
            await self.store.unwatch(sub)

    async def leave(self) -> None:
        """Stop listening and drop the handle. The room record stays in the store."""
        await self._unsubscribe()
        if self.active:
            self.active = False
            logger.info("room %s: player %d left", self.code, self.player)

    async def finish(self, winner: Any) -> None:
        if not self.active:
            return
        status = await self.store.read(self.paths.status())
        if status is None:
            raise RoomNotFound(self.code)
        if not can_transition_to(status, "finished"):
            raise InvalidTransition(status, "finished")
        await self.store.update(self.paths.room(), {"status": "finished", "winner": winner})
        logger.info("room %s finished, winner=%s", self.code, winner)


class RoomService:
    def __init__(self, store: SharedStore, identity: IdentityProvider) -> None:
        self.store = store
        self.identity = identity

    async def create(self, game_id: str, initial_state: Any = None) -> RoomSession:
        """
        Write a fresh waiting room under a random code.
        Write failures propagate; the caller decides whether to retry with a new code.
        """
        user = self.identity.get_current_user()
        code = gen_room_code()
        room = Room(
            code=code,
            game_id=game_id,
            host=user.uid if user else ANONYMOUS,
            host_name=user.name if user else "Player 1",
            state=initial_state if initial_state is not None else {},
        )
        payload = room.to_store()
        payload["createdAt"] = SERVER_TIMESTAMP
        await self.store.write(RoomPaths(code).room(), payload)
        logger.info("room %s created for %s by %s", code, game_id, room.host)
        return RoomSession(self.store, code, 0, room)

    async def join(self, code: str) -> RoomSession:
        """
        Take the guest seat and start the game.

        The fullness check and the update are separate round trips: two joiners
        racing for one room can both pass the check, and the later write wins.
        """
        code = code.strip().upper()
        paths = RoomPaths(code)
        data = await self.store.read(paths.room())
        if data is None:
            raise RoomNotFound(code)
        room = Room.model_validate(data)
        if room.has_guest:
            raise RoomFull(code)
        if not can_transition_to(room.status, "playing"):
            raise InvalidTransition(room.status, "playing")

        user = self.identity.get_current_user()
        guest = user.uid if user else ANONYMOUS
        guest_name = user.name if user else "Player 2"
        await self.store.update(
            paths.room(),
            {"guest": guest, "guestName": guest_name, "status": "playing"},
        )
        logger.info("room %s joined by %s", code, guest)
        joined = room.model_copy(update={"guest": guest, "guest_name": guest_name, "status": "playing"})
        return RoomSession(self.store, code, 1, joined)

    async def get(self, code: str) -> Optional[Room]:
        data = await self.store.read(RoomPaths(code).room())
        return Room.model_validate(data) if data is not None else None

    async def exists(self, code: str) -> bool:
        return await self.store.read(RoomPaths(code).room()) is not None
