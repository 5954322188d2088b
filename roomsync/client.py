from __future__ import annotations

from typing import Optional

from roomsync.domain.common.identity import IdentityProvider, StaticIdentity
from roomsync.domain.leaderboard.stats import Leaderboard
from roomsync.domain.matchmaking.queue import Matchmaker
from roomsync.domain.presence.tracker import PresenceTracker
from roomsync.domain.rooms.lifecycle import RoomService
from roomsync.settings import Settings, get_settings
from roomsync.store import SharedStore, create_store


class GameClient:
    """
    Everything one player's process needs, bound to one store connection.

        async with await GameClient.connect() as client:
            session = await client.rooms.create("pallanguzhi")
    """

    def __init__(
        self,
        store: SharedStore,
        identity: Optional[IdentityProvider] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.identity = identity or StaticIdentity()
        self.rooms = RoomService(store, self.identity)
        self.matchmaker = Matchmaker(
            store,
            self.identity,
            self.rooms,
            timeout_sec=settings.MATCHMAKING_TIMEOUT_SEC,
        )
        self.presence = PresenceTracker(store, self.identity)
        self.leaderboard = Leaderboard(store, self.identity)

    @classmethod
    async def connect(
        cls,
        settings: Optional[Settings] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> "GameClient":
        settings = settings or get_settings()
        store = create_store(settings)
        await store.connect()
        return cls(store, identity=identity, settings=settings)

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> "GameClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
