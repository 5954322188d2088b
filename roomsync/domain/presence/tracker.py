from __future__ import annotations

import logging

from roomsync.domain.common.identity import IdentityProvider
from roomsync.store.base import SERVER_TIMESTAMP, SharedStore
from roomsync.store.paths import presence

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Online flag per signed-in user; the store flips it off when we drop."""

    def __init__(self, store: SharedStore, identity: IdentityProvider) -> None:
        self.store = store
        self.identity = identity

    async def go_online(self) -> bool:
        user = self.identity.get_current_user()
        if user is None:
            return False
        path = presence(user.uid)
        await self.store.write(path, {"online": True, "lastSeen": SERVER_TIMESTAMP})
        await self.store.register_disconnect_action(path, {"online": False, "lastSeen": SERVER_TIMESTAMP})
        logger.debug("presence: %s online", user.uid)
        return True

    async def go_offline(self) -> bool:
        user = self.identity.get_current_user()
        if user is None:
            return False
        path = presence(user.uid)
        await self.store.write(path, {"online": False, "lastSeen": SERVER_TIMESTAMP})
        await self.store.cancel_disconnect_action(path)
        logger.debug("presence: %s offline", user.uid)
        return True
