import asyncio

import pytest

from roomsync.client import GameClient
from roomsync.domain.common.identity import StaticIdentity, User
from roomsync.settings import Settings
from roomsync.store.memory import MemoryStore


class TickClock:
    """Strictly increasing fake server clock (ms)."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.t = start

    def __call__(self) -> int:
        self.t += 1
        return self.t


@pytest.fixture
def hub():
    return MemoryStore(clock=TickClock())


def make_client(hub, uid=None, name=None, timeout_sec=5.0):
    user = User(uid=uid, name=name or uid) if uid else None
    return GameClient(
        hub.connection(),
        identity=StaticIdentity(user),
        settings=Settings(STORE_BACKEND="memory", MATCHMAKING_TIMEOUT_SEC=timeout_sec),
    )


async def settle(rounds: int = 50):
    """Let queued watch deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
