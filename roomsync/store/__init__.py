from __future__ import annotations

from roomsync.settings import Settings
from roomsync.store.base import SERVER_TIMESTAMP, SharedStore, Subscription
from roomsync.store.memory import MemoryConnection, MemoryStore
from roomsync.store.redis_store import RedisStore


def create_store(settings: Settings) -> SharedStore:
    """Build the store client selected by STORE_BACKEND (not yet connected)."""
    if settings.STORE_BACKEND == "memory":
        return MemoryStore().connection()
    return RedisStore.from_url(
        settings.REDIS_URL,
        prefix=settings.KEY_PREFIX,
        session_ttl_sec=settings.SESSION_TTL_SEC,
        heartbeat_interval_sec=settings.HEARTBEAT_INTERVAL_SEC,
    )


__all__ = [
    "SERVER_TIMESTAMP",
    "SharedStore",
    "Subscription",
    "MemoryConnection",
    "MemoryStore",
    "RedisStore",
    "create_store",
]
