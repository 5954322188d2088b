import asyncio

import pytest

from roomsync.domain.common.errors import StoreUnavailable, StoreWriteError
from roomsync.store.base import SERVER_TIMESTAMP
from tests.conftest import settle


@pytest.mark.asyncio
async def test_write_read_update_remove(hub):
    conn = hub.connection()
    await conn.write("rooms/AAAA", {"code": "AAAA", "moveId": 0, "createdAt": SERVER_TIMESTAMP})
    room = await conn.read("rooms/AAAA")
    assert room["moveId"] == 0
    assert isinstance(room["createdAt"], int)

    await conn.update("rooms/AAAA", {"moveId": 1, "lastMove": {"x": 1}})
    assert await conn.read("rooms/AAAA/moveId") == 1
    assert await conn.read("rooms/AAAA/lastMove") == {"x": 1}

    await conn.remove("rooms/AAAA")
    assert await conn.read("rooms/AAAA") is None


@pytest.mark.asyncio
async def test_watch_delivers_initial_value_then_changes_in_order(hub):
    writer = hub.connection()
    watcher = hub.connection()
    seen = []
    sub = await watcher.watch("rooms/AAAA/moveId", seen.append)
    await settle()
    for n in range(1, 4):
        await writer.write("rooms/AAAA/moveId", n)
    await settle()
    assert seen == [None, 1, 2, 3]
    await watcher.unwatch(sub)


@pytest.mark.asyncio
async def test_watch_skips_unrelated_changes(hub):
    conn = hub.connection()
    seen = []
    await conn.watch("matchmaking/chess/k1", seen.append)
    await conn.write("matchmaking/chess/k1", {"uid": "a"})
    await conn.write("matchmaking/chess/k2", {"uid": "b"})
    await settle()
    assert seen == [None, {"uid": "a"}]


@pytest.mark.asyncio
async def test_unwatch_stops_delivery_even_from_own_callback(hub):
    conn = hub.connection()
    seen = []
    holder = {}

    async def cb(value):
        seen.append(value)
        if value == 1:
            await conn.unwatch(holder["sub"])

    holder["sub"] = await conn.watch("counter", cb)
    await settle()
    await conn.write("counter", 1)
    await conn.write("counter", 2)
    await settle()
    assert seen == [None, 1]
    # idempotent
    await conn.unwatch(holder["sub"])


@pytest.mark.asyncio
async def test_drop_runs_disconnect_actions_and_cancel_removes_them(hub):
    a = hub.connection()
    observer = hub.connection()
    await a.write("presence/u1", {"online": True})
    await a.write("matchmaking/g/k1", {"uid": "u1"})
    await a.register_disconnect_action("presence/u1", {"online": False, "lastSeen": SERVER_TIMESTAMP})
    await a.register_disconnect_action("matchmaking/g/k1", None)
    await a.cancel_disconnect_action("presence/u1")
    assert list(a.pending_disconnect_actions()) == ["matchmaking/g/k1"]

    await a.drop()
    assert await observer.read("matchmaking/g/k1") is None
    assert await observer.read("presence/u1") == {"online": True}
    with pytest.raises(StoreUnavailable):
        await a.read("presence/u1")


@pytest.mark.asyncio
async def test_offline_connection_raises(hub):
    conn = hub.connection()
    conn.offline = True
    with pytest.raises(StoreWriteError):
        await conn.write("rooms/AAAA", {"code": "AAAA"})
    with pytest.raises(StoreUnavailable):
        await conn.read("rooms/AAAA")


@pytest.mark.asyncio
async def test_generate_key_unique_and_ordered(hub):
    a, b = hub.connection(), hub.connection()
    keys = [await a.generate_key("matchmaking/g"), await b.generate_key("matchmaking/g"), await a.generate_key("matchmaking/g")]
    assert len(set(keys)) == 3
    assert keys == sorted(keys)


@pytest.mark.asyncio
async def test_fail_watches_reports_error_and_ends_subscription(hub):
    conn = hub.connection()
    errors = []
    seen = []
    sub = await conn.watch("rooms/AAAA", seen.append, errors.append)
    await settle()
    conn.fail_watches(StoreUnavailable("link lost"))
    await settle()
    await conn.write("rooms/AAAA", {"code": "AAAA"})
    await settle()
    assert seen == [None]
    assert len(errors) == 1 and isinstance(errors[0], StoreUnavailable)
    assert sub.active is False
