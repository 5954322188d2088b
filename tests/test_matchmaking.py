import asyncio

import pytest

from roomsync.domain.common.errors import MatchmakingFailed, StoreUnavailable, StoreWriteError
from roomsync.domain.matchmaking.queue import (
    NO_PLAYERS_FOUND,
    is_initiator,
    mutual_opponent,
    parse_queue,
    pick_opponent,
)
from roomsync.store.models import MatchmakingEntry
from tests.conftest import make_client, settle


class Recorder:
    def __init__(self):
        self.matched = []
        self.timeouts = []
        self.done = asyncio.Event()

    def on_matched(self, code, player, room_data, session):
        self.matched.append((code, player, room_data, session))
        self.done.set()

    def on_timeout(self, reason):
        self.timeouts.append(reason)
        self.done.set()


def test_pick_opponent_oldest_unconsumed_not_self():
    entries = [
        MatchmakingEntry(key="k1", uid="me", ts=1),
        MatchmakingEntry(key="k2", uid="b", ts=5),
        MatchmakingEntry(key="k3", uid="c", ts=3, roomCode="7XQP"),
        MatchmakingEntry(key="k4", uid="d", ts=4),
    ]
    assert pick_opponent(entries, "k1").key == "k4"
    assert pick_opponent(entries[:1], "k1") is None


def test_mutual_opponent_requires_both_choices_to_agree():
    entries = {
        "k1": MatchmakingEntry(key="k1", uid="c", ts=1),
        "k2": MatchmakingEntry(key="k2", uid="b", ts=2),
        "k3": MatchmakingEntry(key="k3", uid="a", ts=3),
    }
    assert mutual_opponent(entries, "k2", "b").key == "k1"
    assert mutual_opponent(entries, "k1", "c").key == "k2"
    # "a" also sees "c" as oldest, but "c" would pick "b"
    assert mutual_opponent(entries, "k3", "a") is None


def test_pick_opponent_skips_own_uid():
    entries = [
        MatchmakingEntry(key="k1", uid="me", ts=1),
        MatchmakingEntry(key="k2", uid="me", ts=2),
        MatchmakingEntry(key="k3", uid="x", ts=3),
    ]
    assert pick_opponent(entries, "k1", "me").key == "k3"


def test_initiator_is_strictly_smaller_uid():
    assert is_initiator("anon_aaa", "anon_bbb") is True
    assert is_initiator("anon_bbb", "anon_aaa") is False
    assert is_initiator("same", "same") is False


def test_parse_queue_skips_malformed_children():
    entries = parse_queue({"k1": {"uid": "a", "ts": 1}, "k2": {"roomCode": "7XQP"}, "k3": "junk"})
    assert list(entries) == ["k1"]
    assert entries["k1"].key == "k1"
    assert parse_queue(None) == {}


@pytest.mark.asyncio
async def test_two_anonymous_seekers_pair_smaller_uid_hosts(hub, monkeypatch):
    uids = iter(["anon_bbb", "anon_aaa"])
    monkeypatch.setattr("roomsync.domain.matchmaking.queue.gen_anon_uid", lambda: next(uids))
    y, x = make_client(hub), make_client(hub)
    ry, rx = Recorder(), Recorder()

    sy = await y.matchmaker.matchmake("raaja-raani", {}, ry.on_matched, ry.on_timeout)
    sx = await x.matchmaker.matchmake("raaja-raani", {}, rx.on_matched, rx.on_timeout)
    await asyncio.wait_for(asyncio.gather(rx.done.wait(), ry.done.wait()), 2)

    assert sx.uid == "anon_aaa" and sy.uid == "anon_bbb"
    code, player, room_data, host_session = rx.matched[0]
    assert player == 0
    assert room_data is None
    assert host_session.is_host

    g_code, g_player, g_room, guest_session = ry.matched[0]
    assert g_code == code
    assert g_player == 1
    assert g_room.status == "playing"
    assert g_room.game_id == "raaja-raani"
    assert guest_session.player == 1

    assert sx.state == "matched_host"
    assert sy.state == "matched_guest"
    assert rx.timeouts == [] and ry.timeouts == []

    await settle()
    assert hub.snapshot("matchmaking/raaja-raani") is None
    assert list(hub.snapshot("rooms")) == [code]
    assert x.store.pending_disconnect_actions() == {}
    assert y.store.pending_disconnect_actions() == {}


@pytest.mark.asyncio
async def test_signed_in_seekers_pair_regardless_of_arrival_order(hub):
    early, late = make_client(hub, "u-zed", "Zed"), make_client(hub, "u-amy", "Amy")
    r_early, r_late = Recorder(), Recorder()
    await early.matchmaker.matchmake("chess", {"fen": "start"}, r_early.on_matched, r_early.on_timeout)
    await settle()
    await late.matchmaker.matchmake("chess", {"fen": "start"}, r_late.on_matched, r_late.on_timeout)
    await asyncio.wait_for(asyncio.gather(r_early.done.wait(), r_late.done.wait()), 2)

    # "u-amy" < "u-zed": the later arrival hosts
    assert r_late.matched[0][1] == 0
    assert r_early.matched[0][1] == 1
    room = r_early.matched[0][2]
    assert room.host == "u-amy" and room.guest == "u-zed"
    assert room.state == {"fen": "start"}


@pytest.mark.asyncio
async def test_lone_seeker_times_out_once(hub):
    a = make_client(hub, "A", timeout_sec=0.05)
    rec = Recorder()
    search = await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await asyncio.wait_for(rec.done.wait(), 2)
    await asyncio.sleep(0.1)
    assert rec.timeouts == [NO_PLAYERS_FOUND]
    assert rec.matched == []
    assert search.state == "timed_out"
    assert await search.wait() == "timed_out"
    assert hub.snapshot("matchmaking/chess") is None


@pytest.mark.asyncio
async def test_cancel_before_match_is_silent_and_idempotent(hub):
    a = make_client(hub, "A", timeout_sec=0.05)
    rec = Recorder()
    search = await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await settle()
    assert hub.snapshot(f"matchmaking/chess/{search.key}")["uid"] == "A"

    await search.cancel()
    await search.cancel()
    await asyncio.sleep(0.1)

    assert rec.matched == [] and rec.timeouts == []
    assert search.state == "cancelled"
    assert hub.snapshot("matchmaking/chess") is None
    assert a.store.pending_disconnect_actions() == {}


@pytest.mark.asyncio
async def test_cancel_after_conclusion_is_noop(hub):
    a = make_client(hub, "A", timeout_sec=0.01)
    rec = Recorder()
    search = await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await asyncio.wait_for(rec.done.wait(), 2)
    await search.cancel()
    assert search.state == "timed_out"
    assert rec.timeouts == [NO_PLAYERS_FOUND]


@pytest.mark.asyncio
async def test_cancelled_seeker_is_not_matched(hub):
    a, b = make_client(hub, "a"), make_client(hub, "b", timeout_sec=0.05)
    ra, rb = Recorder(), Recorder()
    sa = await a.matchmaker.matchmake("chess", {}, ra.on_matched, ra.on_timeout)
    await sa.cancel()
    await b.matchmaker.matchmake("chess", {}, rb.on_matched, rb.on_timeout)
    await asyncio.wait_for(rb.done.wait(), 2)
    assert rb.timeouts == [NO_PLAYERS_FOUND]
    assert ra.matched == [] and ra.timeouts == []
    assert hub.snapshot("rooms") is None


@pytest.mark.asyncio
async def test_disconnect_removes_queue_entry(hub):
    a = make_client(hub, "A")
    rec = Recorder()
    search = await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await settle()
    assert hub.snapshot("matchmaking/chess") is not None

    await a.store.drop()
    assert hub.snapshot("matchmaking/chess") is None
    # cleanup against a dead connection is swallowed
    await search.cancel()
    assert rec.matched == [] and rec.timeouts == []


@pytest.mark.asyncio
async def test_room_creation_failure_reported_through_timeout(hub, monkeypatch):
    host, guest = make_client(hub, "a"), make_client(hub, "b")

    async def broken_create(game_id, initial_state=None):
        raise StoreWriteError("disk full")

    monkeypatch.setattr(host.rooms, "create", broken_create)
    rh, rg = Recorder(), Recorder()
    sg = await guest.matchmaker.matchmake("chess", {}, rg.on_matched, rg.on_timeout)
    sh = await host.matchmaker.matchmake("chess", {}, rh.on_matched, rh.on_timeout)
    await asyncio.wait_for(rh.done.wait(), 2)

    assert rh.matched == []
    assert rh.timeouts == ["Failed to create room: disk full"]
    assert sh.state == "timed_out"
    assert isinstance(sh.error, MatchmakingFailed)
    assert isinstance(sh.error.cause, StoreWriteError)
    assert hub.snapshot(f"matchmaking/chess/{sh.key}") is None

    await sg.cancel()
    assert rg.matched == [] and rg.timeouts == []


@pytest.mark.asyncio
async def test_watch_failure_ends_search_through_timeout(hub):
    a = make_client(hub, "A")
    rec = Recorder()
    search = await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await settle()
    a.store.fail_watches(StoreUnavailable("link lost"))
    await asyncio.wait_for(rec.done.wait(), 2)
    assert rec.timeouts == ["Watch failed: link lost"]
    assert search.state == "timed_out"
    assert hub.snapshot("matchmaking/chess") is None


@pytest.mark.asyncio
async def test_publish_failure_propagates(hub):
    a = make_client(hub, "A")
    a.store.offline = True
    rec = Recorder()
    with pytest.raises(StoreUnavailable):
        await a.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)


@pytest.mark.asyncio
async def test_three_seekers_pair_exactly_once(hub):
    c, b, a = make_client(hub, "c"), make_client(hub, "b"), make_client(hub, "a")
    rc, rb, ra = Recorder(), Recorder(), Recorder()
    await c.matchmaker.matchmake("chess", {}, rc.on_matched, rc.on_timeout)
    await b.matchmaker.matchmake("chess", {}, rb.on_matched, rb.on_timeout)
    sa = await a.matchmaker.matchmake("chess", {}, ra.on_matched, ra.on_timeout)
    await asyncio.wait_for(asyncio.gather(rb.done.wait(), rc.done.wait()), 2)
    await settle()

    # the two oldest seekers pair; "b" < "c" so "b" hosts
    assert [m[1] for m in rb.matched] == [0]
    assert [m[1] for m in rc.matched] == [1]
    assert rb.matched[0][0] == rc.matched[0][0]
    assert list(hub.snapshot("rooms")) == [rb.matched[0][0]]

    assert ra.matched == [] and ra.timeouts == []
    assert sa.state == "searching"
    queue = hub.snapshot("matchmaking/chess")
    assert list(queue) == [sa.key]
    assert "roomCode" not in queue[sa.key]
    await sa.cancel()


@pytest.mark.asyncio
async def test_cancel_while_room_is_created_leaves_peer_unassigned(hub, monkeypatch):
    host, guest = make_client(hub, "a"), make_client(hub, "b")
    entered, gate = asyncio.Event(), asyncio.Event()
    real_create = host.rooms.create

    async def held_create(game_id, initial_state=None):
        entered.set()
        await gate.wait()
        return await real_create(game_id, initial_state)

    monkeypatch.setattr(host.rooms, "create", held_create)
    rh, rg = Recorder(), Recorder()
    sg = await guest.matchmaker.matchmake("chess", {}, rg.on_matched, rg.on_timeout)
    sh = await host.matchmaker.matchmake("chess", {}, rh.on_matched, rh.on_timeout)
    await asyncio.wait_for(entered.wait(), 2)

    await sh.cancel()
    gate.set()
    await settle()
    await asyncio.sleep(0.05)

    assert sh.state == "cancelled"
    assert rh.matched == [] and rh.timeouts == []
    assert rg.matched == [] and rg.timeouts == []
    assert sg.state == "searching"
    assert hub.snapshot("rooms") is None
    assert "roomCode" not in hub.snapshot(f"matchmaking/chess/{sg.key}")
    await sg.cancel()


@pytest.mark.asyncio
async def test_malformed_assigned_room_reported_through_timeout(hub):
    b = make_client(hub, "b")
    other = hub.connection()
    rec = Recorder()
    search = await b.matchmaker.matchmake("chess", {}, rec.on_matched, rec.on_timeout)
    await settle()

    await other.write("rooms/BADX", {"code": "BADX", "gameId": "chess", "status": "exploded"})
    await other.write(f"matchmaking/chess/{search.key}/roomCode", "BADX")
    await asyncio.wait_for(rec.done.wait(), 2)

    assert rec.matched == []
    assert len(rec.timeouts) == 1
    assert rec.timeouts[0].startswith("Failed to join:")
    assert search.state == "timed_out"
    assert isinstance(search.error, MatchmakingFailed)


@pytest.mark.asyncio
async def test_peer_gone_before_assignment_is_not_assigned(hub, monkeypatch):
    host = make_client(hub, "a", timeout_sec=0.1)
    guest = make_client(hub, "b")
    rh, rg = Recorder(), Recorder()
    sg = await guest.matchmaker.matchmake("chess", {}, rg.on_matched, rg.on_timeout)
    await settle()

    peer_path = f"matchmaking/chess/{sg.key}"
    real_read = host.store.read

    async def read_after_peer_left(path):
        if path == peer_path:
            await guest.store.remove(peer_path)
        return await real_read(path)

    monkeypatch.setattr(host.store, "read", read_after_peer_left)
    sh = await host.matchmaker.matchmake("chess", {}, rh.on_matched, rh.on_timeout)
    await asyncio.wait_for(rh.done.wait(), 2)

    assert rh.timeouts == [NO_PLAYERS_FOUND]
    assert sh.state == "timed_out"
    assert hub.snapshot("rooms") is None
    # no bare {roomCode} child left behind
    assert hub.snapshot("matchmaking/chess") is None
    await sg.cancel()
    assert rg.matched == [] and rg.timeouts == []
