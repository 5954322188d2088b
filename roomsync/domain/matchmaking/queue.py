"""Leaderless pairing through a shared queue.

Every seeker publishes an entry under matchmaking/{gameId} and watches both
its own entry and the whole queue. On each queue snapshot it looks at the
oldest unconsumed peer and acts only if that peer would pick it back from the
same snapshot. If its own uid sorts strictly before the peer's uid it creates
the room and writes the code into the peer's entry, otherwise it waits for the
peer to do the same. The peer notices the assignment on its own-entry
watch and joins. Both sides compute the same winner from the same two uids,
so exactly one of them creates the room.

Search states: searching -> matched_guest | matched_host | timed_out | cancelled.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from roomsync.domain.common.callbacks import invoke
from roomsync.domain.common.codes import gen_anon_uid
from roomsync.domain.common.errors import MatchmakingFailed, RoomSyncError
from roomsync.domain.common.fsm import can_transition_search
from roomsync.domain.common.identity import IdentityProvider
from roomsync.domain.common.types import Player, SearchState
from roomsync.domain.rooms.lifecycle import RoomService, RoomSession
from roomsync.store.base import SERVER_TIMESTAMP, SharedStore, Subscription
from roomsync.store.models import MatchmakingEntry, Room
from roomsync.store.paths import QueuePaths

logger = logging.getLogger(__name__)

NO_PLAYERS_FOUND = "No players found"
DEFAULT_TIMEOUT_SEC = 30.0

OnMatched = Callable[[str, Player, Optional[Room], RoomSession], Union[None, Awaitable[None]]]
OnTimeout = Callable[[str], Union[None, Awaitable[None]]]


def parse_queue(value: Any) -> dict[str, MatchmakingEntry]:
    """Queue snapshot -> entries by key. Malformed children are skipped."""
    out: dict[str, MatchmakingEntry] = {}
    if not isinstance(value, dict):
        return out
    for key, raw in value.items():
        if not isinstance(raw, dict):
            continue
        try:
            entry = MatchmakingEntry.model_validate({"key": key, **raw})
        except ValidationError:
            logger.debug("skipping malformed queue entry %s", key)
            continue
        out[key] = entry
    return out


def pick_opponent(
    entries: Iterable[MatchmakingEntry], own_key: str, own_uid: Optional[str] = None
) -> Optional[MatchmakingEntry]:
    """Oldest-waiting entry that is not ours and not yet consumed."""
    others = [
        e for e in entries
        if e.key != own_key and not e.consumed and (own_uid is None or e.uid != own_uid)
    ]
    if not others:
        return None
    others.sort(key=lambda e: (e.ts or 0, e.key))
    return others[0]


def mutual_opponent(
    entries: dict[str, MatchmakingEntry], own_key: str, own_uid: str
) -> Optional[MatchmakingEntry]:
    """Our pick, but only if that peer would pick us back from the same snapshot."""
    opponent = pick_opponent(entries.values(), own_key, own_uid)
    if opponent is None:
        return None
    theirs = pick_opponent(entries.values(), opponent.key, opponent.uid)
    if theirs is None or theirs.key != own_key:
        return None
    return opponent


def is_initiator(own_uid: str, other_uid: str) -> bool:
    # Equal uids (same user twice) never pair with each other.
    return own_uid < other_uid


class MatchmakingSearch:
    """
    One running search. Returned by Matchmaker.matchmake; cancel() stops it.
    Exactly one of on_matched / on_timeout is called, unless cancelled first.
    """

    def __init__(
        self,
        matchmaker: "Matchmaker",
        game_id: str,
        initial_state: Any,
        uid: str,
        name: str,
        key: str,
        on_matched: OnMatched,
        on_timeout: Optional[OnTimeout],
    ) -> None:
        self.store = matchmaker.store
        self.rooms = matchmaker.rooms
        self.timeout_sec = matchmaker.timeout_sec
        self.game_id = game_id
        self.initial_state = initial_state
        self.uid = uid
        self.name = name
        self.key = key
        self.paths = QueuePaths(game_id)
        self.entry_path = self.paths.entry(key)

        self.state: SearchState = "searching"
        self.error: Optional[MatchmakingFailed] = None
        self.session: Optional[RoomSession] = None

        self._on_matched = on_matched
        self._on_timeout = on_timeout
        # Set once a branch (guest, host, timeout, watch failure) takes over.
        self._claimed = False
        self._own_sub: Optional[Subscription] = None
        self._queue_sub: Optional[Subscription] = None
        self._timer: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.state != "searching"

    async def wait(self) -> SearchState:
        await self._finished.wait()
        return self.state

    # ----------------------------
    # Start / stop
    # ----------------------------
    async def start(self) -> None:
        entry = MatchmakingEntry(key=self.key, uid=self.uid, name=self.name)
        payload = entry.to_store()
        payload["ts"] = SERVER_TIMESTAMP
        await self.store.write(self.entry_path, payload)
        try:
            await self.store.register_disconnect_action(self.entry_path, None)
            self._timer = asyncio.create_task(self._run_timer())
            self._own_sub = await self._adopt(
                await self.store.watch(self.entry_path, self._on_own_entry, self._on_watch_error)
            )
            self._queue_sub = await self._adopt(
                await self.store.watch(self.paths.queue(), self._on_queue, self._on_watch_error)
            )
        except RoomSyncError:
            self.state = "cancelled"
            self._claimed = True
            await self._release()
            await self._remove_entry()
            self._finished.set()
            raise
        logger.info("matchmaking %s: %s searching as %s", self.game_id, self.uid, self.key)

    async def _adopt(self, sub: Subscription) -> Optional[Subscription]:
        # A branch may already have concluded while this watch was being set up.
        if self._claimed or self.done:
            await self.store.unwatch(sub)
            return None
        return sub

    async def cancel(self) -> None:
        """Idempotent. No callback runs after this returns."""
        if self.done:
            return
        self.state = "cancelled"
        self._claimed = True
        await self._release()
        await self._remove_entry()
        self._finished.set()
        logger.info("matchmaking %s: %s cancelled", self.game_id, self.uid)

    async def _release(self) -> None:
        if self._timer is not None:
            timer, self._timer = self._timer, None
            if timer is not asyncio.current_task():
                timer.cancel()
        for attr in ("_own_sub", "_queue_sub"):
            sub = getattr(self, attr)
            if sub is not None:
                setattr(self, attr, None)
                await self.store.unwatch(sub)

    async def _remove_entry(self) -> None:
        """Best effort; the disconnect action is the backstop."""
        try:
            await self.store.remove(self.entry_path)
            await self.store.cancel_disconnect_action(self.entry_path)
        except RoomSyncError as e:
            logger.warning("matchmaking %s: could not remove entry %s: %s", self.game_id, self.key, e)

    def _claim(self) -> bool:
        if self._claimed or self.done:
            return False
        self._claimed = True
        return True

    def _settle(self, target: SearchState) -> bool:
        if not can_transition_search(self.state, target):
            return False
        self.state = target
        self._finished.set()
        return True

    async def _fail(self, reason: str, cause: Optional[BaseException] = None) -> None:
        self.error = MatchmakingFailed(reason, cause)
        logger.warning("matchmaking %s: %s", self.game_id, reason)
        if self._settle("timed_out"):
            await invoke(self._on_timeout, reason)

    # ----------------------------
    # Branches
    # ----------------------------
    async def _run_timer(self) -> None:
        await asyncio.sleep(self.timeout_sec)
        if not self._claim():
            return
        await self._release()
        await self._remove_entry()
        logger.info("matchmaking %s: %s timed out", self.game_id, self.uid)
        if self._settle("timed_out"):
            await invoke(self._on_timeout, NO_PLAYERS_FOUND)

    async def _on_watch_error(self, exc: BaseException) -> None:
        if not self._claim():
            return
        await self._release()
        await self._remove_entry()
        await self._fail(f"Watch failed: {exc}", exc)

    async def _on_own_entry(self, value: Any) -> None:
        if value is None or self._claimed or self.done:
            return
        room_code = value.get("roomCode") if isinstance(value, dict) else None
        if not room_code or not self._claim():
            return
        # A peer created the room for us.
        await self._release()
        await self._remove_entry()
        try:
            session = await self.rooms.join(room_code)
        except (RoomSyncError, ValidationError) as e:
            await self._fail(f"Failed to join: {e}", e)
            return
        if not self._settle("matched_guest"):
            await session.leave()
            return
        self.session = session
        logger.info("matchmaking %s: %s joined room %s", self.game_id, self.uid, room_code)
        await invoke(self._on_matched, room_code, 1, session.room_data, session)

    async def _on_queue(self, value: Any) -> None:
        if not value or self._claimed or self.done:
            return
        entries = parse_queue(value)
        mine = entries.get(self.key)
        if mine is not None and mine.consumed:
            # the own-entry watch handles the assignment
            return
        opponent = mutual_opponent(entries, self.key, self.uid)
        if opponent is None or not is_initiator(self.uid, opponent.uid):
            return
        if not await self._peer_waiting(opponent):
            return
        if not self._claim():
            return
        await self._release()
        await self._initiate(opponent)

    async def _peer_waiting(self, opponent: MatchmakingEntry) -> bool:
        # The snapshot may be stale: the peer can cancel or disconnect meanwhile.
        try:
            raw = await self.store.read(self.paths.entry(opponent.key))
        except RoomSyncError as e:
            logger.warning("matchmaking %s: could not re-read peer %s: %s", self.game_id, opponent.key, e)
            return False
        if not isinstance(raw, dict) or raw.get("roomCode"):
            logger.debug("matchmaking %s: peer %s no longer waiting", self.game_id, opponent.key)
            return False
        return True

    async def _discard_room(self, session: RoomSession) -> None:
        await session.leave()
        try:
            await self.store.remove(session.paths.room())
        except RoomSyncError as e:
            logger.warning("matchmaking %s: could not remove room %s: %s", self.game_id, session.code, e)

    async def _initiate(self, opponent: MatchmakingEntry) -> None:
        try:
            session = await self.rooms.create(self.game_id, self.initial_state)
        except RoomSyncError as e:
            await self._remove_entry()
            await self._fail(f"Failed to create room: {e}", e)
            return
        if self.done:
            # cancelled while the room was being created
            await self._discard_room(session)
            return
        try:
            # Assign the peer and drop our own entry in one atomic update.
            await self.store.update(
                self.paths.queue(),
                {f"{opponent.key}/roomCode": session.code, self.key: None},
            )
        except RoomSyncError as e:
            await self._discard_room(session)
            await self._remove_entry()
            await self._fail(f"Failed to assign room: {e}", e)
            return
        await self._remove_entry()
        if not self._settle("matched_host"):
            # the peer's join now fails and reaches its on_timeout
            await self._discard_room(session)
            return
        self.session = session
        logger.info(
            "matchmaking %s: %s hosts room %s for %s", self.game_id, self.uid, session.code, opponent.uid
        )
        await invoke(self._on_matched, session.code, 0, None, session)


class Matchmaker:
    def __init__(
        self,
        store: SharedStore,
        identity: IdentityProvider,
        rooms: RoomService,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self.store = store
        self.identity = identity
        self.rooms = rooms
        self.timeout_sec = timeout_sec

    async def matchmake(
        self,
        game_id: str,
        initial_state: Any,
        on_matched: OnMatched,
        on_timeout: Optional[OnTimeout] = None,
    ) -> MatchmakingSearch:
        """
        Publish a queue entry and start looking for an opponent.
        Publishing errors propagate; later failures arrive through on_timeout.
        """
        user = self.identity.get_current_user()
        uid = user.uid if user else gen_anon_uid()
        name = user.name if user else "Player"
        key = await self.store.generate_key(QueuePaths(game_id).queue())
        search = MatchmakingSearch(self, game_id, initial_state, uid, name, key, on_matched, on_timeout)
        await search.start()
        return search
