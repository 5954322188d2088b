"""Redis-backed shared store.

Layout (prefix "rs" by default):
- rs:doc:{root}/{id}       STRING  {"rev": n, "value": tree} for one document
- rs:chan:{root}/{id}      PUBSUB  new envelope after every mutation
- rs:keyseq:{path}         STRING  INCR counter for generate_key
- rs:sessions              ZSET    sid -> heartbeat expiry (ms)
- rs:ondisconnect:{sid}    HASH    path -> JSON value to write when sid expires

A document is the first two path segments (rooms/7XQP, matchmaking/chess,
presence/uid, leaderboard/chess); deeper segments address into it.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from roomsync.domain.common.callbacks import invoke
from roomsync.domain.common.errors import StoreUnavailable, StoreWriteError
from roomsync.store.base import OnChange, OnError
from roomsync.store.tree import (
    apply_update,
    get_in,
    join_path,
    resolve_server_values,
    set_in,
    split_path,
)

logger = logging.getLogger(__name__)

DOC_DEPTH = 2
_MISSING = object()


@dataclass(frozen=True)
class SK:
    """
    Redis key builder for store documents and sessions.
    """
    prefix: str = "rs"

    def doc(self, doc_path: str) -> str:
        return f"{self.prefix}:doc:{doc_path}"  # STRING envelope JSON

    def channel(self, doc_path: str) -> str:
        return f"{self.prefix}:chan:{doc_path}"  # PUBSUB

    def key_seq(self, path: str) -> str:
        return f"{self.prefix}:keyseq:{path}"  # STRING counter

    def sessions(self) -> str:
        return f"{self.prefix}:sessions"  # ZSET sid -> expiry ms

    def on_disconnect(self, sid: str) -> str:
        return f"{self.prefix}:ondisconnect:{sid}"  # HASH path -> JSON


def split_doc(path: str) -> tuple[str, list[str]]:
    """'matchmaking/chess/000000000003' -> ('matchmaking/chess', ['000000000003'])"""
    segs = split_path(path)
    if len(segs) < DOC_DEPTH:
        raise ValueError(f"path {path!r} is above document level")
    return "/".join(segs[:DOC_DEPTH]), segs[DOC_DEPTH:]


def decode_envelope(raw: Any) -> tuple[int, Any]:
    if raw is None:
        return 0, None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    env = json.loads(raw)
    return int(env.get("rev", 0)), env.get("value")


def encode_envelope(rev: int, value: Any) -> str:
    return json.dumps({"rev": rev, "value": value}, separators=(",", ":"))


class RedisWatch:
    def __init__(self, store: "RedisStore", path: str, on_change: OnChange, on_error: Optional[OnError]) -> None:
        self.path = path
        self.doc_path, self.sub = split_doc(path)
        self.active = True
        self._store = store
        self._on_change = on_change
        self._on_error = on_error
        self._rev = -1
        self._last: Any = _MISSING
        self._pubsub = store.r.pubsub()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        # Subscribe before the initial read so no change slips in between.
        await self._pubsub.subscribe(self._store.keys.channel(self.doc_path))
        self._task = asyncio.create_task(self._run())

    async def _deliver(self, rev: int, doc: Any) -> None:
        if rev <= self._rev:
            return
        self._rev = rev
        value = get_in(doc, self.sub)
        if value == self._last:
            return
        self._last = value
        try:
            await invoke(self._on_change, value)
        except Exception:
            logger.exception("watch callback failed for %s", self.path)

    async def _run(self) -> None:
        try:
            raw = await self._store.r.get(self._store.keys.doc(self.doc_path))
            rev, doc = decode_envelope(raw)
            await self._deliver(rev, doc)
            async for message in self._pubsub.listen():
                if not self.active:
                    break
                if message.get("type") != "message":
                    continue
                rev, doc = decode_envelope(message["data"])
                await self._deliver(rev, doc)
        except asyncio.CancelledError:
            raise
        except (RedisError, ValueError) as e:
            if self.active:
                self.active = False
                logger.warning("watch on %s failed: %s", self.path, e)
                await invoke(self._on_error, StoreUnavailable(f"watch on {self.path} failed: {e}"))
        finally:
            try:
                await self._pubsub.aclose()
            except RedisError as e:
                logger.debug("closing pubsub for %s failed: %s", self.path, e)

    def stop(self) -> None:
        self.active = False
        if self._task is not None and asyncio.current_task() is not self._task:
            self._task.cancel()


class RedisStore:
    backend = "redis"

    def __init__(
        self,
        r: Redis,
        prefix: str = "rs",
        session_ttl_sec: int = 15,
        heartbeat_interval_sec: float = 5.0,
    ) -> None:
        self.r = r
        self.keys = SK(prefix)
        self.sid = uuid.uuid4().hex
        self.session_ttl_ms = session_ttl_sec * 1000
        self.heartbeat_interval_sec = heartbeat_interval_sec
        self._watches: list[RedisWatch] = []
        self._heartbeat_task: Optional[asyncio.Task] = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    # ----------------------------
    # Connection lifecycle
    # ----------------------------
    async def connect(self) -> None:
        try:
            await self.r.ping()
            await self.heartbeat()
        except RedisError as e:
            raise StoreUnavailable(f"cannot reach redis: {e}") from e
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("store session %s connected", self.sid)

    async def close(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        for w in list(self._watches):
            await self.unwatch(w)
        try:
            await self.r.zrem(self.keys.sessions(), self.sid)
            await self.run_disconnect_actions(self.sid)
        except (RedisError, StoreUnavailable) as e:
            # the session expires on its own and another client reaps it
            logger.warning("graceful disconnect of %s failed: %s", self.sid, e)
        await self.r.aclose()
        logger.info("store session %s closed", self.sid)

    async def heartbeat(self) -> None:
        now = await self.now_ms()
        await self.r.zadd(self.keys.sessions(), {self.sid: now + self.session_ttl_ms})

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_sec)
            try:
                await self.heartbeat()
                await self.reap_expired_sessions()
            except (RedisError, StoreUnavailable) as e:
                logger.warning("heartbeat for %s failed: %s", self.sid, e)

    async def reap_expired_sessions(self) -> int:
        """Run the disconnect actions of every session whose heartbeat lapsed."""
        now = await self.now_ms()
        expired = await self.r.zrangebyscore(self.keys.sessions(), "-inf", now)
        reaped = 0
        for sid in expired:
            # zrem succeeds for exactly one reaper
            if await self.r.zrem(self.keys.sessions(), sid):
                await self.run_disconnect_actions(sid)
                reaped += 1
        if reaped:
            logger.info("reaped %d expired store sessions", reaped)
        return reaped

    async def run_disconnect_actions(self, sid: str) -> None:
        key = self.keys.on_disconnect(sid)
        actions = await self.r.hgetall(key)
        await self.r.delete(key)
        for path, raw in actions.items():
            logger.debug("running disconnect action of %s at %s", sid, path)
            await self.write(path, json.loads(raw))

    # ----------------------------
    # Helpers
    # ----------------------------
    async def now_ms(self, client: Any = None) -> int:
        secs, micros = await (client or self.r).time()
        return int(secs) * 1000 + int(micros) // 1000

    async def _mutate(self, path: str, fn: Callable[[Any, list[str], int], Any]) -> None:
        doc_path, sub = split_doc(path)
        key = self.keys.doc(doc_path)
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        rev, doc = decode_envelope(await pipe.get(key))
                        now = await self.now_ms(pipe)
                        new_doc = fn(doc, sub, now)
                        payload = encode_envelope(rev + 1, new_doc)
                        pipe.multi()
                        # deleted documents keep a null tombstone so revisions never restart
                        pipe.set(key, payload)
                        pipe.publish(self.keys.channel(doc_path), payload)
                        await pipe.execute()
                        return
                    except WatchError:
                        continue
        except RedisError as e:
            raise StoreWriteError(f"write to {path} failed: {e}") from e

    # ----------------------------
    # Contract
    # ----------------------------
    async def read(self, path: str) -> Any:
        doc_path, sub = split_doc(path)
        try:
            raw = await self.r.get(self.keys.doc(doc_path))
        except RedisError as e:
            raise StoreUnavailable(f"read of {path} failed: {e}") from e
        _, doc = decode_envelope(raw)
        return get_in(doc, sub)

    async def write(self, path: str, value: Any) -> None:
        await self._mutate(path, lambda doc, sub, now: set_in(doc, sub, resolve_server_values(value, now)))

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        await self._mutate(path, lambda doc, sub, now: apply_update(doc, sub, fields, now))

    async def remove(self, path: str) -> None:
        await self.write(path, None)

    async def watch(self, path: str, on_change: OnChange, on_error: Optional[OnError] = None) -> RedisWatch:
        w = RedisWatch(self, path, on_change, on_error)
        try:
            await w.start()
        except RedisError as e:
            raise StoreUnavailable(f"watch on {path} failed: {e}") from e
        self._watches.append(w)
        return w

    async def unwatch(self, sub: RedisWatch) -> None:
        sub.stop()
        if sub in self._watches:
            self._watches.remove(sub)

    async def register_disconnect_action(self, path: str, value: Any) -> None:
        try:
            await self.r.hset(self.keys.on_disconnect(self.sid), join_path(path), json.dumps(value))
        except RedisError as e:
            raise StoreWriteError(f"registering disconnect action at {path} failed: {e}") from e

    async def cancel_disconnect_action(self, path: str) -> None:
        try:
            await self.r.hdel(self.keys.on_disconnect(self.sid), join_path(path))
        except RedisError as e:
            raise StoreWriteError(f"cancelling disconnect action at {path} failed: {e}") from e

    async def generate_key(self, path: str) -> str:
        try:
            n = await self.r.incr(self.keys.key_seq(join_path(path)))
        except RedisError as e:
            raise StoreUnavailable(f"key generation at {path} failed: {e}") from e
        return f"{int(n):012d}"

