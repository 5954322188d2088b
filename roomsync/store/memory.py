"""In-memory shared store.

MemoryStore holds the tree and plays the role of the remote store; each client
talks to it through its own MemoryConnection, which owns that client's
subscriptions and disconnect actions. Notifications are queued per
subscription and delivered by a background task, so watchers observe changes
asynchronously and in apply order, never inside the writer's call.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Any, Callable, Mapping, Optional

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

_MISSING = object()


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class MemoryStore:
    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._root: Any = None
        self._clock = clock or _wall_clock_ms
        self._key_seq = 0
        self._watches: list[MemoryWatch] = []

    def connection(self) -> "MemoryConnection":
        return MemoryConnection(self)

    def now_ms(self) -> int:
        return self._clock()

    def snapshot(self, path: str = "") -> Any:
        """Debug/test view of the tree without going through a connection."""
        if not path.strip("/"):
            return copy.deepcopy(self._root)
        return get_in(self._root, split_path(path))

    # ----------------------------
    # Server side
    # ----------------------------
    def _get(self, path: str) -> Any:
        return get_in(self._root, split_path(path))

    def _commit(self, new_root: Any) -> None:
        self._root = new_root
        for w in list(self._watches):
            w.offer(get_in(self._root, w.segs))

    def _write(self, path: str, value: Any) -> None:
        value = resolve_server_values(value, self.now_ms())
        self._commit(set_in(self._root, split_path(path), value))

    def _update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._commit(apply_update(self._root, split_path(path), fields, self.now_ms()))

    def _next_key(self) -> str:
        self._key_seq += 1
        return f"{self._key_seq:012d}"

    def _add_watch(self, w: "MemoryWatch") -> None:
        self._watches.append(w)
        w.offer(get_in(self._root, w.segs))

    def _drop_watch(self, w: "MemoryWatch") -> None:
        if w in self._watches:
            self._watches.remove(w)


class MemoryWatch:
    def __init__(self, path: str, on_change: OnChange, on_error: Optional[OnError]) -> None:
        self.path = path
        self.segs = split_path(path)
        self.active = True
        self._on_change = on_change
        self._on_error = on_error
        self._last: Any = _MISSING
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task = asyncio.create_task(self._run())

    def offer(self, value: Any) -> None:
        if not self.active or value == self._last:
            return
        self._last = value
        self._queue.put_nowait(copy.deepcopy(value))

    def fail(self, exc: BaseException) -> None:
        if not self.active:
            return
        self._queue.put_nowait(exc)

    async def _run(self) -> None:
        while self.active:
            value = await self._queue.get()
            if not self.active:
                break
            if isinstance(value, BaseException):
                self.active = False
                await invoke(self._on_error, value)
                break
            try:
                await invoke(self._on_change, value)
            except Exception:
                logger.exception("watch callback failed for %s", self.path)

    def stop(self) -> None:
        self.active = False
        if asyncio.current_task() is not self._task:
            self._task.cancel()


class MemoryConnection:
    """One client's connection to a MemoryStore."""

    backend = "memory"

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.connected = True
        # Flip to simulate a flaky link: every request fails with StoreUnavailable.
        self.offline = False
        self._watches: list[MemoryWatch] = []
        self._on_disconnect: dict[str, Any] = {}

    def _check(self, writing: bool = False) -> None:
        if not self.connected or self.offline:
            if writing:
                raise StoreWriteError("store write failed: connection unavailable")
            raise StoreUnavailable("store connection unavailable")

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        await self.drop()

    async def drop(self) -> None:
        """Simulate losing the connection: run disconnect actions, stop watches."""
        if not self.connected:
            return
        self.connected = False
        for w in list(self._watches):
            await self.unwatch(w)
        actions, self._on_disconnect = self._on_disconnect, {}
        for path, value in actions.items():
            logger.debug("running disconnect action at %s", path)
            self.store._write(path, value)

    async def read(self, path: str) -> Any:
        self._check()
        await asyncio.sleep(0)
        return self.store._get(path)

    async def write(self, path: str, value: Any) -> None:
        self._check(writing=True)
        await asyncio.sleep(0)
        self.store._write(path, value)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._check(writing=True)
        await asyncio.sleep(0)
        self.store._update(path, fields)

    async def remove(self, path: str) -> None:
        await self.write(path, None)

    async def watch(self, path: str, on_change: OnChange, on_error: Optional[OnError] = None) -> MemoryWatch:
        self._check()
        w = MemoryWatch(path, on_change, on_error)
        self._watches.append(w)
        self.store._add_watch(w)
        return w

    async def unwatch(self, sub: MemoryWatch) -> None:
        sub.stop()
        self.store._drop_watch(sub)
        if sub in self._watches:
            self._watches.remove(sub)

    def fail_watches(self, exc: BaseException) -> None:
        """Deliver a store-side error to every live subscription of this connection."""
        for w in list(self._watches):
            w.fail(exc)
            self.store._drop_watch(w)
            self._watches.remove(w)

    async def register_disconnect_action(self, path: str, value: Any) -> None:
        self._check(writing=True)
        self._on_disconnect[join_path(path)] = copy.deepcopy(value)

    async def cancel_disconnect_action(self, path: str) -> None:
        self._check(writing=True)
        self._on_disconnect.pop(join_path(path), None)

    def pending_disconnect_actions(self) -> dict[str, Any]:
        return dict(self._on_disconnect)

    async def generate_key(self, path: str) -> str:
        self._check()
        return self.store._next_key()
