"""Shared store contract.

Everything in roomsync talks to the external key-value store through this
interface. Paths are '/'-separated; values are JSON-compatible trees in which
null children and empty objects do not exist.

Implementations:
- MemoryStore / MemoryConnection: single process, used by tests and local dev.
- RedisStore: documents in Redis, pub/sub for watches, heartbeat sessions for
  disconnect actions.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from roomsync.store.tree import SERVER_TIMESTAMP

OnChange = Callable[[Any], Union[None, Awaitable[None]]]
OnError = Callable[[BaseException], Union[None, Awaitable[None]]]

__all__ = ["SERVER_TIMESTAMP", "OnChange", "OnError", "Subscription", "SharedStore"]


class Subscription(Protocol):
    path: str
    active: bool


class SharedStore(Protocol):
    backend: str

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        """Drop the connection. Registered disconnect actions fire."""
        ...

    async def read(self, path: str) -> Any:
        """Current value at path, or None when absent."""
        ...

    async def write(self, path: str, value: Any) -> None:
        """Full overwrite; None deletes the node."""
        ...

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        """Atomic multi-field merge. Keys may be relative paths; None deletes a child."""
        ...

    async def remove(self, path: str) -> None:
        ...

    async def watch(self, path: str, on_change: OnChange, on_error: Optional[OnError] = None) -> Subscription:
        """
        Deliver the current value at path now and after every change to it.
        A store-side failure calls on_error once and ends the subscription.
        """
        ...

    async def unwatch(self, sub: Subscription) -> None:
        """Idempotent. Nothing is delivered after this returns."""
        ...

    async def register_disconnect_action(self, path: str, value: Any) -> None:
        ...

    async def cancel_disconnect_action(self, path: str) -> None:
        ...

    async def generate_key(self, path: str) -> str:
        """Unique child key under path, ordered by creation."""
        ...
