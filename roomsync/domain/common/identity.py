from __future__ import annotations

from typing import Callable, Optional, Protocol

from pydantic import BaseModel

AuthCallback = Callable[[Optional["User"]], None]


class User(BaseModel):
    uid: str
    name: str = "Player"
    photo: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class IdentityProvider(Protocol):
    """
    Identity collaborator consumed by the room, matchmaking and presence services.
    Sign-in flows live outside roomsync; only the resolved user is needed here.
    """

    def get_current_user(self) -> Optional[User]:
        ...

    def on_auth_change(self, callback: AuthCallback) -> Callable[[], None]:
        """Register callback; returns an unsubscribe function."""
        ...


class StaticIdentity:
    """In-process identity provider whose user is set by the embedding app."""

    def __init__(self, user: Optional[User] = None) -> None:
        self._user = user
        self._listeners: list[AuthCallback] = []

    def get_current_user(self) -> Optional[User]:
        return self._user

    def set_user(self, user: Optional[User]) -> None:
        self._user = user
        for cb in list(self._listeners):
            cb(user)

    def on_auth_change(self, callback: AuthCallback) -> Callable[[], None]:
        self._listeners.append(callback)
        callback(self._user)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe
