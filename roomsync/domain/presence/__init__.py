from __future__ import annotations

from .tracker import PresenceTracker

__all__ = ["PresenceTracker"]
