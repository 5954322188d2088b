from __future__ import annotations

from .stats import Leaderboard

__all__ = ["Leaderboard"]
