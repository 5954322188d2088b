from __future__ import annotations

from typing import Optional

from roomsync.domain.common.identity import IdentityProvider
from roomsync.domain.common.types import GameResult
from roomsync.store.base import SERVER_TIMESTAMP, SharedStore
from roomsync.store.models import LeaderboardStats
from roomsync.store.paths import leaderboard, leaderboard_entry


class Leaderboard:
    """
    Per-game win/loss/draw counters keyed by uid.
    Plain read-modify-write: each uid only ever writes its own row.
    """

    def __init__(self, store: SharedStore, identity: IdentityProvider) -> None:
        self.store = store
        self.identity = identity

    async def read(self, game_id: str, uid: str) -> Optional[LeaderboardStats]:
        data = await self.store.read(leaderboard_entry(game_id, uid))
        return LeaderboardStats.model_validate(data) if data is not None else None

    async def write(self, game_id: str, uid: str, stats: LeaderboardStats) -> None:
        payload = stats.to_store()
        payload["lastPlayed"] = SERVER_TIMESTAMP
        await self.store.write(leaderboard_entry(game_id, uid), payload)

    async def submit(self, game_id: str, result: GameResult) -> Optional[LeaderboardStats]:
        """Count one finished game for the signed-in user. Anonymous games aren't ranked."""
        user = self.identity.get_current_user()
        if user is None:
            return None
        current = await self.read(game_id, user.uid) or LeaderboardStats()
        updated = current.model_copy(
            update={
                "name": user.name,
                "photo": user.photo,
                "wins": current.wins + (1 if result == "win" else 0),
                "losses": current.losses + (1 if result == "loss" else 0),
                "draws": current.draws + (1 if result == "draw" else 0),
                "games": current.games + 1,
            }
        )
        await self.write(game_id, user.uid, updated)
        return updated

    async def top(self, game_id: str, limit: int = 20) -> list[tuple[str, LeaderboardStats]]:
        """Highest wins first."""
        data = await self.store.read(leaderboard(game_id)) or {}
        rows = [(uid, LeaderboardStats.model_validate(raw)) for uid, raw in data.items() if isinstance(raw, dict)]
        rows.sort(key=lambda r: r[1].wins, reverse=True)
        return rows[:limit]
