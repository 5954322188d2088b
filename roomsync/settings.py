from __future__ import annotations

from typing import Literal

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "roomsync"

    # Store
    STORE_BACKEND: Literal["memory", "redis"] = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    KEY_PREFIX: str = "rs"

    # Disconnect detection (redis backend)
    SESSION_TTL_SEC: int = 15
    HEARTBEAT_INTERVAL_SEC: float = 5.0

    # Matchmaking
    MATCHMAKING_TIMEOUT_SEC: float = 30.0

    # Admin server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "roomsync"),
        STORE_BACKEND=os.getenv("STORE_BACKEND", "redis").lower(),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        KEY_PREFIX=os.getenv("KEY_PREFIX", "rs"),
        SESSION_TTL_SEC=int(os.getenv("SESSION_TTL_SEC", "15")),
        HEARTBEAT_INTERVAL_SEC=float(os.getenv("HEARTBEAT_INTERVAL_SEC", "5")),
        MATCHMAKING_TIMEOUT_SEC=float(os.getenv("MATCHMAKING_TIMEOUT_SEC", "30")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
