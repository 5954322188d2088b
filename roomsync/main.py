from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from roomsync.logging_config import configure_logging
from roomsync.settings import get_settings
from roomsync.store import SharedStore, create_store
from roomsync.transport.admin import router as admin_router


def create_app(store: Optional[SharedStore] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = store is None
        s = store or create_store(settings)
        if owned:
            await s.connect()
        app.state.store = s
        try:
            yield
        finally:
            if owned:
                await s.close()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"ok": True, "store": app.state.store.backend}

    app.include_router(admin_router)
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("roomsync.main:create_app", factory=True, host=settings.HOST, port=settings.PORT)
