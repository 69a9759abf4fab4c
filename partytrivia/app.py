from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from tortoise.contrib.fastapi import RegisterTortoise

from .broadcast import BroadcastFabric
from .config import Settings, get_settings
from .coordinator import RoomSessionCoordinator
from .exceptions import NotFoundError
from .registry import ConnectionRegistry
from .routers import rooms as rooms_router
from .routers import users as users_router
from .routers import websockets as ws_router
from .store import TortoiseStore
from .turns import TurnStateMachine

logger = logging.getLogger(__name__)

MODELS = {"models": ["partytrivia.models"]}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with RegisterTortoise(
            app,
            db_url=settings.database_url,
            modules=MODELS,
            generate_schemas=True,
            add_exception_handlers=True,
        ):
            if settings.seed_questions:
                await app.state.store.seed_questions()
            logger.info("%s ready (database %s)", settings.app_name, settings.database_url)
            try:
                yield
            finally:
                await app.state.coordinator.shutdown()
                logger.info("%s stopped", settings.app_name)

    # -----------------------------
    # FastAPI app instance
    # -----------------------------

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------
    # Session coordinator graph
    # -----------------------------

    registry = ConnectionRegistry()
    fabric = BroadcastFabric(registry)
    store = TortoiseStore(code_length=settings.room_code_length)
    turns = TurnStateMachine(
        store,
        fabric,
        answer_seconds=settings.answer_seconds,
        tick_seconds=settings.tick_seconds,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.coordinator = RoomSessionCoordinator(registry, fabric, store, turns)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message or "Not found"})

    # Register routers
    app.include_router(users_router.router)
    app.include_router(rooms_router.router)
    app.include_router(ws_router.router)

    return app


__all__ = ["create_app"]
