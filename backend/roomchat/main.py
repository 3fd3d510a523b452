"""FastAPI application entrypoint.

Run with `uvicorn roomchat.main:app`. The relay lives at /ws/{room}; REST
routes under /rooms expose and administer the persisted history.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomchat.api import ops, rooms
from roomchat.api.errors import install_error_handlers
from roomchat.domain.rooms import HistoryStore, RoomRegistry
from roomchat.domain.rooms import sockets as room_sockets
from roomchat.infra.redis import close_redis
from roomchat.obs import init as obs_init
from roomchat.settings import settings

logger = logging.getLogger(__name__)


def _allowed_origins() -> list[str]:
	origins = [origin for origin in settings.cors_allow_origins if origin != "*"]
	if not origins and settings.is_dev():
		origins = ["http://localhost:8080"]
	return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info("roomchat_starting", extra={"env": settings.environment})
	try:
		yield
	finally:
		await close_redis()
		logger.info("roomchat_stopped", extra={"rooms": len(app.state.room_registry)})


def create_app(
	*,
	registry: Optional[RoomRegistry] = None,
	history: Optional[HistoryStore] = None,
) -> FastAPI:
	app = FastAPI(title="roomchat", lifespan=lifespan)
	# One registry per application; sessions reach it through app.state
	app.state.room_registry = registry if registry is not None else RoomRegistry()
	app.state.history_store = history if history is not None else HistoryStore()

	install_error_handlers(app)
	# Wildcard origins are dropped: credentials (the jwt cookie) are allowed
	app.add_middleware(
		CORSMiddleware,
		allow_origins=_allowed_origins(),
		allow_credentials=True,
		allow_methods=["GET", "POST", "DELETE"],
		allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
	)
	obs_init(app)

	app.include_router(room_sockets.router, tags=["relay"])
	app.include_router(rooms.router)
	app.include_router(ops.router)
	return app


app = create_app()
