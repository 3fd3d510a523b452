"""WebSocket entry point for room relay sessions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, status

from roomchat.domain.rooms.history import HistoryStore
from roomchat.domain.rooms.models import Identity, InvalidRoomName, validate_room_name
from roomchat.domain.rooms.registry import RoomRegistry
from roomchat.domain.rooms.session import RoomSession
from roomchat.infra.auth import Unauthenticated, authenticate_websocket
from roomchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

router = APIRouter()


def get_registry(websocket: WebSocket) -> RoomRegistry:
	return websocket.app.state.room_registry


def get_history(websocket: WebSocket) -> HistoryStore:
	return websocket.app.state.history_store


async def _reject(websocket: WebSocket, reason: str) -> None:
	# Closing before accept refuses the upgrade (HTTP 403)
	obs_metrics.ws_rejected(reason)
	logger.info("relay_upgrade_rejected", extra={"reason": reason})
	await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


@router.websocket("/ws/{room}")
async def relay_endpoint(
	websocket: WebSocket,
	room: str,
	registry: RoomRegistry = Depends(get_registry),
	history: HistoryStore = Depends(get_history),
) -> None:
	try:
		user = await authenticate_websocket(websocket)
	except Unauthenticated as exc:
		await _reject(websocket, exc.reason)
		return
	try:
		validate_room_name(room)
	except InvalidRoomName:
		await _reject(websocket, "invalid_room_name")
		return

	session = RoomSession(
		websocket,
		room=room,
		identity=Identity(id=user.id, name=user.name),
		channel=registry.get_or_create(room),
		history=history,
	)
	await session.run()
