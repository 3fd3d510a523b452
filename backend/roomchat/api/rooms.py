"""FastAPI routes for room history administration."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from roomchat.domain.rooms import HistoryStore, Message, RoomRegistry, schemas
from roomchat.domain.rooms.models import InvalidRoomName, validate_room_name
from roomchat.infra.auth import AuthenticatedUser, get_admin_user, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_history(request: Request) -> HistoryStore:
	return request.app.state.history_store


def get_registry(request: Request) -> RoomRegistry:
	return request.app.state.room_registry


def _room_or_400(room: str) -> str:
	try:
		return validate_room_name(room)
	except InvalidRoomName:
		raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_room_name") from None


@router.get("", response_model=list[schemas.RoomActivityDTO])
async def list_rooms_endpoint(
	_: AuthenticatedUser = Depends(get_current_user),
	history: HistoryStore = Depends(get_history),
	registry: RoomRegistry = Depends(get_registry),
) -> list[schemas.RoomActivityDTO]:
	items: list[schemas.RoomActivityDTO] = []
	seen: set[str] = set()
	for stat in await history.activity():
		channel = registry.get(stat.room)
		items.append(
			schemas.RoomActivityDTO(
				room=stat.room,
				number_of_messages=stat.number_of_messages,
				subscribers=channel.subscriber_count if channel else 0,
			)
		)
		seen.add(stat.room)
	# Live rooms that have not persisted anything yet
	for name in registry.rooms():
		if name in seen:
			continue
		channel = registry.get(name)
		items.append(
			schemas.RoomActivityDTO(
				room=name,
				number_of_messages=0,
				subscribers=channel.subscriber_count if channel else 0,
			)
		)
	return items


@router.get(
	"/{room}/messages",
	response_model=list[Message],
	response_model_by_alias=True,
	response_model_exclude_none=True,
)
async def room_messages_endpoint(
	room: str,
	_: AuthenticatedUser = Depends(get_current_user),
	history: HistoryStore = Depends(get_history),
) -> list[Message]:
	return await history.read_all(_room_or_400(room))


@router.delete("/{room}/messages", response_model=schemas.DeletedResponse)
async def clear_room_endpoint(
	room: str,
	admin: AuthenticatedUser = Depends(get_admin_user),
	history: HistoryStore = Depends(get_history),
) -> schemas.DeletedResponse:
	deleted = await history.clear(_room_or_400(room))
	logger.info("room_history_cleared", extra={"room": room, "deleted": deleted, "actor_id": admin.id})
	return schemas.DeletedResponse(deleted=deleted)


@router.delete("/{room}/messages/{message_id}", response_model=schemas.DeletedResponse)
async def delete_message_endpoint(
	room: str,
	message_id: UUID,
	user: AuthenticatedUser = Depends(get_current_user),
	history: HistoryStore = Depends(get_history),
) -> schemas.DeletedResponse:
	room = _room_or_400(room)
	if not user.has_role("admin"):
		message = await history.get(room, message_id)
		if message is None:
			raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="message_not_found")
		if message.author is None or message.author.id != user.id:
			raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not_message_author")
	deleted = await history.delete(room, [message_id])
	if not deleted:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="message_not_found")
	logger.info("room_message_deleted", extra={"room": room, "message_id": str(message_id), "actor_id": user.id})
	return schemas.DeletedResponse(deleted=deleted)


@router.post("/{room}/messages/trim", response_model=schemas.DeletedResponse)
async def trim_room_endpoint(
	room: str,
	keep: int = Query(..., ge=0),
	admin: AuthenticatedUser = Depends(get_admin_user),
	history: HistoryStore = Depends(get_history),
) -> schemas.DeletedResponse:
	deleted = await history.trim(_room_or_400(room), keep)
	logger.info("room_history_trimmed", extra={"room": room, "keep": keep, "deleted": deleted, "actor_id": admin.id})
	return schemas.DeletedResponse(deleted=deleted)
