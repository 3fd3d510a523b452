"""Domain models for the room relay.

Messages travel as camelCase JSON objects. Two kinds of frames bypass the
structured encoding entirely: the liveness sentinels and the close request,
which are exchanged as bare text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from roomchat.settings import settings

PING = "Ping"
PONG = "Pong"
CLOSE = "Close"

_ROOM_NAME_RE = re.compile(r"[A-Za-z0-9_]+")


class MessageType(str, Enum):
	"""Closed set of message kinds understood by the relay and its clients."""

	SEND = "send"
	RECEIVE = "receive"
	RETRIEVE_MESSAGES = "retrieveMessages"
	MESSAGES_RETRIEVED = "messagesRetrieved"
	RECONNECTED = "reconnected"
	DISCONNECTED = "disconnected"


class Identity(BaseModel):
	"""Snapshot of a user as rendered next to a message."""

	model_config = ConfigDict(frozen=True)

	id: str
	name: str

	@field_validator("id", mode="before")
	@classmethod
	def _coerce_id(cls, value):
		# Clients historically sent numeric ids
		if isinstance(value, int) and not isinstance(value, bool):
			return str(value)
		return value


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class Message(BaseModel):
	"""A unit of chat content or a control message.

	`uuid` is assigned once, when the message is first constructed, and is
	kept verbatim through persistence and replay.
	"""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	message_type: MessageType
	uuid: UUID = Field(default_factory=uuid4)
	content: Optional[str] = None
	author: Optional[Identity] = None
	to: Optional[Identity] = None
	timestamp: datetime = Field(default_factory=_utcnow)
	room: Optional[str] = None

	@model_validator(mode="after")
	def _send_carries_content(self) -> "Message":
		if self.message_type is MessageType.SEND and self.content is None:
			raise ValueError("send requires content")
		return self

	def encode(self) -> str:
		return self.model_dump_json(by_alias=True, exclude_none=True)

	@classmethod
	def decode(cls, raw: str | bytes) -> "Message":
		"""Parse a wire payload. Raises pydantic.ValidationError."""
		return cls.model_validate_json(raw)


@dataclass(slots=True)
class RoomActivity:
	room: str
	number_of_messages: int


class InvalidRoomName(ValueError):
	"""Room names are 1..N characters of ASCII letters, digits and underscore."""


def validate_room_name(name: str) -> str:
	if not name or len(name) > settings.room_name_max_length:
		raise InvalidRoomName("invalid_room_name")
	if not _ROOM_NAME_RE.fullmatch(name):
		raise InvalidRoomName("invalid_room_name")
	return name
