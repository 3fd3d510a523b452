"""Rooms domain exports."""

from .history import HistoryStore, HistoryStoreError
from .models import Identity, Message, MessageType
from .registry import RoomChannel, RoomRegistry
from .session import RoomSession, SessionState

__all__ = [
	"HistoryStore",
	"HistoryStoreError",
	"Identity",
	"Message",
	"MessageType",
	"RoomChannel",
	"RoomRegistry",
	"RoomSession",
	"SessionState",
]
