"""Per-connection relay between one WebSocket and one room channel.

A session runs two tasks: the inbound reader turns client frames into
broadcasts (persisting chat messages on the way) and the outbound writer
forwards everything broadcast in the room to the socket. Whichever task
finishes first ends the session; the other is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from pydantic import ValidationError
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from roomchat.domain.rooms.history import HistoryStore, HistoryStoreError
from roomchat.domain.rooms.models import CLOSE, PING, PONG, Identity, Message, MessageType
from roomchat.domain.rooms.registry import RoomChannel, Subscription
from roomchat.obs import logging as obs_logging
from roomchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


class SessionState(str, Enum):
	CONNECTING = "connecting"
	ACTIVE = "active"
	CLOSING = "closing"
	CLOSED = "closed"


class RoomSession:
	def __init__(
		self,
		websocket: WebSocket,
		*,
		room: str,
		identity: Identity,
		channel: RoomChannel,
		history: HistoryStore,
	) -> None:
		self.websocket = websocket
		self.room = room
		self.identity = identity
		self.channel = channel
		self.history = history
		self.state = SessionState.CONNECTING
		self._subscription: Optional[Subscription] = None

	async def run(self) -> None:
		"""Accept the socket and relay until either direction stops."""
		# Subscribe before accepting so nothing broadcast after the client
		# sees the handshake can be missed.
		self._subscription = self.channel.subscribe()
		tokens = obs_logging.bind_context(user_id=self.identity.id, room=self.room)
		try:
			await self.websocket.accept()
			self.state = SessionState.ACTIVE
			obs_metrics.ws_connected()
			logger.info("relay_session_started", extra={"subscribers": self.channel.subscriber_count})
			try:
				await self._relay()
			finally:
				obs_metrics.ws_disconnected()
		finally:
			self._subscription.close()
			self.state = SessionState.CLOSED
			logger.info("relay_session_closed")
			obs_logging.reset_context(tokens)

	async def _relay(self) -> None:
		inbound = asyncio.create_task(self._inbound(), name=f"relay-inbound:{self.room}")
		outbound = asyncio.create_task(self._outbound(), name=f"relay-outbound:{self.room}")
		try:
			await asyncio.wait({inbound, outbound}, return_when=asyncio.FIRST_COMPLETED)
		finally:
			self.state = SessionState.CLOSING
			for task in (inbound, outbound):
				task.cancel()
			results = await asyncio.gather(inbound, outbound, return_exceptions=True)
			for result in results:
				if isinstance(result, Exception):
					logger.error("relay_task_failed", exc_info=result)
			await self._close_socket()

	async def _inbound(self) -> None:
		while True:
			try:
				frame = await self.websocket.receive()
			except _TRANSPORT_ERRORS:
				logger.debug("relay_receive_failed", exc_info=True)
				return
			if frame["type"] == "websocket.disconnect":
				return
			text = frame.get("text")
			if text is None:
				# Binary frames are not part of the protocol
				logger.debug("relay_non_text_frame")
				return
			if not await self.handle_frame(text):
				return

	async def _outbound(self) -> None:
		assert self._subscription is not None
		async for payload in self._subscription:
			try:
				await self.websocket.send_text(payload)
			except _TRANSPORT_ERRORS:
				logger.debug("relay_send_failed", exc_info=True)
				return

	async def handle_frame(self, text: str) -> bool:
		"""Process one client text frame. Returns False when the session should end."""
		if text == CLOSE:
			obs_metrics.relay_event("close")
			return False
		if text == PING:
			obs_metrics.relay_event("ping")
			self.channel.send(PONG)
			return True
		if text == PONG:
			return True
		try:
			message = Message.decode(text)
		except ValidationError:
			obs_metrics.relay_event("malformed")
			logger.debug("relay_frame_undecodable")
			return True
		await self._dispatch(message)
		return True

	async def _dispatch(self, message: Message) -> None:
		obs_metrics.relay_event(message.message_type.value)
		match message.message_type:
			case MessageType.SEND:
				await self._on_send(message)
			case MessageType.RETRIEVE_MESSAGES:
				await self._on_retrieve()
			case (
				MessageType.RECEIVE
				| MessageType.MESSAGES_RETRIEVED
				| MessageType.RECONNECTED
				| MessageType.DISCONNECTED
			):
				# Server-to-client kinds; a client echoing them is ignored
				pass

	async def _on_send(self, message: Message) -> None:
		outgoing = Message(
			message_type=MessageType.RECEIVE,
			uuid=message.uuid,
			content=message.content,
			author=message.author or self.identity,
			timestamp=message.timestamp,
			room=self.room,
		)
		try:
			await self.history.append(self.room, outgoing)
		except HistoryStoreError:
			# Chat stays live when history is down
			obs_metrics.history_failure("append")
			logger.warning("relay_persist_failed", extra={"message_id": str(outgoing.uuid)}, exc_info=True)
		self.channel.send(outgoing.encode())

	async def _on_retrieve(self) -> None:
		try:
			stored = await self.history.read_all(self.room)
		except HistoryStoreError:
			obs_metrics.history_failure("read_all")
			logger.warning("relay_history_read_failed", exc_info=True)
			stored = []
		for message in stored:
			self.channel.send(message.model_copy(update={"to": self.identity}).encode())
			# Let writers drain between entries of a long replay
			await asyncio.sleep(0)
		done = Message(
			message_type=MessageType.MESSAGES_RETRIEVED,
			author=self.identity,
			room=self.room,
		)
		self.channel.send(done.encode())

	async def _close_socket(self) -> None:
		ws = self.websocket
		if ws.application_state != WebSocketState.CONNECTED or ws.client_state != WebSocketState.CONNECTED:
			return
		try:
			await ws.close()
		except _TRANSPORT_ERRORS:
			logger.debug("relay_close_failed", exc_info=True)
