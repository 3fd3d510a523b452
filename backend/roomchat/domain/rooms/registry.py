"""In-process broadcast channels, one per room.

The registry is created once per application and handed to the relay entry
point; tests build their own instances. Channels are created lazily on first
subscriber and are kept for the life of the registry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Optional, Set

from roomchat.obs import metrics as obs_metrics
from roomchat.settings import settings

logger = logging.getLogger(__name__)


class Subscription:
	"""One receiver attached to a room channel.

	Each subscription buffers up to `capacity` payloads. When a slow consumer
	falls that far behind, the oldest pending payload is discarded to make room.
	"""

	def __init__(self, channel: "RoomChannel", capacity: int) -> None:
		self._channel = channel
		self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=capacity)
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def pending(self) -> int:
		return self._queue.qsize()

	def _push(self, payload: str) -> bool:
		lagged = False
		if self._queue.full():
			self._queue.get_nowait()
			lagged = True
		self._queue.put_nowait(payload)
		return lagged

	async def recv(self) -> str:
		return await self._queue.get()

	def __aiter__(self) -> "Subscription":
		return self

	async def __anext__(self) -> str:
		if self._closed:
			raise StopAsyncIteration
		return await self.recv()

	def close(self) -> None:
		"""Detach from the channel. Safe to call more than once."""
		if self._closed:
			return
		self._closed = True
		self._channel._detach(self)


class RoomChannel:
	"""Multi-producer, multi-consumer broadcast for a single room."""

	def __init__(self, name: str, capacity: int) -> None:
		if capacity < 1:
			raise ValueError("capacity must be positive")
		self.name = name
		self.capacity = capacity
		self._subscribers: Set[Subscription] = set()

	@property
	def subscriber_count(self) -> int:
		return len(self._subscribers)

	def subscribe(self) -> Subscription:
		subscription = Subscription(self, self.capacity)
		self._subscribers.add(subscription)
		return subscription

	def _detach(self, subscription: Subscription) -> None:
		self._subscribers.discard(subscription)

	def send(self, payload: str) -> int:
		"""Deliver `payload` to every current subscriber, in send order.

		Returns the number of subscribers reached. Sending to a room with no
		subscribers is a no-op.
		"""
		subscribers = tuple(self._subscribers)
		for subscription in subscribers:
			if subscription._push(payload):
				obs_metrics.broadcast_lagged()
				logger.warning("broadcast_lagged", extra={"room": self.name})
		return len(subscribers)


class RoomRegistry:
	"""Maps room names to their broadcast channel."""

	def __init__(self, capacity: Optional[int] = None) -> None:
		self._capacity = capacity if capacity is not None else settings.room_channel_capacity
		if self._capacity < 1:
			raise ValueError("capacity must be positive")
		self._channels: Dict[str, RoomChannel] = {}
		# Held only around the dict lookup/insert, never across an await
		self._lock = threading.Lock()

	def get_or_create(self, room_name: str) -> RoomChannel:
		with self._lock:
			channel = self._channels.get(room_name)
			if channel is None:
				channel = RoomChannel(room_name, self._capacity)
				self._channels[room_name] = channel
				obs_metrics.room_channel_created()
				logger.debug("room_channel_created", extra={"room": room_name})
			return channel

	def get(self, room_name: str) -> Optional[RoomChannel]:
		with self._lock:
			return self._channels.get(room_name)

	def rooms(self) -> list[str]:
		with self._lock:
			return sorted(self._channels)

	def __contains__(self, room_name: object) -> bool:
		with self._lock:
			return room_name in self._channels

	def __len__(self) -> int:
		with self._lock:
			return len(self._channels)
