"""Durable room history backed by Redis lists.

Each room owns one list at `<prefix><room>`. Messages are appended at the
tail, so a full range read yields them oldest to newest. The store takes no
locks of its own: Redis serialises concurrent appends.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from pydantic import ValidationError
from redis.exceptions import RedisError

from roomchat.domain.rooms.models import Message, RoomActivity
from roomchat.infra.redis import redis_client
from roomchat.settings import settings

logger = logging.getLogger(__name__)

_STORE_ERRORS = (RedisError, OSError)


class HistoryStoreError(Exception):
	"""The backing store is unavailable or rejected the operation."""

	def __init__(self, op: str) -> None:
		super().__init__(f"history_{op}_failed")
		self.op = op


class HistoryStore:
	def __init__(self, client=None, *, key_prefix: Optional[str] = None) -> None:
		self._client = client if client is not None else redis_client
		self._prefix = key_prefix if key_prefix is not None else settings.history_key_prefix

	def key(self, room_name: str) -> str:
		return f"{self._prefix}{room_name}"

	async def append(self, room_name: str, message: Message) -> None:
		"""Append `message` to the tail of the room's history.

		No uniqueness check is made: appending the same message twice stores
		it twice.
		"""
		try:
			await self._client.rpush(self.key(room_name), message.encode())
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("append") from exc

	async def read_all(self, room_name: str) -> List[Message]:
		"""Return every persisted message, oldest first. Empty if none."""
		raw = await self._read_raw(room_name, "read_all")
		return [message for _, message in self._decode(room_name, raw)]

	async def get(self, room_name: str, message_id: UUID) -> Optional[Message]:
		for message in await self.read_all(room_name):
			if message.uuid == message_id:
				return message
		return None

	async def count(self, room_name: str) -> int:
		try:
			return int(await self._client.llen(self.key(room_name)))
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("count") from exc

	async def rooms(self) -> List[str]:
		"""Names of the rooms that currently have persisted history."""
		names: list[str] = []
		try:
			async for key in self._client.scan_iter(match=f"{self._prefix}*"):
				names.append(key[len(self._prefix):])
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("rooms") from exc
		return sorted(names)

	async def activity(self) -> List[RoomActivity]:
		"""Message count per room, busiest first."""
		stats = [RoomActivity(room=name, number_of_messages=await self.count(name)) for name in await self.rooms()]
		stats.sort(key=lambda item: (-item.number_of_messages, item.room))
		return stats

	async def delete(self, room_name: str, message_ids: Iterable[UUID]) -> int:
		"""Remove the entries whose uuid is in `message_ids`. Returns the number removed."""
		targets = set(message_ids)
		if not targets:
			return 0
		raw = await self._read_raw(room_name, "delete")
		removed = 0
		try:
			for entry, message in self._decode(room_name, raw):
				if message.uuid in targets:
					removed += int(await self._client.lrem(self.key(room_name), 1, entry))
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("delete") from exc
		return removed

	async def clear(self, room_name: str) -> int:
		"""Drop a room's whole history. Returns the number of messages removed."""
		key = self.key(room_name)
		try:
			async with self._client.pipeline(transaction=True) as pipe:
				pipe.llen(key)
				pipe.delete(key)
				count, _ = await pipe.execute()
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("clear") from exc
		return int(count)

	async def trim(self, room_name: str, keep: int) -> int:
		"""Keep only the newest `keep` messages. Returns the number removed."""
		if keep < 0:
			raise ValueError("keep must be >= 0")
		if keep == 0:
			return await self.clear(room_name)
		key = self.key(room_name)
		try:
			async with self._client.pipeline(transaction=True) as pipe:
				pipe.llen(key)
				pipe.ltrim(key, -keep, -1)
				count, _ = await pipe.execute()
		except _STORE_ERRORS as exc:
			raise HistoryStoreError("trim") from exc
		return max(0, int(count) - keep)

	async def _read_raw(self, room_name: str, op: str) -> Sequence[str]:
		try:
			return await self._client.lrange(self.key(room_name), 0, -1)
		except _STORE_ERRORS as exc:
			raise HistoryStoreError(op) from exc

	@staticmethod
	def _decode(room_name: str, raw: Sequence[str]) -> List[tuple[str, Message]]:
		decoded: list[tuple[str, Message]] = []
		for entry in raw:
			try:
				decoded.append((entry, Message.decode(entry)))
			except ValidationError:
				logger.warning("history_entry_undecodable", extra={"room": room_name})
		return decoded
