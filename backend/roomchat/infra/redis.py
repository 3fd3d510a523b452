"""Shared asyncio Redis client for room history and readiness probes.

Modules import `redis_client` once at import time; the object they hold is a
forwarding proxy, so tests can point it at fakeredis with `set_redis_client`.
"""

from __future__ import annotations

import redis.asyncio as redis

from roomchat.settings import settings


class RedisProxy:
	def __init__(self, client: redis.Redis) -> None:
		self._target = client

	def current(self) -> redis.Redis:
		return self._target

	def set_client(self, client: redis.Redis) -> None:
		self._target = client

	def __getattr__(self, item):
		return getattr(self._target, item)


def _connect() -> redis.Redis:
	# Connections open lazily on first command
	return redis.from_url(settings.redis_url, decode_responses=True)


redis_client = RedisProxy(_connect())


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	await redis_client.current().aclose()
