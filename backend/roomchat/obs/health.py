"""Liveness and readiness probes.

Readiness answers 503 "degraded" while Redis is unreachable. Relay sessions
keep running in that state; only history is lost.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from redis.exceptions import RedisError

from roomchat.domain.rooms.registry import RoomRegistry
from roomchat.infra.redis import redis_client
from roomchat.obs import metrics

logger = logging.getLogger(__name__)

REDIS_PING_TIMEOUT = 0.2


async def check_redis() -> Dict[str, Any]:
	started = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=REDIS_PING_TIMEOUT)
	except (RedisError, OSError, asyncio.TimeoutError) as exc:
		metrics.mark_redis(False)
		logger.warning("redis_probe_failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	latency = perf_counter() - started
	metrics.mark_redis(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


def relay_stats(registry: RoomRegistry) -> Dict[str, Any]:
	rooms = registry.rooms()
	subscribers = 0
	for name in rooms:
		channel = registry.get(name)
		if channel is not None:
			subscribers += channel.subscriber_count
	return {"rooms": len(rooms), "subscribers": subscribers}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(registry: RoomRegistry) -> Tuple[int, Dict[str, Any]]:
	redis_state = await check_redis()
	ok = bool(redis_state["ok"])
	payload = {
		"status": "ok" if ok else "degraded",
		"checks": {"redis": redis_state},
		"relay": relay_stats(registry),
	}
	return (200 if ok else 503), payload
