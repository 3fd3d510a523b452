import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-entropy-0123456789")

from roomchat.domain.rooms import HistoryStore, Message, RoomRegistry  # noqa: E402
from roomchat.infra import jwt as jwt_helper  # noqa: E402
from roomchat.main import create_app  # noqa: E402
from roomchat.settings import settings  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from roomchat.infra.redis import redis_client, set_redis_client
	original = redis_client.current()
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Pin the environment so dev-only header auth stays off unless a test opts in."""
	original_env = settings.environment
	settings.environment = "test"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def make_token():
	def _make(user_id: str = "1", name: str = "A", roles: tuple[str, ...] = ()) -> str:
		payload: dict[str, object] = {"sub": user_id, "name": name}
		if roles:
			payload["roles"] = list(roles)
		return jwt_helper.encode_access(payload)

	return _make


class MemoryHistory:
	"""In-process stand-in for the history store, safe to share across event loops."""

	def __init__(self) -> None:
		self.rooms: dict[str, list[Message]] = {}
		self.appends: list[tuple[str, Message]] = []

	def seed(self, room: str, *messages: Message) -> None:
		self.rooms.setdefault(room, []).extend(messages)

	async def append(self, room_name: str, message: Message) -> None:
		self.appends.append((room_name, message))
		self.rooms.setdefault(room_name, []).append(message)

	async def read_all(self, room_name: str) -> list[Message]:
		return list(self.rooms.get(room_name, []))


@pytest.fixture
def memory_history() -> MemoryHistory:
	return MemoryHistory()


@pytest.fixture
def relay_app(memory_history):
	return create_app(registry=RoomRegistry(), history=memory_history)


@pytest.fixture
def api_app(fake_redis):
	return create_app(registry=RoomRegistry(), history=HistoryStore(fake_redis))


@pytest_asyncio.fixture
async def api_client(api_app):
	transport = ASGITransport(app=api_app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

