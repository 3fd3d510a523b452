import asyncio
import json

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketDisconnect, WebSocketState

from roomchat.domain.rooms.history import HistoryStoreError
from roomchat.domain.rooms.models import Identity, Message, MessageType
from roomchat.domain.rooms.registry import RoomRegistry
from roomchat.domain.rooms.session import RoomSession, SessionState


class FakeWebSocket:
    """Minimal stand-in for starlette's WebSocket driven by explicit frames."""

    def __init__(self, *, fail_sends: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTING
        self.inbox: asyncio.Queue[dict] = asyncio.Queue()
        self.outbox: asyncio.Queue[str] = asyncio.Queue()
        self.fail_sends = fail_sends
        self.close_calls = 0

    async def accept(self) -> None:
        self.application_state = WebSocketState.CONNECTED

    async def receive(self) -> dict:
        frame = await self.inbox.get()
        if frame["type"] == "websocket.disconnect":
            self.client_state = WebSocketState.DISCONNECTED
        return frame

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise WebSocketDisconnect(code=1006)
        await self.outbox.put(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_calls += 1
        self.application_state = WebSocketState.DISCONNECTED

    # helpers used by tests
    def client_sends(self, text: str) -> None:
        self.inbox.put_nowait({"type": "websocket.receive", "text": text})

    def client_sends_bytes(self, data: bytes) -> None:
        self.inbox.put_nowait({"type": "websocket.receive", "bytes": data})

    def client_disconnects(self) -> None:
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": 1000})

    async def next_text(self) -> str:
        return await asyncio.wait_for(self.outbox.get(), timeout=1)

    async def next_message(self) -> Message:
        return Message.decode(await self.next_text())


class FailingHistory:
    def __init__(self) -> None:
        self.append_calls = 0

    async def append(self, room_name, message):
        self.append_calls += 1
        raise HistoryStoreError("append")

    async def read_all(self, room_name):
        raise HistoryStoreError("read_all")


async def _until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class Harness:
    def __init__(self, history, room: str = "lobby") -> None:
        self.registry = RoomRegistry(capacity=100)
        self.history = history
        self.room = room
        self.tasks: list[asyncio.Task] = []

    async def connect(self, user_id: str, name: str, *, room: str | None = None, ws: FakeWebSocket | None = None):
        ws = ws or FakeWebSocket()
        room = room or self.room
        session = RoomSession(
            ws,
            room=room,
            identity=Identity(id=user_id, name=name),
            channel=self.registry.get_or_create(room),
            history=self.history,
        )
        task = asyncio.create_task(session.run())
        self.tasks.append(task)
        await _until(lambda: session.state is SessionState.ACTIVE)
        return session, ws, task

    async def shutdown(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)


@pytest_asyncio.fixture
async def harness(memory_history):
    h = Harness(memory_history)
    try:
        yield h
    finally:
        await h.shutdown()


@pytest.mark.asyncio
async def test_send_is_persisted_and_broadcast_as_receive(harness, memory_history):
    _, ws_a, _ = await harness.connect("1", "A")
    _, ws_b, _ = await harness.connect("2", "B")

    ws_a.client_sends(json.dumps({"messageType": "send", "content": "hi", "author": {"id": 1, "name": "A"}}))

    received = await ws_b.next_message()
    assert received.message_type is MessageType.RECEIVE
    assert received.content == "hi"
    assert received.room == "lobby"
    assert received.author == Identity(id="1", name="A")
    # the sender sees its own message too
    assert (await ws_a.next_message()).uuid == received.uuid

    [(room, stored)] = memory_history.appends
    assert room == "lobby"
    assert stored.uuid == received.uuid
    assert stored.message_type is MessageType.RECEIVE


@pytest.mark.asyncio
async def test_send_without_author_uses_session_identity(harness):
    _, ws, _ = await harness.connect("7", "Gus")

    ws.client_sends('{"messageType":"send","content":"anon?"}')

    assert (await ws.next_message()).author == Identity(id="7", name="Gus")


@pytest.mark.asyncio
async def test_ping_broadcasts_pong_without_persisting(harness, memory_history):
    _, ws_a, _ = await harness.connect("1", "A")
    _, ws_b, _ = await harness.connect("2", "B")

    ws_a.client_sends("Ping")

    assert await ws_a.next_text() == "Pong"
    assert await ws_b.next_text() == "Pong"
    assert memory_history.appends == []


@pytest.mark.asyncio
async def test_ignored_frames_produce_no_broadcast(harness, memory_history):
    _, ws, _ = await harness.connect("1", "A")

    ws.client_sends("Pong")
    ws.client_sends("{not json")
    ws.client_sends('{"messageType":"unknown"}')
    ws.client_sends('{"messageType":"receive","content":"spoof"}')
    ws.client_sends('{"messageType":"messagesRetrieved"}')
    ws.client_sends('{"messageType":"reconnected"}')
    ws.client_sends('{"messageType":"disconnected"}')
    ws.client_sends("Ping")

    # Pong is the first thing broadcast, so nothing before it was relayed
    assert await ws.next_text() == "Pong"
    assert memory_history.appends == []


@pytest.mark.asyncio
async def test_untagged_and_empty_sends_are_neither_stored_nor_relayed(harness, memory_history):
    _, ws_a, _ = await harness.connect("1", "A")
    _, ws_b, _ = await harness.connect("2", "B")

    ws_a.client_sends("{}")
    ws_a.client_sends('{"content":"no kind given"}')
    ws_a.client_sends('{"messageType":"send"}')
    ws_a.client_sends("Ping")

    assert await ws_b.next_text() == "Pong"
    assert await ws_a.next_text() == "Pong"
    assert memory_history.appends == []


@pytest.mark.asyncio
async def test_close_sentinel_ends_session_without_broadcast(harness):
    session, ws_a, task_a = await harness.connect("1", "A")
    _, ws_b, _ = await harness.connect("2", "B")
    channel = harness.registry.get_or_create("lobby")
    assert channel.subscriber_count == 2

    ws_a.client_sends("Close")
    await asyncio.wait_for(task_a, timeout=1)

    assert session.state is SessionState.CLOSED
    assert ws_a.close_calls == 1
    assert channel.subscriber_count == 1

    ws_b.client_sends("Ping")
    assert await ws_b.next_text() == "Pong"


@pytest.mark.asyncio
async def test_client_disconnect_releases_subscription(harness):
    session, ws, task = await harness.connect("1", "A")

    ws.client_disconnects()
    await asyncio.wait_for(task, timeout=1)

    assert session.state is SessionState.CLOSED
    assert ws.close_calls == 0
    assert harness.registry.get_or_create("lobby").subscriber_count == 0


@pytest.mark.asyncio
async def test_binary_frame_ends_session(harness):
    session, ws, task = await harness.connect("1", "A")

    ws.client_sends_bytes(b"\x00\x01")
    await asyncio.wait_for(task, timeout=1)

    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_outbound_failure_cancels_inbound(harness):
    session, _, task = await harness.connect("1", "A", ws=FakeWebSocket(fail_sends=True))
    _, ws_b, _ = await harness.connect("2", "B")

    ws_b.client_sends("Ping")
    await asyncio.wait_for(task, timeout=1)

    assert session.state is SessionState.CLOSED
    assert harness.registry.get_or_create("lobby").subscriber_count == 1
    assert await ws_b.next_text() == "Pong"


@pytest.mark.asyncio
async def test_single_producer_order_is_preserved(harness, memory_history):
    _, ws_a, _ = await harness.connect("1", "A")
    _, ws_b, _ = await harness.connect("2", "B")

    for content in ("m1", "m2", "m3"):
        ws_a.client_sends(json.dumps({"messageType": "send", "content": content}))

    delivered = [(await ws_b.next_message()).content for _ in range(3)]
    assert delivered == ["m1", "m2", "m3"]
    assert [m.content for _, m in memory_history.appends] == ["m1", "m2", "m3"]


@pytest.mark.asyncio
async def test_retrieve_replays_history_then_terminator(harness, memory_history):
    history = [
        Message(message_type=MessageType.RECEIVE, content="old-1", author=Identity(id="1", name="A"), room="lobby"),
        Message(message_type=MessageType.RECEIVE, content="old-2", author=Identity(id="2", name="B"), room="lobby"),
    ]
    memory_history.seed("lobby", *history)
    _, ws_c, _ = await harness.connect("3", "C")

    ws_c.client_sends('{"messageType":"retrieveMessages","author":{"id":3,"name":"C"}}')

    replayed = [await ws_c.next_message() for _ in range(3)]
    assert [m.uuid for m in replayed[:2]] == [m.uuid for m in history]
    assert [m.content for m in replayed[:2]] == ["old-1", "old-2"]
    assert all(m.to == Identity(id="3", name="C") for m in replayed[:2])
    assert replayed[2].message_type is MessageType.MESSAGES_RETRIEVED
    assert replayed[2].author == Identity(id="3", name="C")
    assert replayed[2].content is None
    # stored entries are untouched by the replay
    assert all(m.to is None for m in memory_history.rooms["lobby"])


@pytest.mark.asyncio
async def test_retrieve_twice_yields_identical_sequences(harness, memory_history):
    memory_history.seed(
        "lobby",
        Message(message_type=MessageType.RECEIVE, content="a", room="lobby"),
        Message(message_type=MessageType.RECEIVE, content="b", room="lobby"),
    )
    _, ws, _ = await harness.connect("3", "C")

    ws.client_sends('{"messageType":"retrieveMessages"}')
    first = [await ws.next_text() for _ in range(3)]
    ws.client_sends('{"messageType":"retrieveMessages"}')
    second = [await ws.next_text() for _ in range(3)]

    assert first[:2] == second[:2]
    assert json.loads(first[2])["messageType"] == json.loads(second[2])["messageType"] == "messagesRetrieved"


@pytest.mark.asyncio
async def test_retrieve_is_visible_to_other_subscribers(harness, memory_history):
    memory_history.seed("lobby", Message(message_type=MessageType.RECEIVE, content="a", room="lobby"))
    _, ws_a, _ = await harness.connect("1", "A")
    _, ws_c, _ = await harness.connect("3", "C")

    ws_c.client_sends('{"messageType":"retrieveMessages"}')

    replayed = await ws_a.next_message()
    assert replayed.to == Identity(id="3", name="C")


@pytest.mark.asyncio
async def test_history_failures_do_not_end_the_session():
    failing = FailingHistory()
    h = Harness(failing)
    try:
        session, ws, _ = await h.connect("1", "A")

        ws.client_sends('{"messageType":"send","content":"still delivered"}')
        delivered = await ws.next_message()
        assert delivered.content == "still delivered"
        assert failing.append_calls == 1

        ws.client_sends('{"messageType":"retrieveMessages"}')
        assert (await ws.next_message()).message_type is MessageType.MESSAGES_RETRIEVED
        assert session.state is SessionState.ACTIVE
    finally:
        await h.shutdown()


@pytest.mark.asyncio
async def test_rooms_do_not_cross_deliver(harness):
    _, ws_lobby, _ = await harness.connect("1", "A", room="lobby")
    _, ws_help, _ = await harness.connect("2", "B", room="help")

    ws_lobby.client_sends('{"messageType":"send","content":"lobby only"}')
    assert (await ws_lobby.next_message()).content == "lobby only"

    ws_help.client_sends("Ping")
    assert await ws_help.next_text() == "Pong"
