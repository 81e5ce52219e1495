import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from guildgate.client.outcomes import ClosePolicy
from guildgate.shared.codec import encode_frame
from guildgate.shared.events import EventDispatcher
from guildgate.shared.models import Session, ShardConfig, Token


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.recv_count = 0
        self.close_calls = 0
        self.send_error: BaseException | None = None

    async def send(self, message: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        self.recv_count += 1
        return item

    async def close(self) -> None:
        self.close_calls += 1

    def push(self, op: int, d=None, s: int | None = None, t: str | None = None) -> None:
        self.inbound.put_nowait(encode_frame(op, d, seq=s, type=t))

    def push_raw(self, raw: str) -> None:
        self.inbound.put_nowait(raw)

    def push_close(self, code: int, reason: str = "") -> None:
        self.inbound.put_nowait(ConnectionClosed(Close(code, reason), None))

    def push_error(self, exc: BaseException) -> None:
        self.inbound.put_nowait(exc)

    def sent_ops(self) -> list[int]:
        return [frame["op"] for frame in self.sent]


class FakeClock:
    """Sleep function whose sleeps only finish when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.requested: list[float] = []
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        self.requested.append(delay)
        future = asyncio.get_running_loop().create_future()
        entry = (self.now + delay, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            self._sleepers.remove(entry)

    @property
    def pending(self) -> list[float]:
        return sorted(deadline - self.now for deadline, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [(d, f) for d, f in self._sleepers if d <= target and not f.done()]
            if not due:
                break
            deadline, future = min(due, key=lambda entry: entry[0])
            self.now = deadline
            future.set_result(None)
            await settle()
        self.now = target
        await settle()


class FakeConnector:
    """Connector that hands out a fresh FakeTransport per connection attempt."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        transport = FakeTransport()
        self.transports.append(transport)
        return transport


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def policy() -> ClosePolicy:
    return ClosePolicy(fatal_codes=frozenset({4914, 4915}), reidentify_codes=frozenset({4006, 4007}))


@pytest.fixture
def token() -> Token:
    return Token(app_id=1024, access_token="secret")


@pytest.fixture
def session(token) -> Session:
    return Session(url="wss://gateway.test/websocket", token=token, intent=1 << 30, shard=ShardConfig(0, 1))
