"""
MODULE OVERVIEW:
The per-shard gateway connection.

WHAT IS HAPPENING HERE:
One `ShardConnection` owns one WebSocket and one `Session` for its whole life:

    DISCONNECTED -> CONNECTING -> HANDSHAKING -> LISTENING -> TERMINATED

While listening, three tasks cooperate:
  * the reader pulls raw frames off the socket and pushes decoded envelopes into
    a bounded queue (when the queue is full the reader simply waits, which stops
    us reading from the socket instead of buffering without limit);
  * the processor drains the queue, handles control frames and READY itself,
    and hands everything else to the `EventDispatcher`;
  * the heartbeat `PeriodicTask` sends the last sequence number on every tick.

Whichever of them notices a terminating condition first records an `Outcome`;
`run()` then tears everything down exactly once and returns that outcome. The
connection never reconnects by itself: retrying is the session manager's job.
"""
import asyncio
import platform
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import websockets
from loguru import logger
from pydantic import ValidationError

from guildgate.client.heartbeat import PeriodicTask, SleepFn
from guildgate.client.outcomes import ClosePolicy, Outcome, Termination, classify_failure
from guildgate.shared.codec import Envelope, OpCode, decode_frame, encode_frame, op_name, parse_data
from guildgate.shared.config import settings
from guildgate.shared.errors import FrameDecodeError, GatewayError
from guildgate.shared.events import EventDispatcher
from guildgate.shared.models import (
    HelloData,
    IdentifyData,
    IdentifyProperties,
    ReadyData,
    ResumeData,
    Session,
    WSUser,
)


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


async def websocket_connector(url: str) -> Transport:
    # Keep-alive is the gateway's own heartbeat, not WebSocket pings.
    return await websockets.connect(url, ping_interval=None)


class ShardState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    LISTENING = "listening"
    TERMINATED = "terminated"


class ShardConnection:
    def __init__(
        self,
        session: Session,
        dispatcher: EventDispatcher,
        *,
        connector: Connector = websocket_connector,
        policy: ClosePolicy | None = None,
        frame_queue_size: int | None = None,
        default_heartbeat_s: float | None = None,
        sleep: SleepFn = asyncio.sleep,
        on_state_change: Callable[["ShardConnection"], None] | None = None,
    ):
        self.session = session
        self.state = ShardState.DISCONNECTED
        self.user: WSUser | None = None
        self.version: int | None = None

        self._dispatcher = dispatcher
        self._connector = connector
        self._policy = policy or ClosePolicy.from_settings()
        self._on_state_change = on_state_change

        self._ws: Transport | None = None
        self._frames: asyncio.Queue[Envelope] = asyncio.Queue(
            maxsize=frame_queue_size or settings.FRAME_QUEUE_SIZE
        )
        self._heartbeat = PeriodicTask(
            self._send_heartbeat,
            default_heartbeat_s or settings.DEFAULT_HEARTBEAT_INTERVAL_S,
            name=f"heartbeat-{session.shard.shard_id}",
            sleep=sleep,
        )
        self._tasks: list[asyncio.Task] = []
        self._outcome: Outcome | None = None
        self._terminated = asyncio.Event()
        self._closed = False

    # ==========================
    # LIFECYCLE
    # ==========================
    async def run(self) -> Outcome:
        """Connect, handshake and listen until something ends the connection."""
        try:
            await self._run()
        except Exception as e:
            logger.exception(f"{self.session} event=fault state={self.state.value} error={e!r}")
            self._terminate(Outcome(Termination.RESUMABLE, f"unexpected fault: {e!r}"))
        finally:
            await self._close()
            self._set_state(ShardState.TERMINATED)

        outcome = self._outcome
        logger.info(
            f"{self.session} event=terminated kind={outcome.kind.value} "
            f"code={outcome.close_code} reason='{outcome.reason}'"
        )
        return outcome

    async def _run(self) -> None:
        self._set_state(ShardState.CONNECTING)
        try:
            await self.connect()
        except Exception as e:
            logger.warning(f"{self.session} event=connect_failed url={self.session.url} error={e!r}")
            self._terminate(Outcome(Termination.RESUMABLE, f"connect failed: {e!r}"))
            return

        self._set_state(ShardState.HANDSHAKING)
        try:
            if self.session.id:
                await self.resume()
            else:
                await self.identify()
        except Exception as e:
            logger.warning(f"{self.session} event=handshake_failed error={e!r}")
            self._terminate(classify_failure(e, self._policy))
            return

        self._set_state(ShardState.LISTENING)
        await self.listen()

    async def connect(self) -> None:
        if not self.session.url:
            raise GatewayError("websocket url is invalid")
        self._ws = await self._connector(self.session.url)
        logger.info(f"{self.session} event=connected url={self.session.url}")

    async def identify(self) -> None:
        if self.session.intent == 0:
            self.session.intent = 1
        await self.send(OpCode.IDENTIFY, IdentifyData(
            token=self.session.token.to_str(),
            intents=self.session.intent,
            shard=[self.session.shard.shard_id, self.session.shard.shard_count],
            properties=IdentifyProperties(os=platform.system().lower(), browser="guildgate", device="guildgate"),
        ))

    async def resume(self) -> None:
        await self.send(OpCode.RESUME, ResumeData(
            token=self.session.token.to_str(),
            session_id=self.session.id,
            seq=self.session.last_seq,
        ))

    async def listen(self) -> None:
        shard_id = self.session.shard.shard_id
        self._tasks = [
            asyncio.create_task(self._supervise(self._read_loop), name=f"reader-{shard_id}"),
            asyncio.create_task(self._supervise(self._process_loop), name=f"processor-{shard_id}"),
        ]
        self._heartbeat.start()
        await self._terminated.wait()

    def request_resume(self) -> None:
        """Operator-forced reconnect: drop the socket but keep the session id."""
        self._terminate(Outcome(Termination.RESUMABLE, "resume requested"))

    async def send(self, op: int, data: Any = None) -> None:
        if self._ws is None:
            raise GatewayError("not connected")
        message = encode_frame(op, data)
        if op == OpCode.HEARTBEAT:
            logger.debug(f"{self.session} write op={op_name(op)} message={message}")
        else:
            # Identify/Resume carry the token.
            logger.info(f"{self.session} write op={op_name(op)}")
        await self._ws.send(message)

    def _terminate(self, outcome: Outcome) -> None:
        if self._outcome is not None:
            return
        self._outcome = outcome
        self._terminated.set()

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Processor first: a Hello it is still handling would re-arm the heartbeat.
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._heartbeat.stop()
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"{self.session} event=close_failed error={e!r}")

    def _set_state(self, state: ShardState) -> None:
        self.state = state
        if self._on_state_change:
            self._on_state_change(self)

    # ==========================
    # LISTEN LOOPS
    # ==========================
    async def _supervise(self, loop_fn: Callable[[], Awaitable[None]]) -> None:
        try:
            await loop_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{self.session} event=fault task={loop_fn.__name__} error={e!r}")
            self._terminate(Outcome(Termination.RESUMABLE, f"unexpected fault: {e!r}"))

    async def _read_loop(self) -> None:
        while True:
            try:
                raw = await self._ws.recv()
            except Exception as e:
                logger.warning(f"{self.session} event=read_failed error={e!r}")
                self._terminate(classify_failure(e, self._policy))
                return
            try:
                envelope = decode_frame(raw)
            except FrameDecodeError as e:
                logger.warning(f"{self.session} event=decode_failed error={e}")
                continue
            logger.debug(f"{self.session} receive op={op_name(envelope.op)} seq={envelope.seq} type={envelope.type}")
            await self._frames.put(envelope)

    async def _process_loop(self) -> None:
        while not self._terminated.is_set():
            envelope = await self._frames.get()
            await self.handle_frame(envelope)

    async def handle_frame(self, envelope: Envelope) -> None:
        if envelope.seq is not None:
            self.session.last_seq = envelope.seq

        if self._handle_builtin(envelope):
            return
        if envelope.op == OpCode.DISPATCH and envelope.type == "READY":
            self._handle_ready(envelope)
            return
        await self._dispatcher.dispatch(envelope)

    def _handle_builtin(self, envelope: Envelope) -> bool:
        """Control frames the business layer never sees. Returns True when consumed."""
        match envelope.op:
            case OpCode.HELLO:
                try:
                    hello = parse_data(envelope, HelloData)
                except ValidationError as e:
                    logger.warning(f"{self.session} event=bad_hello error={e}")
                    return True
                if hello.heartbeat_interval > 0:
                    self._heartbeat.reset(hello.heartbeat_interval / 1000)
            case OpCode.HEARTBEAT_ACK:
                pass
            case OpCode.RECONNECT:
                self._terminate(Outcome(Termination.RESUMABLE, "server requested reconnect"))
            case OpCode.INVALID_SESSION:
                self._terminate(Outcome(Termination.MUST_REIDENTIFY, "invalid session"))
            case _:
                return False
        return True

    def _handle_ready(self, envelope: Envelope) -> None:
        try:
            ready = parse_data(envelope, ReadyData)
        except ValidationError as e:
            logger.warning(f"{self.session} event=bad_ready error={e}")
            return
        self.version = ready.version
        self.user = ready.user
        self.session.id = ready.session_id
        if len(ready.shard) == 2:
            self.session.shard.shard_id, self.session.shard.shard_count = ready.shard
        logger.info(f"{self.session} event=ready user={ready.user.username} bot={ready.user.bot}")
        if self._on_state_change:
            self._on_state_change(self)

    async def _send_heartbeat(self) -> None:
        try:
            await self.send(OpCode.HEARTBEAT, self.session.last_seq)
        except Exception as e:
            logger.warning(f"{self.session} event=heartbeat_failed error={e!r}")
            self._terminate(classify_failure(e, self._policy))
