"""
MODULE OVERVIEW:
The session manager: the one place that decides when a shard (re)connects.

WHAT IS HAPPENING HERE:
At startup we build one `Session` per shard and put them all on a queue. The
control loop then takes one session at a time, sleeps for the start interval
the gateway allows, and launches a `ShardConnection` for it in the background
without waiting for it.

When a connection ends it never retries on its own. It hands back an
`Outcome` and we put its session back on the same queue (identity intact, or
cleared when the server invalidated it). Because every retry goes through this
one paced loop, twenty shards failing at once still produce at most one
connection attempt per interval.

A FATAL outcome (the bot was banned or taken offline) stops the loop, tears
down every live shard and surfaces as `FatalGatewayError` from `start()`.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable

from loguru import logger

from guildgate.client.connection import Connector, ShardConnection, websocket_connector
from guildgate.client.heartbeat import SleepFn
from guildgate.client.outcomes import ClosePolicy, Outcome, Termination
from guildgate.shared.client_utils import calc_start_interval, make_shard_stats
from guildgate.shared.config import settings
from guildgate.shared.errors import FatalGatewayError
from guildgate.shared.events import EventDispatcher
from guildgate.shared.models import GatewayInfo, Session, ShardConfig, Token


class SessionManager:
    def __init__(
        self,
        dispatcher: EventDispatcher,
        *,
        connector: Connector = websocket_connector,
        policy: ClosePolicy | None = None,
        concurrency_window_s: int | None = None,
        sleep: SleepFn = asyncio.sleep,
        heartbeat_sleep: SleepFn = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self._connector = connector
        self._policy = policy or ClosePolicy.from_settings()
        self._window_s = concurrency_window_s or settings.CONCURRENCY_WINDOW_S
        self._sleep = sleep
        self._heartbeat_sleep = heartbeat_sleep

        self._sessions: asyncio.Queue[Session] = asyncio.Queue()
        self._stopping = asyncio.Event()
        self._fatal: FatalGatewayError | None = None
        self._connections: set[ShardConnection] = set()
        self._tasks: set[asyncio.Task] = set()

        self.start_interval_s: int | None = None
        self.stats: dict[int, dict] = {}

    @staticmethod
    def build_sessions(info: GatewayInfo, token: Token, intents: int) -> list[Session]:
        return [
            Session(
                url=info.url,
                token=token,
                intent=intents,
                shard=ShardConfig(shard_id=i, shard_count=info.shard_count),
            )
            for i in range(info.shard_count)
        ]

    async def start(self, info: GatewayInfo, token: Token, intents: int) -> None:
        """
        Run every shard until `stop()` is called.
        Raises FatalGatewayError when the gateway rejects the credential for good.
        """
        self.start_interval_s = calc_start_interval(info.session_start_limit.max_concurrency, self._window_s)
        logger.info(
            f"event=start shards={info.shard_count} start_interval_s={self.start_interval_s} "
            f"remaining_starts={info.session_start_limit.remaining}"
        )
        for session in self.build_sessions(info, token, intents):
            self.stats[session.shard.shard_id] = make_shard_stats(session.shard.shard_id, session.shard.shard_count)
            self._sessions.put_nowait(session)

        try:
            while not self._stopping.is_set():
                got, session = await self._until_stopped(self._sessions.get())
                if not got:
                    break
                slept, _ = await self._until_stopped(self._sleep(self.start_interval_s))
                if not slept:
                    break
                self._launch(session)
        finally:
            await self._shutdown()

        if self._fatal is not None:
            raise self._fatal

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("event=stop_requested")
        self._stopping.set()

    def request_resume(self) -> None:
        """Force every live shard to reconnect and resume its session."""
        logger.info(f"event=resume_requested live={len(self._connections)}")
        for connection in list(self._connections):
            connection.request_resume()

    @property
    def pending(self) -> int:
        return self._sessions.qsize()

    @property
    def live_connections(self) -> int:
        return len(self._connections)

    # ==========================
    # CONNECTION LIFECYCLE
    # ==========================
    def _launch(self, session: Session) -> None:
        connection = ShardConnection(
            session,
            self.dispatcher,
            connector=self._connector,
            policy=self._policy,
            sleep=self._heartbeat_sleep,
            on_state_change=self._track,
        )
        stats = self._stats_for(session)
        stats["launches"] += 1
        logger.info(f"{session} event=launch attempt={stats['launches']} mode={'resume' if session.id else 'identify'}")

        self._connections.add(connection)
        task = asyncio.create_task(self._run_connection(connection), name=f"shard-{session.shard.shard_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_connection(self, connection: ShardConnection) -> None:
        session = connection.session
        try:
            outcome = await connection.run()
        except Exception as e:
            logger.exception(f"{session} event=fault error={e!r}")
            outcome = Outcome(Termination.RESUMABLE, f"unexpected fault: {e!r}")
        finally:
            self._connections.discard(connection)

        self._record(session, outcome)
        if outcome.kind is Termination.FATAL:
            logger.critical(
                f"{session} event=fatal code={outcome.close_code} reason='{outcome.reason}' "
                "action=stop_all"
            )
            if self._fatal is None:
                self._fatal = FatalGatewayError(outcome.reason, outcome.close_code)
            self.stop()
            return
        if outcome.kind is Termination.MUST_REIDENTIFY:
            session.reset_identity()
        self._sessions.put_nowait(session)

    async def _until_stopped(self, aw: Awaitable) -> tuple[bool, Any]:
        """Await `aw` unless shutdown is requested first. Returns (completed, result)."""
        work = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stopping.wait())
        try:
            done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, stopper):
                if not task.done():
                    task.cancel()
        if work in done and not self._stopping.is_set():
            return True, work.result()
        return False, None

    async def _shutdown(self) -> None:
        tasks = list(self._tasks)
        if tasks:
            logger.info(f"event=shutdown live={len(tasks)}")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ==========================
    # STATUS
    # ==========================
    def _stats_for(self, session: Session) -> dict:
        return self.stats.setdefault(
            session.shard.shard_id,
            make_shard_stats(session.shard.shard_id, session.shard.shard_count),
        )

    def _track(self, connection: ShardConnection) -> None:
        stats = self._stats_for(connection.session)
        stats["state"] = connection.state.value
        stats["session_id"] = connection.session.id
        stats["last_seq"] = connection.session.last_seq
        stats["updated_at"] = datetime.now(timezone.utc).isoformat()

    def _record(self, session: Session, outcome: Outcome) -> None:
        stats = self._stats_for(session)
        stats["last_outcome"] = outcome.kind.value
        stats["last_reason"] = outcome.reason
        stats["last_seq"] = session.last_seq
