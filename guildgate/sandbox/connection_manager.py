"""
MODULE OVERVIEW:
Server-side session registry for the sandbox gateway.

WHAT IS HAPPENING HERE:
Each identified socket gets a `SandboxSession` with its own sequence counter.
Sessions outlive their sockets: a client that drops and comes back with a
Resume frame for a known session id is re-attached and keeps counting from
where it was, exactly like the real gateway. Unknown session ids get an
InvalidSession frame, which forces the client to identify again.

The control helpers let an operator (or a test) provoke each failure class
on demand: a Reconnect frame, an InvalidSession frame, or a close with any
close code.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi.websockets import WebSocket
from loguru import logger

from guildgate.shared.codec import OpCode, encode_frame
from guildgate.shared.models import IdentifyData, Message, ReadyData, ResumeData, WSUser

SANDBOX_USER = WSUser(id="sandbox-bot", username="sandbox", bot=True)


@dataclass
class SandboxSession:
    session_id: str
    shard: list[int]
    intents: int
    websocket: WebSocket | None = None
    seq: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq


class SandboxManager:
    def __init__(self):
        self.sessions: Dict[str, SandboxSession] = {}
        self.posted_messages: list[Message] = []
        self.total_events_dispatched = 0
        self.startup_time = datetime.now(timezone.utc)

    # ==========================
    # HANDSHAKE
    # ==========================
    async def identify(self, websocket: WebSocket, data: IdentifyData) -> SandboxSession:
        session = SandboxSession(
            session_id=str(uuid.uuid4()),
            shard=list(data.shard) if len(data.shard) == 2 else [0, 1],
            intents=data.intents,
            websocket=websocket,
        )
        self.sessions[session.session_id] = session
        ready = ReadyData(version=1, session_id=session.session_id, user=SANDBOX_USER, shard=session.shard)
        await websocket.send_text(encode_frame(OpCode.DISPATCH, ready, seq=session.next_seq(), type="READY"))
        logger.info(f"session={session.session_id} shard={session.shard} event=identify intents={data.intents}")
        return session

    async def resume(self, websocket: WebSocket, data: ResumeData) -> SandboxSession | None:
        session = self.sessions.get(data.session_id)
        if session is None:
            await websocket.send_text(encode_frame(OpCode.INVALID_SESSION, False))
            logger.info(f"session={data.session_id} event=resume_rejected reason=unknown_session")
            return None
        session.websocket = websocket
        await websocket.send_text(encode_frame(OpCode.DISPATCH, "", seq=session.next_seq(), type="RESUMED"))
        logger.info(f"session={session.session_id} event=resume client_seq={data.seq} server_seq={session.seq}")
        return session

    def detach(self, session: SandboxSession) -> None:
        session.websocket = None
        logger.info(f"session={session.session_id} event=disconnect reason=cleanup")

    # ==========================
    # FAN-OUT
    # ==========================
    def live_sessions(self) -> list[SandboxSession]:
        return [s for s in self.sessions.values() if s.websocket is not None]

    async def push_event(self, event_type: str, data: Any) -> int:
        self.total_events_dispatched += 1
        delivered = 0
        for session in self.live_sessions():
            try:
                await session.websocket.send_text(
                    encode_frame(OpCode.DISPATCH, data, seq=session.next_seq(), type=event_type)
                )
                delivered += 1
            except Exception as e:
                logger.warning(f"session={session.session_id} event=error reason='{e}'")
                self.detach(session)
        return delivered

    # ==========================
    # CONTROL
    # ==========================
    async def send_control(self, op: OpCode, data: Any = None) -> int:
        sessions = self.live_sessions()
        for session in sessions:
            await session.websocket.send_text(encode_frame(op, data))
        if op == OpCode.INVALID_SESSION:
            for session in sessions:
                self.sessions.pop(session.session_id, None)
        return len(sessions)

    async def close_all(self, code: int, reason: str = "") -> int:
        sessions = self.live_sessions()
        for session in sessions:
            await session.websocket.close(code=code, reason=reason)
            self.detach(session)
        return len(sessions)

    def get_stats(self) -> dict:
        return {
            "sessions": len(self.sessions),
            "live": len(self.live_sessions()),
            "total_events_dispatched": self.total_events_dispatched,
            "posted_messages": len(self.posted_messages),
            "uptime_s": (datetime.now(timezone.utc) - self.startup_time).total_seconds(),
        }


# Global singleton instance
manager = SandboxManager()
