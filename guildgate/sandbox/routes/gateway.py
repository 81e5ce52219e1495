"""
MODULE OVERVIEW:
The sandbox gateway bootstrap and WebSocket routes.

WHAT IS HAPPENING HERE:
`GET /gateway/bot` tells the client where to connect and how fast it may
start sessions. `/websocket` is the server half of the handshake: Hello first,
then Identify or Resume, then heartbeats answered with HeartbeatAck.
"""
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError

from guildgate.sandbox.connection_manager import manager
from guildgate.shared.codec import OpCode, decode_frame, encode_frame, parse_data
from guildgate.shared.config import settings
from guildgate.shared.errors import FrameDecodeError
from guildgate.shared.models import GatewayInfo, HelloData, IdentifyData, ResumeData, SessionStartLimit

router = APIRouter()

# Close codes the sandbox uses for protocol violations.
CLOSE_UNKNOWN_OPCODE = 4001
CLOSE_DECODE_ERROR = 4002


@router.get("/gateway/bot", response_model=GatewayInfo)
async def gateway_bot(request: Request):
    ws_base = str(request.base_url).replace("http://", "ws://").replace("https://", "wss://")
    return GatewayInfo(
        url=f"{ws_base.rstrip('/')}/websocket",
        shards=settings.SANDBOX_SHARDS,
        session_start_limit=SessionStartLimit(
            total=1000,
            remaining=1000,
            reset_after=86400000,
            max_concurrency=settings.SANDBOX_MAX_CONCURRENCY,
        ),
    )


@router.websocket("/websocket")
async def gateway_endpoint(websocket: WebSocket):
    await websocket.accept()
    await websocket.send_text(
        encode_frame(OpCode.HELLO, HelloData(heartbeat_interval=settings.SANDBOX_HEARTBEAT_INTERVAL_MS))
    )

    session = None
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = decode_frame(raw)
            except FrameDecodeError as e:
                logger.warning(f"event=decode_failed error={e}")
                await websocket.close(code=CLOSE_DECODE_ERROR, reason="decode error")
                break

            if envelope.op == OpCode.HEARTBEAT:
                await websocket.send_text(encode_frame(OpCode.HEARTBEAT_ACK))
            elif envelope.op == OpCode.IDENTIFY:
                try:
                    session = await manager.identify(websocket, parse_data(envelope, IdentifyData))
                except ValidationError:
                    await websocket.close(code=CLOSE_DECODE_ERROR, reason="bad identify")
                    break
            elif envelope.op == OpCode.RESUME:
                try:
                    session = await manager.resume(websocket, parse_data(envelope, ResumeData))
                except ValidationError:
                    await websocket.close(code=CLOSE_DECODE_ERROR, reason="bad resume")
                    break
            else:
                await websocket.close(code=CLOSE_UNKNOWN_OPCODE, reason=f"unknown opcode {envelope.op}")
                break
    except WebSocketDisconnect:
        pass
    finally:
        if session is not None and session.websocket is websocket:
            manager.detach(session)
