"""
MODULE OVERVIEW:
Operator routes for the sandbox: provoke failures and accept bot replies.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from fastapi import APIRouter, Query

from guildgate.sandbox.connection_manager import manager
from guildgate.shared.codec import OpCode
from guildgate.shared.models import Message, MessageToCreate, User

router = APIRouter()


class ControlAction(str, Enum):
    RECONNECT = "reconnect"
    INVALID_SESSION = "invalid-session"
    CLOSE = "close"


@router.post("/control/{action}")
async def control(action: ControlAction, code: int = Query(4009), reason: str = Query("")):
    if action is ControlAction.RECONNECT:
        affected = await manager.send_control(OpCode.RECONNECT)
    elif action is ControlAction.INVALID_SESSION:
        affected = await manager.send_control(OpCode.INVALID_SESSION, False)
    else:
        affected = await manager.close_all(code, reason)
    return {"action": action.value, "affected": affected}


@router.post("/channels/{channel_id}/messages", response_model=Message)
async def post_message(channel_id: str, body: MessageToCreate):
    message = Message(
        id=str(uuid.uuid4()),
        channel_id=channel_id,
        content=body.content or "",
        timestamp=datetime.now(timezone.utc).isoformat(),
        author=User(id="sandbox-bot", username="sandbox", bot=True),
    )
    manager.posted_messages.append(message)
    return message
