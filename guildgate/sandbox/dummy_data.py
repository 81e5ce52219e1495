"""
MODULE OVERVIEW:
Infinite background generator that plays "users talking to the bot".

WHAT IS HAPPENING HERE:
The sandbox gateway has no real guild behind it, so this produces
AT_MESSAGE_CREATE payloads at an irregular pace for the manager to fan out to
every identified session.
"""

import asyncio
import random
import uuid
from datetime import datetime, timezone

from guildgate.shared.models import Member, Message, User

USERS = [("u-alice", "alice"), ("u-bob", "bob"), ("u-charlie", "charlie")]
LINES = ["/ping", "hello bot", "/help", "what can you do?", "画龙点睛"]


def make_at_message(channel_id: str = "sandbox-channel", guild_id: str = "sandbox-guild") -> Message:
    user_id, username = random.choice(USERS)
    author = User(id=user_id, username=username)
    return Message(
        id=str(uuid.uuid4()),
        channel_id=channel_id,
        guild_id=guild_id,
        content=f"<@!sandbox-bot> {random.choice(LINES)}",
        timestamp=datetime.now(timezone.utc).isoformat(),
        author=author,
        member=Member(guild_id=guild_id, nick=username, user=author),
    )


async def at_message_generator(interval_s: float = 5.0):
    """Emits a mention roughly every `interval_s` seconds."""
    while True:
        await asyncio.sleep(random.uniform(0.5 * interval_s, 1.5 * interval_s))
        yield make_at_message()
