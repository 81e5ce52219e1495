"""
MODULE OVERVIEW:
Typed data structures shared by the gateway client, the HTTP client and the
sandbox gateway, powered by Pydantic v2 (wire payloads) and dataclasses
(in-process session state).

WHAT IS HAPPENING HERE:
Everything that crosses the wire is a `BaseModel` so both sides of the
protocol validate the same contract. `Session` is plain mutable state owned by
exactly one connection at a time, so it stays a dataclass.
"""
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ==========================
# HTTP BOOTSTRAP
# ==========================
class SessionStartLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    remaining: int = 0
    reset_after: int = 0
    max_concurrency: int = 1


class GatewayInfo(BaseModel):
    """Result of `GET /gateway/bot`; read-only input to the session manager."""
    model_config = ConfigDict(frozen=True)

    url: str
    shards: int = 1
    session_start_limit: SessionStartLimit = Field(default_factory=SessionStartLimit)

    @property
    def shard_count(self) -> int:
        return self.shards


# ==========================
# SESSION STATE
# ==========================
@dataclass
class Token:
    app_id: int
    access_token: str
    type: str = "Bot"

    def to_str(self) -> str:
        return f"{self.type} {self.app_id}.{self.access_token}"


@dataclass
class ShardConfig:
    shard_id: int = 0
    shard_count: int = 1


@dataclass
class Session:
    url: str
    token: Token
    intent: int
    shard: ShardConfig = field(default_factory=ShardConfig)
    id: str = ""
    last_seq: int = 0

    def reset_identity(self) -> None:
        self.id = ""
        self.last_seq = 0

    def __str__(self) -> str:
        return f"shard={self.shard.shard_id}/{self.shard.shard_count} session={self.id or '-'}"


# ==========================
# GATEWAY PAYLOADS
# ==========================
class IdentifyProperties(BaseModel):
    os: str | None = None
    browser: str | None = None
    device: str | None = None


class IdentifyData(BaseModel):
    token: str
    intents: int
    shard: list[int]
    properties: IdentifyProperties = Field(default_factory=IdentifyProperties)


class ResumeData(BaseModel):
    token: str
    session_id: str
    seq: int


class HelloData(BaseModel):
    heartbeat_interval: int


class WSUser(BaseModel):
    id: str = ""
    username: str = ""
    bot: bool = False


class ReadyData(BaseModel):
    version: int = 0
    session_id: str
    user: WSUser = Field(default_factory=WSUser)
    shard: list[int] = Field(default_factory=list)


# ==========================
# MESSAGE EVENTS
# ==========================
class User(BaseModel):
    id: str = ""
    username: str = ""
    avatar: str = ""
    bot: bool = False
    union_openid: str = ""
    union_user_account: str = ""


class Member(BaseModel):
    guild_id: str = ""
    joined_at: str = ""
    nick: str = ""
    user: User | None = None
    roles: list[str] = Field(default_factory=list)


class MessageReference(BaseModel):
    message_id: str
    ignore_get_message_error: bool = False


class Message(BaseModel):
    id: str = ""
    channel_id: str = ""
    guild_id: str = ""
    content: str = ""
    timestamp: str = ""
    edited_timestamp: str = ""
    mention_everyone: bool = False
    author: User | None = None
    member: Member | None = None
    mentions: list[User] = Field(default_factory=list)
    direct_message: bool = False
    seq_in_channel: str = ""
    message_reference: MessageReference | None = None
    src_guild_id: str = ""


class MessageToCreate(BaseModel):
    content: str | None = None
    image: str | None = None
    msg_id: str | None = None
    event_id: str | None = None
    message_reference: MessageReference | None = None
    ark: dict[str, Any] | None = None
    markdown: dict[str, Any] | None = None
