"""
MODULE OVERVIEW:
The thin HTTP side of the bot API.

WHAT IS HAPPENING HERE:
Before any WebSocket is opened we ask the HTTP API where the gateway lives and
how many shards / session starts we are allowed (`GET /gateway/bot`). Replies
to users go out the same way (`POST /channels/{id}/messages`). Both calls
carry the same `Authorization: Bot {app_id}.{token}` header the gateway
handshake uses.
"""
import httpx
from loguru import logger

from guildgate.shared.config import settings
from guildgate.shared.models import GatewayInfo, Message, MessageToCreate, Token


class OpenAPIClient:
    def __init__(
        self,
        token: Token,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=(base_url or settings.API_BASE_URL).rstrip('/'),
            timeout=timeout_s or settings.HTTP_TIMEOUT_S,
            headers={"Authorization": token.to_str()},
            transport=transport,
        )

    async def __aenter__(self) -> "OpenAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def get_gateway_info(self) -> GatewayInfo:
        resp = await self.client.get("/gateway/bot")
        resp.raise_for_status()
        info = GatewayInfo.model_validate(resp.json())
        logger.info(
            f"event=gateway_info url={info.url} shards={info.shards} "
            f"max_concurrency={info.session_start_limit.max_concurrency}"
        )
        return info

    async def post_message(self, channel_id: str, message: MessageToCreate) -> Message:
        resp = await self.client.post(
            f"/channels/{channel_id}/messages",
            json=message.model_dump(exclude_none=True),
        )
        resp.raise_for_status()
        return Message.model_validate(resp.json())
