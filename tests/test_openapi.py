import json

import httpx
import pytest

from guildgate.shared.models import MessageToCreate
from guildgate.shared.openapi import OpenAPIClient


def gateway_handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["Authorization"] == "Bot 1024.secret"
    if request.url.path == "/gateway/bot":
        return httpx.Response(200, json={
            "url": "wss://api.test/websocket",
            "shards": 4,
            "session_start_limit": {"total": 1000, "remaining": 998, "reset_after": 86400000, "max_concurrency": 2},
        })
    if request.url.path == "/channels/c1/messages":
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "reply-1", "channel_id": "c1", "content": body["content"]})
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_get_gateway_info(token):
    async with OpenAPIClient(token, base_url="https://api.test/", transport=httpx.MockTransport(gateway_handler)) as api:
        info = await api.get_gateway_info()
    assert info.url == "wss://api.test/websocket"
    assert info.shard_count == 4
    assert info.session_start_limit.max_concurrency == 2
    assert info.session_start_limit.remaining == 998


@pytest.mark.asyncio
async def test_post_message_omits_unset_fields(token):
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return gateway_handler(request)

    async with OpenAPIClient(token, base_url="https://api.test", transport=httpx.MockTransport(handler)) as api:
        message = await api.post_message("c1", MessageToCreate(content="pong", msg_id="m1"))
    assert bodies == [{"content": "pong", "msg_id": "m1"}]
    assert message.id == "reply-1"
    assert message.content == "pong"


@pytest.mark.asyncio
async def test_http_errors_raise(token):
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"message": "bad token"}))
    async with OpenAPIClient(token, base_url="https://api.test", transport=transport) as api:
        with pytest.raises(httpx.HTTPStatusError):
            await api.get_gateway_info()
