import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from guildgate.sandbox.main import app
from guildgate.shared.codec import OpCode, decode_frame, encode_frame
from guildgate.shared.config import settings
from guildgate.shared.models import IdentifyData, ResumeData


@pytest.fixture
def client(monkeypatch):
    # Keep the fake chatter out of the frames the tests read.
    monkeypatch.setattr(settings, "SANDBOX_MESSAGE_INTERVAL_S", 3600.0)
    with TestClient(app) as c:
        yield c


def identify(ws, shard=(0, 1)):
    hello = decode_frame(ws.receive_text())
    assert hello.op == OpCode.HELLO
    ws.send_text(encode_frame(OpCode.IDENTIFY, IdentifyData(token="Bot 1.x", intents=1 << 30, shard=list(shard))))
    return decode_frame(ws.receive_text())


def test_gateway_bot(client):
    resp = client.get("/gateway/bot")
    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == "ws://testserver/websocket"
    assert body["shards"] == settings.SANDBOX_SHARDS
    assert body["session_start_limit"]["max_concurrency"] == settings.SANDBOX_MAX_CONCURRENCY


def test_handshake_and_heartbeat(client):
    with client.websocket_connect("/websocket") as ws:
        ready = identify(ws, shard=(1, 2))
        assert ready.op == OpCode.DISPATCH
        assert ready.type == "READY"
        assert ready.seq == 1
        assert ready.data["session_id"]
        assert ready.data["shard"] == [1, 2]

        ws.send_text(encode_frame(OpCode.HEARTBEAT, 1))
        ack = json.loads(ws.receive_text())
        assert ack["op"] == OpCode.HEARTBEAT_ACK


def test_resume_known_session(client):
    with client.websocket_connect("/websocket") as ws:
        session_id = identify(ws).data["session_id"]

    with client.websocket_connect("/websocket") as ws:
        decode_frame(ws.receive_text())
        ws.send_text(encode_frame(OpCode.RESUME, ResumeData(token="Bot 1.x", session_id=session_id, seq=1)))
        resumed = decode_frame(ws.receive_text())
        assert resumed.type == "RESUMED"
        assert resumed.seq == 2


def test_resume_unknown_session_is_invalid(client):
    with client.websocket_connect("/websocket") as ws:
        decode_frame(ws.receive_text())
        ws.send_text(encode_frame(OpCode.RESUME, ResumeData(token="Bot 1.x", session_id="nope", seq=3)))
        invalid = decode_frame(ws.receive_text())
        assert invalid.op == OpCode.INVALID_SESSION
        assert invalid.data is False


def test_unknown_opcode_closes(client):
    with client.websocket_connect("/websocket") as ws:
        decode_frame(ws.receive_text())
        ws.send_text('{"op": 99, "d": null}')
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
        assert exc_info.value.code == 4001


def test_control_reconnect(client):
    with client.websocket_connect("/websocket") as ws:
        identify(ws)
        resp = client.post("/control/reconnect")
        assert resp.json()["action"] == "reconnect"
        assert resp.json()["affected"] >= 1
        assert decode_frame(ws.receive_text()).op == OpCode.RECONNECT


def test_control_rejects_unknown_action(client):
    assert client.post("/control/explode").status_code == 422


def test_post_message(client):
    resp = client.post("/channels/c9/messages", json={"content": "pong", "msg_id": "m1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["channel_id"] == "c9"
    assert body["content"] == "pong"
    assert body["author"]["bot"] is True
    assert client.get("/stats").json()["posted_messages"] >= 1


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
