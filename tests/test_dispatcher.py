import pytest

from guildgate.shared.codec import OpCode, decode_frame
from guildgate.shared.errors import HandlerError
from guildgate.shared.events import EventDispatcher
from guildgate.shared.models import Message


def at_message(content="hi", seq=1):
    return decode_frame(
        '{"op": 0, "s": %d, "t": "AT_MESSAGE_CREATE", "d": {"id": "m1", "channel_id": "c1", "content": "%s"}}'
        % (seq, content)
    )


@pytest.mark.asyncio
async def test_dispatch_parses_typed_payload(dispatcher):
    received = []

    @dispatcher.on("AT_MESSAGE_CREATE")
    async def handler(envelope, message):
        received.append(message)

    assert await dispatcher.dispatch(at_message("ping")) is True
    assert isinstance(received[0], Message)
    assert received[0].content == "ping"
    assert received[0].channel_id == "c1"


@pytest.mark.asyncio
async def test_last_registration_wins(dispatcher):
    calls = []
    dispatcher.register("AT_MESSAGE_CREATE", lambda e, m: calls.append("first"))
    dispatcher.register("AT_MESSAGE_CREATE", lambda e, m: calls.append("second"))

    await dispatcher.dispatch(at_message())
    assert calls == ["second"]


@pytest.mark.asyncio
async def test_unregistered_frames_are_dropped(dispatcher):
    assert await dispatcher.dispatch(at_message()) is False
    assert dispatcher.handler_for(OpCode.DISPATCH, "AT_MESSAGE_CREATE") is None


@pytest.mark.asyncio
async def test_reported_failures_do_not_raise(dispatcher):
    async def failing(envelope, message):
        raise HandlerError("downstream unavailable")

    dispatcher.register("AT_MESSAGE_CREATE", failing)
    assert await dispatcher.dispatch(at_message()) is False

    dispatcher.register("AT_MESSAGE_CREATE", lambda e, m: False)
    assert await dispatcher.dispatch(at_message()) is False


@pytest.mark.asyncio
async def test_unexpected_handler_errors_propagate(dispatcher):
    def broken(envelope, message):
        raise RuntimeError("bug")

    dispatcher.register("AT_MESSAGE_CREATE", broken)
    with pytest.raises(RuntimeError):
        await dispatcher.dispatch(at_message())


@pytest.mark.asyncio
async def test_invalid_payload_is_reported_not_raised(dispatcher):
    dispatcher.register("AT_MESSAGE_CREATE", lambda e, m: True)
    envelope = decode_frame('{"op": 0, "t": "AT_MESSAGE_CREATE", "d": {"mentions": "nope"}}')
    assert await dispatcher.dispatch(envelope) is False


@pytest.mark.asyncio
async def test_untyped_events_get_raw_data(dispatcher):
    seen = []
    dispatcher.register("CUSTOM", lambda e, d: seen.append(d))
    await dispatcher.dispatch(decode_frame('{"op": 0, "t": "CUSTOM", "d": {"k": 1}}'))
    assert seen == [{"k": 1}]


@pytest.mark.asyncio
async def test_handlers_keyed_by_opcode(dispatcher):
    seen = []
    dispatcher.register("", lambda e, d: seen.append(e.op), opcode=OpCode.HTTP_CALLBACK_ACK)
    assert await dispatcher.dispatch(decode_frame('{"op": 12, "d": null}')) is True
    assert seen == [12]


def test_intents_follow_registered_events():
    dispatcher = EventDispatcher()
    assert dispatcher.intents == 0
    dispatcher.register("AT_MESSAGE_CREATE", lambda e, m: None)
    dispatcher.register("DIRECT_MESSAGE_CREATE", lambda e, m: None)
    assert dispatcher.intents == (1 << 30) | (1 << 12)
