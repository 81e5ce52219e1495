import asyncio
import signal

import pytest
from loguru import logger

from guildgate.client.session_manager import SessionManager
from guildgate.runner import install_signal_handlers
from guildgate.shared.config import settings


@pytest.fixture
def warnings():
    messages = []
    sink_id = logger.add(messages.append, level="WARNING")
    yield messages
    logger.remove(sink_id)


@pytest.mark.asyncio
async def test_unknown_resume_signal_is_logged(dispatcher, monkeypatch, warnings):
    monkeypatch.setattr(settings, "RESUME_SIGNAL", "SIGBOGUS")
    install_signal_handlers(SessionManager(dispatcher))
    assert any("resume_signal_ignored" in str(m) for m in warnings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        assert loop.remove_signal_handler(sig)


@pytest.mark.asyncio
async def test_resume_signal_is_installed(dispatcher, monkeypatch):
    monkeypatch.setattr(settings, "RESUME_SIGNAL", "SIGUSR1")
    install_signal_handlers(SessionManager(dispatcher))

    loop = asyncio.get_running_loop()
    assert loop.remove_signal_handler(signal.SIGUSR1)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.remove_signal_handler(sig)
