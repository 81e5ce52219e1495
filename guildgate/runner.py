"""
CLI entrypoint for guildgate.
"""
import asyncio
import json
import signal
import sys

import httpx
import typer
from loguru import logger

from guildgate.client.session_manager import SessionManager
from guildgate.client.visualizer import Visualizer
from guildgate.shared.codec import Envelope
from guildgate.shared.config import settings
from guildgate.shared.errors import FatalGatewayError, HandlerError
from guildgate.shared.events import EventDispatcher
from guildgate.shared.models import Message, MessageToCreate, Token
from guildgate.shared.openapi import OpenAPIClient

app = typer.Typer(help="guildgate: sharded bot gateway client")


def setup_logging(level: str, log_file: str | None = None) -> None:
    logger.remove()
    if log_file:
        logger.add(log_file, level=level, encoding="utf-8", backtrace=True, diagnose=False)
    else:
        logger.add(sys.stderr, level=level)


def install_signal_handlers(manager: SessionManager) -> None:
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, manager.stop)
        if settings.RESUME_SIGNAL:
            resume_sig = getattr(signal, settings.RESUME_SIGNAL, None)
            if isinstance(resume_sig, signal.Signals):
                loop.add_signal_handler(resume_sig, manager.request_resume)
            else:
                logger.warning(f"event=resume_signal_ignored name={settings.RESUME_SIGNAL} reason=unknown_signal")
    except NotImplementedError:
        logger.warning("event=signals_unavailable platform=" + sys.platform)


def build_token(app_id: int | None, token: str | None) -> Token:
    return Token(
        app_id=app_id if app_id is not None else settings.APP_ID,
        access_token=token if token is not None else settings.TOKEN,
        type=settings.TOKEN_TYPE,
    )


async def run_bot(token: Token, base_url: str | None, reply: bool, dashboard: bool) -> None:
    async with OpenAPIClient(token, base_url=base_url) as api:
        info = await api.get_gateway_info()

        dispatcher = EventDispatcher()
        manager = SessionManager(dispatcher)
        visualizer = Visualizer(manager) if dashboard else None

        async def on_at_message(envelope: Envelope, message: Message):
            author = message.author.username if message.author else "-"
            logger.info(f"event=at_message channel={message.channel_id} author={author} content='{message.content}'")
            if visualizer:
                visualizer.on_event(envelope, f"{author}: {message.content}")
            if reply:
                try:
                    await api.post_message(
                        message.channel_id,
                        MessageToCreate(msg_id=message.id, content=f"received: {message.content}"),
                    )
                except httpx.HTTPError as e:
                    raise HandlerError(f"reply failed: {e}") from e

        dispatcher.register("AT_MESSAGE_CREATE", on_at_message)
        install_signal_handlers(manager)

        task = asyncio.create_task(manager.start(info, token, dispatcher.intents))
        if visualizer:
            await visualizer.run(task)
        await task


@app.command()
def run(
    app_id: int = typer.Option(None, help="Bot app id (defaults to APP_ID)"),
    token: str = typer.Option(None, help="Bot token (defaults to TOKEN)"),
    base_url: str = typer.Option(None, help="HTTP API base url (defaults to API_BASE_URL)"),
    reply: bool = typer.Option(False, help="Reply to every @-mention"),
    dashboard: bool = typer.Option(False, help="Show the live shard dashboard; logs go to guildgate.log"),
):
    """Connect every shard and dispatch events until interrupted."""
    setup_logging(settings.LOG_LEVEL, "guildgate.log" if dashboard else None)
    try:
        asyncio.run(run_bot(build_token(app_id, token), base_url, reply, dashboard))
    except FatalGatewayError as e:
        logger.critical(f"event=exit code={e.code} reason='{e.reason}'")
        typer.echo(f"Gateway refused the bot (close code {e.code}): {e.reason}", err=True)
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        logger.critical(f"event=exit reason='gateway info unavailable: {e}'")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


@app.command("gateway-info")
def gateway_info(
    app_id: int = typer.Option(None, help="Bot app id (defaults to APP_ID)"),
    token: str = typer.Option(None, help="Bot token (defaults to TOKEN)"),
    base_url: str = typer.Option(None, help="HTTP API base url (defaults to API_BASE_URL)"),
):
    """Resolve and print the gateway url, shard count and start limits."""
    async def fetch():
        async with OpenAPIClient(build_token(app_id, token), base_url=base_url) as api:
            return await api.get_gateway_info()

    info = asyncio.run(fetch())
    typer.echo(json.dumps(info.model_dump(), indent=2))


@app.command()
def sandbox(port: int = typer.Option(None, help="Port to serve on (defaults to SANDBOX_PORT)")):
    """Start the local sandbox gateway using Uvicorn."""
    import uvicorn
    port = port or settings.SANDBOX_PORT
    typer.echo(f"Starting sandbox gateway on port {port}...")
    uvicorn.run("guildgate.sandbox.main:app", host="127.0.0.1", port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    app()
