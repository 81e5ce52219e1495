"""
MODULE OVERVIEW:
The sandbox gateway application factory.

WHAT IS HAPPENING HERE:
A local stand-in for the real bot gateway, good enough to run the client end to
end without credentials. The `lifespan` starts the fake message generator as a
background task and cancels it on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from guildgate.sandbox.connection_manager import manager
from guildgate.sandbox.dummy_data import at_message_generator
from guildgate.sandbox.routes import control, gateway
from guildgate.shared.config import settings

background_tasks = set()


async def generator_runner(generator):
    """Consumes the message generator and fans every message out to live sessions."""
    try:
        async for message in generator:
            await manager.push_event("AT_MESSAGE_CREATE", message)
    except asyncio.CancelledError:
        logger.debug("Generator cancelled")
    except Exception as e:
        logger.error(f"Generator error: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Sandbox gateway starting up...")
    task = asyncio.create_task(generator_runner(at_message_generator(settings.SANDBOX_MESSAGE_INTERVAL_S)))
    background_tasks.add(task)

    yield

    logger.info("Sandbox gateway shutting down. Cancelling background tasks...")
    for task in background_tasks:
        task.cancel()
    if background_tasks:
        await asyncio.gather(*background_tasks, return_exceptions=True)
    background_tasks.clear()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="guildgate sandbox",
    description="Local stand-in for the bot gateway",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(gateway.router, tags=["Gateway"])
app.include_router(control.router, tags=["Control"])


@app.get("/healthz", tags=["Ops"])
async def health_check():
    return {"status": "ok"}


@app.get("/stats", tags=["Ops"])
async def get_stats():
    return manager.get_stats()
