"""
FastAPI application for the reel republishing pipeline.

Receives chat messages over HTTP, runs sessions in the background and
reports progress to the status channel.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from reel_relay.api import routes
from reel_relay.config import get_settings
from reel_relay.logging_config import setup_logging
from reel_relay.services.file_store import TransientFileStore
from reel_relay.services.gate import ConcurrencyGate
from reel_relay.services.pipeline import SessionOrchestrator
from reel_relay.services.status_channel import WebhookStatusChannel

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10.0


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log unhandled task errors and keep serving."""
    error = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if error is not None:
        logger.error(f"{message}: {error!r}", exc_info=error)
    else:
        logger.error(message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the shared gate, file store and orchestrator; on shutdown
    releases remote resources within SHUTDOWN_TIMEOUT seconds.
    """
    logger.info("Starting Reel Relay API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Temp directory: {settings.temp_dir}")

    asyncio.get_running_loop().set_exception_handler(handle_loop_exception)

    channel = WebhookStatusChannel.from_settings(settings)
    gate = ConcurrencyGate(settings.max_concurrent_sessions)
    store = TransientFileStore(settings.temp_dir)
    orchestrator = SessionOrchestrator.from_settings(settings, gate, store, channel)

    app.state.settings = settings
    app.state.orchestrator = orchestrator

    if not settings.ai_enabled:
        logger.warning("GEMINI_API_KEY not set - fallback captions only")
    if not settings.storage_configured:
        logger.warning("GitHub storage not configured - sessions will fail at staging")

    yield

    logger.info("Shutting down Reel Relay API")
    try:
        await asyncio.wait_for(orchestrator.aclose(), timeout=SHUTDOWN_TIMEOUT)
    except asyncio.TimeoutError:
        logger.error(f"Cleanup did not finish within {SHUTDOWN_TIMEOUT:.0f}s, exiting anyway")

    close = getattr(channel, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title="Reel Relay API",
    description="Republishes short-form videos to Instagram and YouTube accounts",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(routes.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status and active session count
    """
    orchestrator = getattr(app.state, "orchestrator", None)
    active = len(orchestrator.gate.active) if orchestrator else 0
    return {"status": "ok", "active_sessions": active}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reel_relay.main:app",
        host="0.0.0.0",
        port=8801,
    )
