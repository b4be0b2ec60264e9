"""Eventroom Backend Application.

This is the main entry point for the Eventroom backend service.
Eventroom lets people meet in ephemeral, named event rooms: participants
join by username, see the room's message history, chat, and survive page
refreshes through short-lived session resumption.

Modules:
    - events: WebSocket event rooms (presence, sessions, chat fan-out)
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventroom.config import get_config
from eventroom.events.coordinator import get_coordinator
from eventroom.events.router import router as events_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn logs every websocket accept/close at info
for _noisy in ("uvicorn.access", "websockets", "websockets.protocol"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in eventroom.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    coordinator = get_coordinator()
    logger.info(
        "Event coordinator ready (grace period %ss)",
        coordinator.supervisor.grace_period_seconds,
    )

    yield  # Application runs here

    # Shutdown
    await coordinator.shutdown()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Eventroom API",
    description="Ephemeral event rooms with presence and session resumption",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(events_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
