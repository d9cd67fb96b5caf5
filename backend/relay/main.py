"""Signaling Relay Application.

This is the main entry point for the signaling relay service. The relay
brokers WebRTC handshake messages (session descriptions and ICE candidates)
between browsers in the same room; media never passes through it.

Modules:
    - signaling.registry: room membership and display names
    - signaling.router: message validation and routing
    - signaling.listener: cleanup when a connection drops
    - signaling.broker: room topics and user addresses over WebSockets
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from relay.config import AppSettings, get_config
from relay.signaling.broker import ConnectionBroker
from relay.signaling.listener import SessionEventListener
from relay.signaling.registry import RoomRegistry
from relay.signaling.rooms_router import router as rooms_router
from relay.signaling.router import SignalingRouter
from relay.signaling.ws_router import router as ws_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request access logs; every signaling frame is logged by the router.
for _noisy in ("uvicorn.access", "websockets", "websockets.protocol"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config: AppSettings = app.state.settings

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    logger.info(
        f"Signaling relay listening on ws://{config.server.host}:{config.server.port}/ws/rooms/{{room_id}}"
    )

    yield  # Application runs here

    logger.info(
        "Application shutdown complete (%d rooms discarded)",
        len(app.state.registry.rooms()),
    )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application and its signaling components.

    Each call wires a fresh registry, broker, router and listener, so tests
    can build isolated apps.

    Args:
        settings: Settings to use; loaded from relay.settings.yaml if omitted.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or get_config()
    signaling = settings.signaling

    app = FastAPI(
        title="Signaling Relay API",
        description="WebRTC signaling relay for peer-to-peer video calls",
        version="0.1.0",
        lifespan=lifespan,
    )

    registry = RoomRegistry(lock_stripes=signaling.lock_stripes)
    broker = ConnectionBroker(
        room_topic_prefix=signaling.room_topic_prefix,
        user_queue=signaling.user_queue,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.broker = broker
    app.state.signaling_router = SignalingRouter(registry, broker)
    app.state.session_listener = SessionEventListener(registry, broker)

    # Register all routers
    app.include_router(ws_router)
    app.include_router(rooms_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
