"""Huddle Backend Application.

This is the main entry point for the Huddle chat service: one shared room
where connected participants exchange messages, see who is present and see
who is typing.

Modules:
    - chat: WebSocket room (registry, history, broadcaster, engine)
    - client: Reconnecting chat client and client-side room view
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from huddle import __version__
from huddle.chat.engine import ChatRoom
from huddle.chat.router import router as chat_router
from huddle.config import AppSettings, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Per-connection handshake chatter is not useful when debugging the room
for _noisy in ("websockets", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build a FastAPI application with its own, independent chat room.

    Args:
        settings: Settings to use. Defaults to ``get_config()``.
    """
    settings = settings or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Apply the configured log level on startup."""
        configured_level = getattr(logging, settings.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", settings.logging.level.upper())

        logger.info(
            f"Chat room ready on ws://{settings.server.host}:{settings.server.port}/ws "
            f"(history_limit={settings.chat.history_limit})"
        )

        yield  # Application runs here

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Huddle API",
        description="Real-time group chat backbone",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.room = ChatRoom(
        history_limit=settings.chat.history_limit,
        send_timeout=settings.chat.send_timeout_seconds,
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
