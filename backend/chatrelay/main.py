"""Chat Relay Application.

This is the main entry point for the relay service: a real-time presence
and chat server with a durable recent-history replay on join.

Modules:
    - chat: WebSocket relay, presence registry and wire protocol
    - history: DuckDB-backed append-only message log
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.chat.manager import ChatRelay
from chatrelay.chat.presence import PresenceRegistry
from chatrelay.chat.router import router as chat_router
from chatrelay.config import AppSettings, get_config
from chatrelay.errors import PersistenceError
from chatrelay.history.router import router as history_router
from chatrelay.history.service import HistoryStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("websockets", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    The presence registry, history store and relay are created in the
    lifespan and live on ``app.state`` for as long as the app runs.

    Args:
        settings: Settings to use. Defaults to the process-wide config.
    """
    config = settings or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        store = HistoryStore(
            db_path=config.history.db_path,
            timeout_seconds=config.history.persistence_timeout_seconds,
        )
        try:
            logger.info("History store holds %d messages", store.count())
        except PersistenceError as exc:
            # Keep serving; joins get an empty replay until the store recovers
            logger.warning("History store unavailable at startup: %s", exc)

        registry = PresenceRegistry()
        app.state.history_store = store
        app.state.presence = registry
        app.state.relay = ChatRelay.from_settings(config, registry, store)
        app.state.settings = config

        yield  # Application runs here

        # Shutdown
        registry.clear()
        store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chat Relay API",
        description="Real-time presence and chat relay with persisted history",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(history_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
