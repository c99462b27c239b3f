"""Chat Backend Application.

This is the main entry point for the real-time chat service: a REST API
for users, chats and messages, plus a WebSocket endpoint that pushes chat
events to every connected device of the affected users.

Modules:
    - realtime: connection registry, room broadcaster, socket sessions
    - auth: access token issuing and verification
    - users: DuckDB-backed user records
    - chat: DuckDB-backed chats and messages, REST endpoints
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import duckdb
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.responses import api_error
from app.auth.tokens import TokenVerifier
from app.chat.message_router import router as message_router
from app.chat.router import router as chat_router
from app.chat.service import ChatError, ChatService
from app.chat.store import ChatStore
from app.config import AppConfig, get_config
from app.realtime.broadcaster import RoomBroadcaster
from app.realtime.registry import ConnectionRegistry
from app.realtime.router import router as realtime_router
from app.users.router import router as users_router
from app.users.store import UserStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# uvicorn.access logs every request; httpx/httpcore log every connection
# made by the test client.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the application.

    Args:
        config: Configuration to use. Defaults to the YAML-loaded config.

    Returns:
        A FastAPI app whose components are created in its lifespan and
        stored on ``app.state``.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Apply configured log level to the root logger so that
        # `server.log_level: "debug"` in chat.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, config.server.log_level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.server.log_level.upper())

        db = duckdb.connect(config.storage.db_path)
        user_store = UserStore(connection=db)
        chat_store = ChatStore(connection=db)
        registry = ConnectionRegistry()
        broadcaster = RoomBroadcaster(registry)

        app.state.config = config
        app.state.db = db
        app.state.user_store = user_store
        app.state.chat_store = chat_store
        app.state.registry = registry
        app.state.broadcaster = broadcaster
        app.state.verifier = TokenVerifier.from_config(config, user_store)
        app.state.chat_service = ChatService(chat_store, user_store, broadcaster)
        logger.info(
            "Chat service ready: db=%s outbox_size=%d verify_chat_membership=%s",
            config.storage.db_path,
            config.realtime.outbox_size,
            config.realtime.verify_chat_membership,
        )

        yield  # Application runs here

        # Shutdown
        db.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chat API",
        description="Real-time chat service: REST API plus WebSocket event delivery",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(users_router)
    app.include_router(chat_router)
    app.include_router(message_router)
    app.include_router(realtime_router)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return api_error(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return api_error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return api_error(422, f"{location}: {message}" if location else message)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _config = get_config()
    uvicorn.run(
        "app.main:app",
        host=_config.server.host,
        port=_config.server.port,
        reload=_config.server.reload,
        log_level=_config.server.log_level,
    )
