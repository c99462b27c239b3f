"""FastAPI dependencies.

Process-scoped components live on ``app.state`` (set up in the lifespan of
``app.main.create_app``) and reach handlers through these functions, never
through module globals. ``HTTPConnection`` makes them usable from both HTTP
and WebSocket routes.
"""
from typing import Optional

from fastapi import Depends, HTTPException
from starlette.requests import HTTPConnection

from app.auth.tokens import Identity, TokenVerifier, Unauthenticated
from app.chat.service import ChatService
from app.config import AppConfig
from app.realtime.registry import ConnectionRegistry
from app.users.store import UserStore


def get_app_config(conn: HTTPConnection) -> AppConfig:
    return conn.app.state.config


def get_registry(conn: HTTPConnection) -> ConnectionRegistry:
    return conn.app.state.registry


def get_verifier(conn: HTTPConnection) -> TokenVerifier:
    return conn.app.state.verifier


def get_user_store(conn: HTTPConnection) -> UserStore:
    return conn.app.state.user_store


def get_chat_service(conn: HTTPConnection) -> ChatService:
    return conn.app.state.chat_service


def _credential(conn: HTTPConnection, verifier: TokenVerifier) -> Optional[str]:
    return verifier.extract_credential(cookies=conn.cookies, headers=conn.headers)


async def get_current_identity(
    conn: HTTPConnection,
    verifier: TokenVerifier = Depends(get_verifier),
) -> Identity:
    """Require an authenticated caller (HTTP 401 otherwise).

    Must stay ``async def``: the user lookup has to run on the event loop
    thread, with every other use of the shared DuckDB connection.
    """
    try:
        return verifier.authenticate(_credential(conn, verifier))
    except Unauthenticated as exc:
        raise HTTPException(status_code=401, detail="Unauthorized request") from exc
