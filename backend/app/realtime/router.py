"""Socket endpoint and registry introspection.

Endpoints:
    WS  /ws              - Chat socket. Token via cookie, Bearer header or ?token=
    GET /realtime/stats  - Live connection, identity and room counts
"""
import logging

from fastapi import APIRouter, Depends, WebSocket

from app.api.deps import get_registry

from .registry import ConnectionRegistry
from .session import ChatSocketSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket) -> None:
    """Serve one chat connection until the client disconnects."""
    state = websocket.app.state
    session = ChatSocketSession(
        websocket,
        verifier=state.verifier,
        registry=state.registry,
        broadcaster=state.broadcaster,
        settings=state.config.realtime,
        membership_check=state.chat_store.is_participant,
        handshake_param=state.config.auth.token_query_param,
    )
    await session.run()


@router.get("/realtime/stats")
async def realtime_stats(registry: ConnectionRegistry = Depends(get_registry)) -> dict:
    return registry.stats()
