"""Per-connection lifecycle: handshake, inbound events, disconnect.

States:
    CONNECTING -> AUTHENTICATED -> ACTIVE -> CLOSED

    - CONNECTING -> AUTHENTICATED: the token verifier accepted the
      handshake credential. On failure one ``socketError`` is sent to the
      still-open socket, it is closed with 1008 and the session goes straight
      to CLOSED without touching the registry.
    - AUTHENTICATED -> ACTIVE: the registry admitted the connection (which
      joins the identity-room) and ``connected`` was queued.
    - ACTIVE -> ACTIVE: ``joinChat``, ``typing`` and ``stopTyping``.
    - ACTIVE -> CLOSED: transport disconnect. ``leave_all`` runs once.

There is no resume. A reconnect is a new session with no memory of the
rooms the old one had joined.

Protocol Message Types (client -> server):
    - joinChat:   data = chatId, join the chat-room
    - typing:     data = chatId, relayed to the room except the sender
    - stopTyping: data = chatId, relayed to the room except the sender
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from app.auth.tokens import Identity, TokenVerifier, Unauthenticated
from app.config import RealtimeSettings

from .broadcaster import RoomBroadcaster
from .connection import Connection, ConnectionState
from .errors import DeliveryFailure
from .events import INBOUND_EVENTS, ChatEvent, ClientFrame, ServerEvent
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

# (chat_id, user_id) -> is the user a participant of that chat?
MembershipCheck = Callable[[str, str], bool]


class ChatSocketSession:
    """Drives one WebSocket through its lifecycle.

    Args:
        websocket: The not-yet-accepted WebSocket.
        verifier: Resolves the handshake credential to an identity.
        registry: Shared connection registry.
        broadcaster: Shared broadcaster, used for typing relays.
        settings: Real-time settings (outbox size, close code, join checks).
        membership_check: Authorizes ``joinChat``. When None, or when
            ``settings.verify_chat_membership`` is off, any chat id may be
            joined.
        handshake_param: Query parameter holding a handshake token.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        verifier: TokenVerifier,
        registry: ConnectionRegistry,
        broadcaster: RoomBroadcaster,
        settings: Optional[RealtimeSettings] = None,
        membership_check: Optional[MembershipCheck] = None,
        handshake_param: str = "token",
    ) -> None:
        self._websocket = websocket
        self._verifier = verifier
        self._registry = registry
        self._broadcaster = broadcaster
        self._settings = settings or RealtimeSettings()
        self._membership_check = membership_check
        self._handshake_param = handshake_param
        self.connection = Connection(websocket, outbox_size=self._settings.outbox_size)
        self.identity: Optional[Identity] = None
        self._released = False

        self._handlers: Dict[ChatEvent, Callable[[Any], Awaitable[None]]] = {
            ChatEvent.JOIN_CHAT: self._on_join_chat,
            ChatEvent.TYPING: self._on_typing,
            ChatEvent.STOP_TYPING: self._on_stop_typing,
        }

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def run(self) -> None:
        """Serve the connection until the client goes away."""
        await self._websocket.accept()

        identity = await self.authenticate()
        if identity is None:
            return

        self.activate(identity)
        try:
            while True:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                await self.handle_raw(raw)
        finally:
            await self.close()

    # -----------------------------------------------------------------------
    # Lifecycle transitions
    # -----------------------------------------------------------------------

    async def authenticate(self) -> Optional[Identity]:
        """CONNECTING -> AUTHENTICATED, or CONNECTING -> CLOSED on rejection."""
        credential = self._verifier.extract_credential(
            cookies=self._websocket.cookies,
            headers=self._websocket.headers,
            handshake_token=self._websocket.query_params.get(self._handshake_param),
        )
        try:
            identity = self._verifier.authenticate(credential)
        except Unauthenticated as exc:
            logger.info("[WS] Handshake rejected: %s", exc.detail)
            await self.connection.send_now(
                ServerEvent(event=ChatEvent.SOCKET_ERROR, data=str(exc)).to_frame()
            )
            self.connection.mark_closed()
            if self._websocket.client_state != WebSocketState.DISCONNECTED:
                try:
                    await self._websocket.close(code=self._settings.close_code_unauthenticated)
                except (RuntimeError, OSError) as close_exc:
                    logger.debug("[WS] Close after rejection failed: %s", close_exc)
            return None

        self.identity = identity
        self.connection.state = ConnectionState.AUTHENTICATED
        return identity

    def activate(self, identity: Identity) -> None:
        """AUTHENTICATED -> ACTIVE: admit, start the writer, say hello."""
        self._registry.admit(self.connection, identity.user_id)
        self.connection.state = ConnectionState.ACTIVE
        self.connection.start()
        self.connection.send(ServerEvent(event=ChatEvent.CONNECTED).to_frame())
        logger.info("[WS] User connected. userId=%s connection=%s", identity.user_id, self.connection.id)

    async def close(self) -> None:
        """ACTIVE -> CLOSED. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        rooms = self._registry.leave_all(self.connection)
        await self.connection.close()
        logger.info(
            "[WS] User disconnected. userId=%s connection=%s rooms=%d",
            self.identity.user_id if self.identity else None,
            self.connection.id,
            len(rooms),
        )

    # -----------------------------------------------------------------------
    # Inbound events
    # -----------------------------------------------------------------------

    async def handle_raw(self, raw: Optional[str]) -> None:
        """Parse one text frame and dispatch it."""
        try:
            data = json.loads(raw or "")
        except ValueError:
            self._send_error("Invalid frame: expected JSON")
            return
        await self.handle_frame(data)

    async def handle_frame(self, data: Any) -> None:
        """Dispatch an already-decoded frame to its handler."""
        if self.connection.state is not ConnectionState.ACTIVE:
            return
        try:
            frame = ClientFrame.model_validate(data)
        except ValidationError:
            self._send_error("Invalid frame: expected {\"event\": ..., \"data\": ...}")
            return

        event = next((e for e in INBOUND_EVENTS if e.value == frame.event), None)
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("[WS] Unknown event %r from %s", frame.event, self.connection.id)
            self._send_error(f"Unknown event: {frame.event}")
            return
        await handler(frame.data)

    async def _on_join_chat(self, chat_id: Any) -> None:
        chat_id = self._require_chat_id(chat_id)
        if chat_id is None:
            return

        if (
            self._settings.verify_chat_membership
            and self._membership_check is not None
            and not self._membership_check(chat_id, self.identity.user_id)
        ):
            logger.warning("[WS] User %s tried to join chat %s without being a participant", self.identity.user_id, chat_id)
            self._send_error("You are not a part of this chat")
            return

        if self._registry.join(self.connection, chat_id):
            logger.info("[WS] User joined the chat. chatId=%s userId=%s", chat_id, self.identity.user_id)

    async def _on_typing(self, chat_id: Any) -> None:
        self._relay_to_chat(ChatEvent.TYPING, chat_id)

    async def _on_stop_typing(self, chat_id: Any) -> None:
        self._relay_to_chat(ChatEvent.STOP_TYPING, chat_id)

    def _relay_to_chat(self, event: ChatEvent, chat_id: Any) -> None:
        chat_id = self._require_chat_id(chat_id)
        if chat_id is None:
            return
        if not self._registry.is_member(self.connection, chat_id):
            logger.debug("[WS] %s from %s for unjoined chat %s ignored", event.value, self.connection.id, chat_id)
            return
        # Only the sending connection is excluded; the sender's other
        # devices in the room still see it.
        self._broadcaster.broadcast(chat_id, event, chat_id, exclude=self.connection)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _require_chat_id(self, chat_id: Any) -> Optional[str]:
        if isinstance(chat_id, str) and chat_id.strip():
            return chat_id.strip()
        self._send_error("chatId must be a non-empty string")
        return None

    def _send_error(self, message: str) -> None:
        try:
            self.connection.send(ServerEvent(event=ChatEvent.SOCKET_ERROR, data=message).to_frame())
        except DeliveryFailure as exc:
            logger.debug("[WS] Could not report error to %s: %s", self.connection.id, exc.reason)
