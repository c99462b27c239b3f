"""A single live client connection and its outbound queue.

Each connection owns a bounded FIFO outbox drained by its own writer task.
Broadcasts only enqueue, so a slow or dead client never holds up delivery
to anyone else, and frames reach one client in the order they were queued.
"""
import asyncio
import contextlib
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from .errors import DeliveryFailure

logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_SIZE = 256


class ConnectionState(str, Enum):
    """Lifecycle of a connection.

    CONNECTING -> AUTHENTICATED -> ACTIVE -> CLOSED, or
    CONNECTING -> CLOSED when the handshake is rejected.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    CLOSED = "closed"


class Transport(Protocol):
    """The part of a WebSocket the connection needs."""

    async def send_json(self, data: Any) -> None: ...


class Connection:
    """A live bidirectional channel owned by the registry while it is open.

    Attributes:
        id: Opaque connection handle, unique per process.
        identity: The authenticated user id, set on admission.
        state: Current lifecycle state.
        delivered: Frames successfully written to the transport.
        dropped: Frames discarded (outbox full or connection closed).
    """

    def __init__(
        self,
        transport: Transport,
        *,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
        connection_id: Optional[str] = None,
    ) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.identity: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.delivered = 0
        self.dropped = 0
        self._outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, identity={self.identity!r}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.CLOSED

    @property
    def pending(self) -> int:
        """Frames queued but not yet written."""
        return self._outbox.qsize()

    def start(self) -> None:
        """Start the writer task. Must be called from a running event loop."""
        if self._writer is None and self.is_open:
            self._writer = asyncio.get_running_loop().create_task(
                self._drain(), name=f"ws-writer-{self.id}"
            )

    def send(self, frame: Dict[str, Any]) -> None:
        """Queue a frame for delivery without waiting.

        Raises:
            DeliveryFailure: If the connection is closed or the outbox is full.
        """
        if not self.is_open:
            self.dropped += 1
            raise DeliveryFailure(self.id, "connection closed")
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            raise DeliveryFailure(self.id, "outbox full") from None

    async def send_now(self, frame: Dict[str, Any]) -> bool:
        """Write a frame directly, bypassing the outbox.

        Only used before the writer starts (handshake rejection). Returns
        False instead of raising when the transport is already gone.
        """
        try:
            await self.transport.send_json(frame)
        except Exception as exc:
            logger.debug("[Conn] Direct send to %s failed: %s", self.id, exc)
            return False
        self.delivered += 1
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been written or discarded."""
        await self._outbox.join()

    async def close(self) -> None:
        """Mark closed, drop anything still queued, and stop the writer."""
        self.mark_closed()
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    def mark_closed(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self._discard_pending()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self.transport.send_json(frame)
            except Exception as exc:
                # The client went away mid-send: everything still queued is
                # never delivered.
                self._outbox.task_done()
                self.dropped += 1
                logger.debug("[Conn] %s", DeliveryFailure(self.id, str(exc) or type(exc).__name__))
                self.mark_closed()
                return
            self.delivered += 1
            self._outbox.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self.dropped += 1
            self._outbox.task_done()
