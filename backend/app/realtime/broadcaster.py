"""Room fan-out.

``RoomBroadcaster.broadcast`` resolves a room to a snapshot of its live
connections and queues the event on each one. Queuing never blocks, so one
connection's failure or slowness cannot hold up or fail the others. There
is no acknowledgment and no retry; connections that join after the
snapshot miss that event.

``RoomBroadcaster.emit`` is the entry point for the HTTP layer: fire and
forget, never raises.
"""
import logging
from typing import Any, Iterable, Optional, Union

from .connection import Connection
from .errors import DeliveryFailure
from .events import OUTBOUND_EVENTS, ChatEvent, ServerEvent
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

EventName = Union[ChatEvent, str]


class RoomBroadcaster:
    """Delivers events to every connection joined to a room."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    def broadcast(
        self,
        room_id: str,
        event: EventName,
        payload: Any = None,
        *,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Queue an event on every connection in ``room_id``.

        Args:
            room_id: Identity-room (user id) or chat-room (chat id).
            event: Outbound event name.
            payload: JSON-encodable payload (pydantic models are fine).
            exclude: A connection to leave out, e.g. the sender of a typing
                indicator.

        Returns:
            Number of connections the event was queued on.

        Raises:
            ValueError: If ``event`` is not an event the server may push.
        """
        event = ChatEvent(event)
        if event not in OUTBOUND_EVENTS:
            raise ValueError(f"{event.value} is not an outbound event")

        recipients = self._registry.resolve(room_id)
        if not recipients:
            logger.debug("[Broadcast] %s -> %s: no live members", event.value, room_id)
            return 0

        # Encode once; every recipient gets the same frame.
        frame = ServerEvent(event=event, data=payload).to_frame()

        queued = 0
        for connection in recipients:
            if connection is exclude:
                continue
            try:
                connection.send(frame)
            except DeliveryFailure as exc:
                logger.warning("[Broadcast] %s in room %s: %s", frame["event"], room_id, exc.reason)
                continue
            queued += 1

        logger.debug("[Broadcast] %s -> %s: queued on %d/%d", frame["event"], room_id, queued, len(recipients))
        return queued

    def emit(self, target_room_id: str, event: EventName, payload: Any = None) -> None:
        """Fire-and-forget broadcast for the HTTP layer. Never raises."""
        try:
            self.broadcast(target_room_id, event, payload)
        except Exception:
            logger.exception("[Broadcast] emit %s to %s failed", event, target_room_id)

    def emit_to_many(
        self,
        room_ids: Iterable[str],
        event: EventName,
        payload: Any = None,
        *,
        skip: Optional[str] = None,
    ) -> None:
        """``emit`` to each room in ``room_ids`` except ``skip``.

        Used to notify every participant of a chat through their
        identity-rooms, usually skipping the acting user.
        """
        for room_id in room_ids:
            if room_id == skip:
                continue
            self.emit(room_id, event, payload)
