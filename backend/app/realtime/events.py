"""Socket event names and wire frames.

Frames are JSON objects in both directions::

    {"event": "<name>", "data": <payload>}
"""
from enum import Enum
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field


class ChatEvent(str, Enum):
    """Every event name that crosses the socket."""
    CONNECTED = "connected"
    DISCONNECT = "disconnect"
    JOIN_CHAT = "joinChat"
    LEAVE_CHAT = "leaveChat"
    UPDATE_GROUP_NAME = "updateGroupName"
    MESSAGE_RECEIVED = "messageReceived"
    NEW_CHAT = "newChat"
    SOCKET_ERROR = "socketError"
    STOP_TYPING = "stopTyping"
    TYPING = "typing"
    MESSAGE_DELETED = "messageDeleted"


# Events a client may send. ``disconnect`` is implicit (transport close).
INBOUND_EVENTS = frozenset({
    ChatEvent.JOIN_CHAT,
    ChatEvent.TYPING,
    ChatEvent.STOP_TYPING,
})

# Events the server may push.
OUTBOUND_EVENTS = frozenset({
    ChatEvent.CONNECTED,
    ChatEvent.SOCKET_ERROR,
    ChatEvent.NEW_CHAT,
    ChatEvent.MESSAGE_RECEIVED,
    ChatEvent.MESSAGE_DELETED,
    ChatEvent.UPDATE_GROUP_NAME,
    ChatEvent.TYPING,
    ChatEvent.STOP_TYPING,
    ChatEvent.LEAVE_CHAT,
})


class ServerEvent(BaseModel):
    """An immutable outbound (name, payload) pair."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event: ChatEvent
    data: Any = None

    def to_frame(self) -> Dict[str, Any]:
        """Encode to the JSON-ready frame sent to clients."""
        return {"event": self.event.value, "data": jsonable_encoder(self.data)}


class ClientFrame(BaseModel):
    """An inbound frame as received from a client (not yet validated)."""
    event: str = Field(..., min_length=1)
    data: Any = None
