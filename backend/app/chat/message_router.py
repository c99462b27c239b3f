"""Message REST endpoints.

Sending or deleting a message notifies the other participants through
their identity-rooms (``messageReceived`` / ``messageDeleted``).
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_chat_service, get_current_identity
from app.api.responses import api_response
from app.auth.tokens import Identity

from .schemas import MessageCreate
from .service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat-app/messages", tags=["messages"])


@router.get("/{chat_id}")
async def list_messages(
    chat_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """List a chat's messages, newest first.

    Args:
        chat_id: The chat to read. The caller must be a participant.
    """
    messages = service.list_messages(identity.user_id, chat_id)
    return api_response(200, messages, "Messages fetched successfully")


@router.post("/{chat_id}")
async def send_message(
    chat_id: str,
    body: MessageCreate,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Send a message to a chat.

    Args:
        chat_id: Target chat.
        body: Text content and/or attachment URLs.

    Returns:
        The stored message (201 Created).
    """
    message = service.send_message(identity.user, chat_id, body)
    logger.info("[messages] %s sent %s to chat %s", identity.user_id, message.id, chat_id)
    return api_response(201, message, "Message saved successfully")


@router.delete("/{chat_id}/{message_id}")
async def delete_message(
    chat_id: str,
    message_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Delete one of the caller's own messages."""
    message = service.delete_message(identity.user_id, chat_id, message_id)
    logger.info("[messages] %s deleted %s from chat %s", identity.user_id, message_id, chat_id)
    return api_response(200, message, "Message deleted successfully")
