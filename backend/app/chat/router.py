"""Chat REST endpoints: one-on-one and group chat management.

All endpoints require an authenticated caller. Socket notifications
(``newChat``, ``updateGroupName``, ``leaveChat``) are sent by the service
after each write.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_chat_service, get_current_identity
from app.api.responses import api_response
from app.auth.tokens import Identity

from .schemas import GroupChatCreate, GroupChatRename
from .service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat-app/chats", tags=["chats"])


@router.get("/")
async def list_chats(
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """List the caller's chats, most recently updated first."""
    return api_response(200, service.list_chats(identity.user_id), "User chats fetched successfully!")


@router.get("/users")
async def search_available_users(
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Everyone the caller could start a chat with."""
    return api_response(200, service.search_available_users(identity.user_id), "Users fetched successfully")


@router.post("/c/{receiver_id}")
async def create_or_get_one_on_one_chat(
    receiver_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Create a direct chat with ``receiver_id``, or return the existing one.

    Returns:
        201 with the new chat, or 200 with the chat that already existed.
    """
    chat, created = service.create_or_get_one_on_one(identity.user_id, receiver_id)
    if created:
        logger.info("[chats] %s started a chat with %s: %s", identity.user_id, receiver_id, chat.id)
        return api_response(201, chat, "Chat retrieved successfully")
    return api_response(200, chat, "Chat retrieved successfully")


@router.post("/group")
async def create_group_chat(
    body: GroupChatCreate,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Create a group chat with the caller as admin.

    Args:
        body: Group name and participant ids (the caller excluded).

    Returns:
        The created group chat (201 Created).
    """
    chat = service.create_group_chat(identity.user_id, body)
    logger.info("[chats] Group %s created by %s", chat.id, identity.user_id)
    return api_response(201, chat, "Group chat created successfully")


@router.get("/group/{chat_id}")
async def get_group_chat_details(
    chat_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    return api_response(200, service.get_group_chat(identity.user_id, chat_id), "Group chat fetched successfully")


@router.patch("/group/{chat_id}")
async def rename_group_chat(
    chat_id: str,
    body: GroupChatRename,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Rename a group chat. Admin only."""
    chat = service.rename_group_chat(identity.user_id, chat_id, body.name)
    return api_response(200, chat, "Group chat name updated successfully")


@router.delete("/group/{chat_id}")
async def delete_group_chat(
    chat_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Delete a group chat and its messages. Admin only."""
    service.delete_group_chat(identity.user_id, chat_id)
    logger.info("[chats] Group %s deleted by %s", chat_id, identity.user_id)
    return api_response(200, {}, "Group chat deleted successfully")


@router.post("/group/{chat_id}/{participant_id}")
async def add_participant(
    chat_id: str,
    participant_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    chat = service.add_participant(identity.user_id, chat_id, participant_id)
    return api_response(200, chat, "Participant added successfully")


@router.delete("/group/{chat_id}/{participant_id}")
async def remove_participant(
    chat_id: str,
    participant_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    chat = service.remove_participant(identity.user_id, chat_id, participant_id)
    return api_response(200, chat, "Participant removed successfully")


@router.delete("/leave/group/{chat_id}")
async def leave_group_chat(
    chat_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    chat = service.leave_group_chat(identity.user_id, chat_id)
    return api_response(200, chat, "Left a group successfully")


@router.delete("/remove/{chat_id}")
async def delete_one_on_one_chat(
    chat_id: str,
    identity: Identity = Depends(get_current_identity),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    """Delete a direct chat and its messages."""
    service.delete_one_on_one_chat(identity.user_id, chat_id)
    return api_response(200, {}, "Chat deleted successfully")
