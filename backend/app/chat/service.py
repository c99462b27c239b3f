"""Chat and message operations behind the REST API.

Every mutation is persisted first, then pushed to the affected users over
the socket through their identity-rooms. Pushes are fire-and-forget: a
delivery problem never turns a successful write into an HTTP error.
"""
import logging
from typing import Dict, List, Optional, Tuple

from app.realtime.broadcaster import RoomBroadcaster
from app.realtime.events import ChatEvent
from app.users.schemas import User
from app.users.store import UserStore

from .schemas import (
    ChatRecord,
    ChatView,
    GroupChatCreate,
    MessageCreate,
    MessageRecord,
    MessageView,
    UserSummary,
)
from .store import ChatStore

logger = logging.getLogger(__name__)

ONE_ON_ONE_CHAT_NAME = "One on one chat"


class ChatError(Exception):
    """A chat operation failed in a way the caller should see.

    Attributes:
        status_code: HTTP status to answer with.
        message: Human-readable reason.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ChatService:
    """Chat use cases for an authenticated caller."""

    def __init__(self, store: ChatStore, users: UserStore, broadcaster: RoomBroadcaster) -> None:
        self._store = store
        self._users = users
        self._broadcaster = broadcaster

    # =========================================================================
    # Views
    # =========================================================================

    def chat_view(self, chat: ChatRecord) -> ChatView:
        """Expand participant ids and the last message of a chat."""
        last_message = None
        if chat.lastMessage:
            record = self._store.get_message(chat.lastMessage)
            if record is not None:
                last_message = self.message_view(record)
        return ChatView(
            id=chat.id,
            name=chat.name,
            isGroupChat=chat.isGroupChat,
            participants=self._users.get_many(chat.participants),
            admin=chat.admin,
            lastMessage=last_message,
            createdAt=chat.createdAt,
            updatedAt=chat.updatedAt,
        )

    def message_view(self, message: MessageRecord, sender: Optional[User] = None) -> MessageView:
        sender = sender or self._users.get(message.sender)
        return MessageView(
            id=message.id,
            chat=message.chat,
            sender=UserSummary.from_user(sender) if sender else None,
            content=message.content,
            attachments=message.attachments,
            createdAt=message.createdAt,
            updatedAt=message.updatedAt,
        )

    # =========================================================================
    # Chats
    # =========================================================================

    def list_chats(self, user_id: str) -> List[ChatView]:
        return [self.chat_view(chat) for chat in self._store.list_for_user(user_id)]

    def search_available_users(self, user_id: str) -> List[User]:
        return self._users.search_available(user_id)

    def create_or_get_one_on_one(self, user_id: str, receiver_id: str) -> Tuple[ChatView, bool]:
        """Return ``(chat_view, created)`` for the direct chat with a receiver.

        Raises:
            ChatError: 404 if the receiver does not exist, 400 if the caller
                tries to chat with themselves.
        """
        if self._users.get(receiver_id) is None:
            raise ChatError(404, "Receiver does not exist")
        if receiver_id == user_id:
            raise ChatError(400, "You cannot chat with yourself")

        existing = self._store.find_one_on_one(user_id, receiver_id)
        if existing is not None:
            return self.chat_view(existing), False

        chat = self._store.create_chat(
            ONE_ON_ONE_CHAT_NAME,
            participants=[user_id, receiver_id],
            admin=user_id,
        )
        view = self.chat_view(chat)
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.NEW_CHAT, view, skip=user_id)
        return view, True

    def create_group_chat(self, user_id: str, data: GroupChatCreate) -> ChatView:
        """Create a group chat administered by the caller.

        Raises:
            ChatError: 400 if the caller is listed as a participant or the
                group would have fewer than three members, 404 if a
                participant does not exist.
        """
        if user_id in data.participants:
            raise ChatError(400, "Participants array should not contain the group creator")

        members = list(dict.fromkeys(data.participants))
        if len(members) + 1 < 3:
            raise ChatError(400, "Seems like you have passed duplicate participants.")

        known = {u.id for u in self._users.get_many(members)}
        missing = [m for m in members if m not in known]
        if missing:
            raise ChatError(404, f"User does not exist: {missing[0]}")

        chat = self._store.create_chat(
            data.name,
            participants=members + [user_id],
            admin=user_id,
            is_group_chat=True,
        )
        view = self.chat_view(chat)
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.NEW_CHAT, view, skip=user_id)
        return view

    def get_group_chat(self, user_id: str, chat_id: str) -> ChatView:
        chat = self._require_group_chat(chat_id)
        if user_id not in chat.participants:
            raise ChatError(400, "You are not a part of this chat")
        return self.chat_view(chat)

    def rename_group_chat(self, user_id: str, chat_id: str, name: str) -> ChatView:
        chat = self._require_group_chat(chat_id)
        self._require_admin(chat, user_id)

        chat = self._store.rename_chat(chat_id, name)
        view = self.chat_view(chat)
        # The admin's other devices need the new name too.
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.UPDATE_GROUP_NAME, view)
        logger.info("[Chat] Group %s renamed by %s", chat_id, user_id)
        return view

    def delete_group_chat(self, user_id: str, chat_id: str) -> None:
        chat = self._require_group_chat(chat_id)
        self._require_admin(chat, user_id)

        view = self.chat_view(chat)
        self._store.delete_chat(chat_id)
        self._evict(chat_id, chat.participants)
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.LEAVE_CHAT, view, skip=user_id)

    def delete_one_on_one_chat(self, user_id: str, chat_id: str) -> None:
        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise ChatError(404, "Chat does not exist")
        if chat.isGroupChat:
            raise ChatError(400, "Use the group endpoint to delete a group chat")
        if user_id not in chat.participants:
            raise ChatError(400, "You are not a part of this chat")

        view = self.chat_view(chat)
        self._store.delete_chat(chat_id)
        self._evict(chat_id, chat.participants)
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.LEAVE_CHAT, view, skip=user_id)

    def add_participant(self, user_id: str, chat_id: str, participant_id: str) -> ChatView:
        chat = self._require_group_chat(chat_id)
        self._require_admin(chat, user_id)
        if self._users.get(participant_id) is None:
            raise ChatError(404, "User does not exist")
        if participant_id in chat.participants:
            raise ChatError(409, "Participant already in a group chat")

        chat = self._store.set_participants(chat_id, chat.participants + [participant_id])
        view = self.chat_view(chat)
        self._broadcaster.emit(participant_id, ChatEvent.NEW_CHAT, view)
        return view

    def remove_participant(self, user_id: str, chat_id: str, participant_id: str) -> ChatView:
        chat = self._require_group_chat(chat_id)
        self._require_admin(chat, user_id)
        if participant_id not in chat.participants:
            raise ChatError(400, "Participant does not exist in the group chat")

        chat = self._store.set_participants(
            chat_id, [p for p in chat.participants if p != participant_id]
        )
        self._evict(chat_id, [participant_id])
        view = self.chat_view(chat)
        self._broadcaster.emit(participant_id, ChatEvent.LEAVE_CHAT, view)
        return view

    def leave_group_chat(self, user_id: str, chat_id: str) -> ChatView:
        chat = self._require_group_chat(chat_id)
        if user_id not in chat.participants:
            raise ChatError(400, "You are not a part of this group chat")

        chat = self._store.set_participants(
            chat_id, [p for p in chat.participants if p != user_id]
        )
        self._evict(chat_id, [user_id])
        logger.info("[Chat] User %s left group %s", user_id, chat_id)
        return self.chat_view(chat)

    # =========================================================================
    # Messages
    # =========================================================================

    def list_messages(self, user_id: str, chat_id: str) -> List[MessageView]:
        chat = self._require_participant(chat_id, user_id)
        records = self._store.list_messages(chat.id)
        senders: Dict[str, User] = {
            u.id: u for u in self._users.get_many({m.sender for m in records})
        }
        return [self.message_view(m, senders.get(m.sender)) for m in records]

    def send_message(self, user: User, chat_id: str, data: MessageCreate) -> MessageView:
        """Persist a message and push ``messageReceived`` to the other members.

        Raises:
            ChatError: 400 if both content and attachments are empty or the
                sender is not a participant, 404 if the chat does not exist.
        """
        content = (data.content or "").strip()
        if not content and not data.attachments:
            raise ChatError(400, "Message content or attachment is required")

        chat = self._require_participant(chat_id, user.id)
        message = self._store.add_message(chat.id, user.id, content, data.attachments)
        self._store.set_last_message(chat.id, message.id)

        view = self.message_view(message, user)
        self._broadcaster.emit_to_many(chat.participants, ChatEvent.MESSAGE_RECEIVED, view, skip=user.id)
        return view

    def delete_message(self, user_id: str, chat_id: str, message_id: str) -> MessageView:
        chat = self._require_participant(chat_id, user_id)
        message = self._store.get_message(message_id)
        if message is None or message.chat != chat.id:
            raise ChatError(404, "Message does not exist")
        if message.sender != user_id:
            raise ChatError(403, "You are not the authorised to delete the message, you are not the sender")

        view = self.message_view(message)
        self._store.delete_message(message_id)
        if chat.lastMessage == message_id:
            latest = self._store.latest_message(chat.id)
            self._store.set_last_message(chat.id, latest.id if latest else None)

        self._broadcaster.emit_to_many(chat.participants, ChatEvent.MESSAGE_DELETED, view, skip=user_id)
        return view

    # =========================================================================
    # Guards
    # =========================================================================

    def _evict(self, chat_id: str, user_ids: List[str]) -> None:
        """Keep the live chat-room in step with persisted membership."""
        registry = self._broadcaster.registry
        for uid in user_ids:
            registry.evict(uid, chat_id)

    def _require_group_chat(self, chat_id: str) -> ChatRecord:
        chat = self._store.get_chat(chat_id)
        if chat is None or not chat.isGroupChat:
            raise ChatError(404, "Group chat does not exist")
        return chat

    def _require_participant(self, chat_id: str, user_id: str) -> ChatRecord:
        chat = self._store.get_chat(chat_id)
        if chat is None:
            raise ChatError(404, "Chat does not exist")
        if user_id not in chat.participants:
            raise ChatError(400, "You are not a part of this chat")
        return chat

    @staticmethod
    def _require_admin(chat: ChatRecord, user_id: str) -> None:
        if chat.admin != user_id:
            raise ChatError(403, "You are not an admin")
