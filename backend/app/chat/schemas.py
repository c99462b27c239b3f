"""Pydantic schemas for chats and chat messages.

Records (``ChatRecord``, ``MessageRecord``) mirror what the store persists.
Views (``ChatView``, ``MessageView``) are what the API returns and what is
pushed over the socket; they expand user ids into user summaries.
"""
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.users.schemas import User

# Maximum attachments per message
MAX_ATTACHMENTS = 5


# =============================================================================
# Records
# =============================================================================


class Attachment(BaseModel):
    """A file attached to a message. Only the public URL is kept."""
    url: str = Field(..., min_length=1, max_length=2048, description="Public URL of the file")


class ChatRecord(BaseModel):
    """A persisted conversation.

    Attributes:
        id: Chat id. Also the key of the chat-room on the socket.
        name: Display name ("One on one chat" for direct chats).
        isGroupChat: Group chats have an admin and three or more members.
        participants: Member user ids, in join order.
        admin: User id of the creator / admin.
        lastMessage: Id of the most recent message, if any.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    isGroupChat: bool = False
    participants: List[str] = Field(default_factory=list)
    admin: Optional[str] = None
    lastMessage: Optional[str] = None
    createdAt: datetime = Field(default_factory=datetime.utcnow)
    updatedAt: datetime = Field(default_factory=datetime.utcnow)


class MessageRecord(BaseModel):
    """A persisted chat message."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat: str
    sender: str
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    createdAt: datetime = Field(default_factory=datetime.utcnow)
    updatedAt: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Views
# =============================================================================


class UserSummary(BaseModel):
    """Public subset of a user shown next to messages."""
    id: str
    username: str
    email: str
    avatar: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, username=user.username, email=user.email, avatar=user.avatar)


class MessageView(BaseModel):
    id: str
    chat: str
    sender: Optional[UserSummary] = None
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime


class ChatView(BaseModel):
    id: str
    name: str
    isGroupChat: bool
    participants: List[User] = Field(default_factory=list)
    admin: Optional[str] = None
    lastMessage: Optional[MessageView] = None
    createdAt: datetime
    updatedAt: datetime


# =============================================================================
# Request bodies
# =============================================================================


class GroupChatCreate(BaseModel):
    """Request body for creating a group chat."""
    name: str = Field(..., max_length=200)
    participants: List[str] = Field(..., min_length=2, max_length=100)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Group name is required")
        return v


class GroupChatRename(BaseModel):
    """Request body for renaming a group chat."""
    name: str = Field(..., max_length=200)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Group name is required")
        return v


class MessageCreate(BaseModel):
    """Request body for sending a message.

    Either ``content`` or at least one attachment is required; the service
    enforces that so the error uses the API envelope.
    """
    content: Optional[str] = Field(default=None, max_length=10000)
    attachments: List[Attachment] = Field(default_factory=list, max_length=MAX_ATTACHMENTS)
