"""Pydantic schemas for user records."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Application-wide user role."""
    ADMIN = "ADMIN"
    USER = "USER"


class User(BaseModel):
    """A persisted user, as exposed to other users and over the socket.

    Attributes:
        id: Opaque user id. Also the key of the user's identity-room.
        username: Unique, lower-cased handle.
        email: Contact address (not verified here).
        avatar: Optional avatar URL.
        role: ADMIN or USER.
        created_at: When the record was created (UTC).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="User ID")
    username: str = Field(..., description="Unique username")
    email: str = Field(..., description="Email address")
    avatar: Optional[str] = Field(default=None, description="Avatar URL")
    role: UserRole = Field(default=UserRole.USER, description="User role")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UserCreate(BaseModel):
    """Request body for creating a user record."""
    username: str = Field(..., min_length=3, max_length=64)
    email: str = Field(..., min_length=3, max_length=254)
    avatar: Optional[str] = Field(default=None, max_length=2048)
    role: UserRole = Field(default=UserRole.USER)
