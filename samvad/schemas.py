"""
Pydantic schemas for request/response validation.

This module contains:
- The response envelope shared by every endpoint
- Request models for incoming data validation
- Response models for users, contacts, conversations and messages
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from samvad.models import ConversationType, MessageKind, MessageStatus


T = TypeVar("T")


# =============================================================================
# Envelope
# =============================================================================

class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every response: {success, data?, message?}."""
    success: bool = Field(default=True, description="Whether the operation succeeded")
    data: Optional[T] = Field(None, description="Operation result")
    message: Optional[str] = Field(None, description="Human readable outcome")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# Users
# =============================================================================

class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=32)
    avatar: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=150)

    @field_validator("name", "phone", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class ProfileUpdateRequest(BaseModel):
    """Partial profile update; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)
    bio: Optional[str] = Field(None, max_length=150)


class ThemeUpdateRequest(BaseModel):
    theme: Optional[str] = Field(None, min_length=1, max_length=16)
    dark_mode: Optional[bool] = None


class UserProfile(BaseModel):
    """Public profile fields of a user."""
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    avatar: str = ""
    bio: str = ""
    status: str
    last_seen: datetime

    model_config = {"from_attributes": True}


class ThemeResponse(BaseModel):
    theme: str
    dark_mode: bool

    model_config = {"from_attributes": True}


# =============================================================================
# Contacts
# =============================================================================

class ContactAddRequest(BaseModel):
    contact_user_id: int = Field(..., description="User to add as a contact")
    nickname: Optional[str] = Field(None, max_length=100)


class ContactRenameRequest(BaseModel):
    nickname: str = Field(..., max_length=100)


class ContactResponse(BaseModel):
    id: int
    owner_id: int
    contact_user_id: int
    nickname: Optional[str] = None
    blocked: bool
    added_at: datetime
    contact: UserProfile = Field(..., description="Profile of the contact user")


class BlockStateResponse(BaseModel):
    id: int
    blocked: bool


# =============================================================================
# Conversations
# =============================================================================

class ConversationCreateRequest(BaseModel):
    """
    Create a conversation.

    - direct: participant_id is required; an existing conversation for the
      pair is returned instead of creating a new one
    - group: participants may be empty, the creator is always added
    """
    type: ConversationType = Field(default=ConversationType.DIRECT)
    participant_id: Optional[int] = None
    participants: list[int] = Field(default_factory=list)
    group_name: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def check_direct_target(self):
        if self.type == ConversationType.DIRECT and self.participant_id is None:
            raise ValueError("participant_id is required for a direct conversation")
        return self


class GroupInfoUpdateRequest(BaseModel):
    group_name: Optional[str] = Field(None, min_length=1, max_length=100)
    group_avatar: Optional[str] = None


# =============================================================================
# Messages
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Payload for a new message.

    Validates:
    - text messages carry non-empty content (max 4096 characters)
    - every other kind carries a media_url
    """
    content: Optional[str] = Field(None, max_length=4096)
    kind: MessageKind = Field(default=MessageKind.TEXT)
    media_url: Optional[str] = None
    media_type: Optional[str] = Field(None, max_length=100)
    reply_to: Optional[int] = Field(None, description="Message being replied to")

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_body(self):
        if self.kind == MessageKind.TEXT and not self.content:
            raise ValueError("content is required for a text message")
        if self.kind != MessageKind.TEXT and not self.media_url:
            raise ValueError(f"media_url is required for a {self.kind.value} message")
        return self


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=16)


class ReadReceipt(BaseModel):
    user_id: int
    read_at: datetime

    model_config = {"from_attributes": True}


class Reaction(BaseModel):
    user_id: int
    emoji: str

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    """
    A message as seen by one viewer.
    Content and media are null once the message is deleted for everyone.
    """
    id: int
    conversation_id: int
    sender_id: int
    content: Optional[str] = None
    kind: MessageKind
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    status: MessageStatus
    read_by: list[ReadReceipt] = Field(default_factory=list)
    reply_to: Optional[int] = None
    reactions: list[Reaction] = Field(default_factory=list)
    deleted: bool = False
    created_at: datetime
    updated_at: datetime


class MessagesPage(BaseModel):
    """
    Window of a conversation's messages visible to the caller.

    - total: visible messages in the conversation (ignoring limit/offset)
    """
    data: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)


class ConversationSummary(BaseModel):
    """Conversation as seen by one participant."""
    id: int
    type: ConversationType
    participants: list[UserProfile] = Field(default_factory=list)
    group_name: Optional[str] = None
    group_avatar: Optional[str] = None
    group_admin: Optional[int] = None
    last_message: Optional[MessageResponse] = None
    unread_count: int = Field(0, ge=0)
    created_at: datetime
    updated_at: datetime
