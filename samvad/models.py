"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from samvad.storage import Base, utcnow


class ConversationType(str, enum.Enum):
    DIRECT = "direct"
    GROUP = "group"


class MessageKind(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    AUDIO = "audio"


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class PresenceStatus(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    AWAY = "away"


class User(Base):
    """
    Identity record referenced by every other table.

    Table: users
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(32), nullable=True)
    avatar = Column(String, nullable=False, default="")
    bio = Column(String(150), nullable=False, default="Hey there! I am using Samvad")
    status = Column(String(16), nullable=False, default=PresenceStatus.OFFLINE.value)
    last_seen = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    theme = Column(String(16), nullable=False, default="#1976D2")
    dark_mode = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Contact(Base):
    """
    Directed contact relationship owned by owner_id.

    Table: contacts
    Unique: (owner_id, contact_user_id)
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("owner_id", "contact_user_id", name="uq_contacts_owner_contact"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contact_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    nickname = Column(String(100), nullable=True)
    blocked = Column(Boolean, nullable=False, default=False)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    contact_user = relationship("User", foreign_keys=[contact_user_id], lazy="joined")


class Conversation(Base):
    """
    Direct or group conversation.

    Table: conversations
    direct_key holds the sorted participant pair ("3:7") for direct
    conversations and is NULL for groups; its unique index is what keeps
    find-or-create of a direct conversation race-safe.
    """
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(16), nullable=False, default=ConversationType.DIRECT.value)
    direct_key = Column(String(64), nullable=True, unique=True)
    group_name = Column(String(100), nullable=True)
    group_avatar = Column(String, nullable=True)
    group_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # Cached pointer, recomputable from messages
    last_message_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    participants = relationship(
        "ConversationParticipant",
        order_by="ConversationParticipant.position",
        lazy="selectin",
    )

    @property
    def participant_ids(self) -> list[int]:
        return [p.user_id for p in self.participants]

    @property
    def is_group(self) -> bool:
        return self.type == ConversationType.GROUP.value


class ConversationParticipant(Base):
    """
    Membership row; also holds the member's unread counter.

    Table: conversation_participants
    Unique: (conversation_id, user_id)
    """
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_participants_conversation_user"),
        Index("ix_participants_user", "user_id"),
    )

    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    unread_count = Column(Integer, nullable=False, default=0)

    user = relationship("User", lazy="joined")


class Message(Base):
    """
    Message in a conversation.

    Table: messages
    A message deleted for everyone is kept as a tombstone with its content
    and media cleared.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    kind = Column(String(16), nullable=False, default=MessageKind.TEXT.value)
    media_url = Column(String, nullable=True)
    media_type = Column(String(100), nullable=True)
    status = Column(String(16), nullable=False, default=MessageStatus.SENT.value)
    reply_to_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    receipts = relationship("MessageReceipt", order_by="MessageReceipt.read_at", lazy="selectin")
    reactions = relationship("MessageReaction", order_by="MessageReaction.id", lazy="selectin")
    hidden = relationship("MessageHidden", lazy="selectin")

    @property
    def hidden_for(self) -> set[int]:
        return {row.user_id for row in self.hidden}


class MessageReceipt(Base):
    """Table: message_receipts. Unique: (message_id, user_id)"""
    __tablename__ = "message_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_receipts_message_user"),
    )

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class MessageReaction(Base):
    """Table: message_reactions. Unique: (message_id, user_id)"""
    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_reactions_message_user"),
    )

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    emoji = Column(String(16), nullable=False)


class MessageHidden(Base):
    """
    Per-user "deleted for me" marker.

    Table: message_hidden
    Unique: (message_id, user_id)
    """
    __tablename__ = "message_hidden"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_hidden_message_user"),
    )

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
