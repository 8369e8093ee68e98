"""
Conversation store: identity, membership, type and group administration.

Membership doubles as the authorization boundary. A caller who is not a
participant gets NotFoundError, never ForbiddenError, so the existence of
other people's conversations does not leak.
"""

import logging
from typing import Iterable, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from samvad.config import settings
from samvad.errors import ForbiddenError, NotFoundError, SelfReferenceError
from samvad.metrics import record_conversation_created
from samvad.models import (
    Conversation,
    ConversationParticipant,
    ConversationType,
    Message,
    MessageHidden,
    MessageReaction,
    MessageReceipt,
)
from samvad.storage import utcnow
from samvad.users import ensure_users_exist

logger = logging.getLogger(__name__)


def direct_key(user_id: int, other_user_id: int) -> str:
    """Order-independent key of a direct conversation's participant pair."""
    low, high = sorted((user_id, other_user_id))
    return f"{low}:{high}"


def _with_participants(conversation: Conversation, user_ids: Iterable[int]) -> Conversation:
    conversation.participants = [
        ConversationParticipant(user_id=user_id, position=position)
        for position, user_id in enumerate(user_ids)
    ]
    return conversation


def is_participant(conversation: Conversation, user_id: int) -> bool:
    return user_id in conversation.participant_ids


def list_conversations(db: Session, user_id: int) -> list[Conversation]:
    """Conversations user_id takes part in, most recently updated first."""
    member_of = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    stmt = (
        select(Conversation)
        .where(Conversation.id.in_(member_of))
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
    )
    return list(db.scalars(stmt))


def get_conversation(db: Session, user_id: int, conversation_id: int) -> Conversation:
    """
    Return the conversation if user_id is one of its participants.

    Raises:
        NotFoundError: conversation missing or user_id is not a participant
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or not is_participant(conversation, user_id):
        logger.debug(f"Conversation {conversation_id} not visible to user {user_id}")
        raise NotFoundError("Conversation not found")
    return conversation


def _find_direct(db: Session, key: str) -> Optional[Conversation]:
    return db.scalars(
        select(Conversation).where(
            Conversation.direct_key == key,
            Conversation.type == ConversationType.DIRECT.value,
        )
    ).first()


def find_or_create_direct(db: Session, user_id: int, other_user_id: int) -> Tuple[Conversation, bool]:
    """
    Find or create the direct conversation between two users.

    Keyed on the unordered pair. A concurrent creator for the same pair makes
    our insert fail on the unique direct_key; the insert is then rolled back
    and the winner's conversation is fetched instead.

    Returns:
        Tuple of (conversation, created)

    Raises:
        SelfReferenceError: both ids are the same user
        NotFoundError: other_user_id does not exist
    """
    if user_id == other_user_id:
        raise SelfReferenceError("Cannot start a conversation with yourself")

    key = direct_key(user_id, other_user_id)
    existing = _find_direct(db, key)
    if existing is not None:
        logger.debug(f"Direct conversation reused: id={existing.id}, pair={key}")
        return existing, False

    ensure_users_exist(db, [other_user_id])

    conversation = _with_participants(
        Conversation(type=ConversationType.DIRECT.value, direct_key=key),
        [user_id, other_user_id],
    )
    db.add(conversation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Direct conversation race lost for pair {key}, re-fetching")
        existing = _find_direct(db, key)
        if existing is None:
            raise
        return existing, False

    db.refresh(conversation)
    record_conversation_created(ConversationType.DIRECT.value)
    logger.info(f"Direct conversation created: id={conversation.id}, pair={key}")
    return conversation, True


def create_group(
    db: Session,
    creator_id: int,
    participant_ids: Iterable[int],
    group_name: Optional[str] = None,
) -> Conversation:
    """
    Create a group administered by creator_id.

    Participants are the creator followed by participant_ids in the given
    order, duplicates dropped.

    Raises:
        NotFoundError: one of the participant ids is not a user
    """
    members = list(dict.fromkeys([creator_id, *participant_ids]))
    ensure_users_exist(db, members)

    name = (group_name or "").strip() or settings.DEFAULT_GROUP_NAME
    conversation = _with_participants(
        Conversation(
            type=ConversationType.GROUP.value,
            group_name=name,
            group_admin_id=creator_id,
        ),
        members,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)

    record_conversation_created(ConversationType.GROUP.value)
    logger.info(f"Group created: id={conversation.id}, admin={creator_id}, members={len(members)}")
    return conversation


def update_group_info(
    db: Session,
    user_id: int,
    conversation_id: int,
    group_name: Optional[str] = None,
    group_avatar: Optional[str] = None,
) -> Conversation:
    """
    Partial update of a group's name and avatar by its admin.

    Raises:
        NotFoundError: not a participant, or the conversation is not a group
        ForbiddenError: participant but not the group admin
    """
    conversation = get_conversation(db, user_id, conversation_id)
    if not conversation.is_group:
        raise NotFoundError("Group not found")
    if conversation.group_admin_id != user_id:
        logger.warning(f"Group edit rejected: user {user_id} is not admin of {conversation_id}")
        raise ForbiddenError("Only the group admin can edit group info")

    if group_name is not None:
        conversation.group_name = group_name
    if group_avatar is not None:
        conversation.group_avatar = group_avatar
    conversation.updated_at = utcnow()

    db.commit()
    db.refresh(conversation)
    logger.info(f"Group info updated: id={conversation_id}")
    return conversation


def delete_conversation(db: Session, user_id: int, conversation_id: int) -> None:
    """
    Delete a conversation and every message in it.

    All rows go in one transaction; a failure rolls back everything.

    Raises:
        NotFoundError: not a participant
    """
    get_conversation(db, user_id, conversation_id)

    message_ids = select(Message.id).where(Message.conversation_id == conversation_id)
    statements = [
        delete(MessageReceipt).where(MessageReceipt.message_id.in_(message_ids)),
        delete(MessageReaction).where(MessageReaction.message_id.in_(message_ids)),
        delete(MessageHidden).where(MessageHidden.message_id.in_(message_ids)),
        delete(Message).where(Message.conversation_id == conversation_id),
        delete(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id
        ),
        delete(Conversation).where(Conversation.id == conversation_id),
    ]
    try:
        for statement in statements:
            db.execute(statement.execution_options(synchronize_session=False))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Failed to delete conversation {conversation_id}")
        raise

    db.expunge_all()
    logger.info(f"Conversation deleted: id={conversation_id}, by={user_id}")
