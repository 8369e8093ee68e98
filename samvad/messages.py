"""
Message log: creation, ordering, delivery/read state, reactions, replies
and soft deletion.

Visibility of a message to a viewer is a function of
(message.deleted, message.hidden_for, viewer):

- hidden for the viewer ("deleted for me"): not returned at all
- deleted for everyone: returned as a tombstone, content and media null
- otherwise: returned as stored

Status moves sent -> delivered -> read and never back. Every transition is
a single conditional UPDATE, so concurrent callers cannot regress it.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from samvad.contacts import has_blocked
from samvad.conversations import get_conversation, is_participant
from samvad.errors import ForbiddenError, NotFoundError, ValidationError
from samvad.metrics import record_message_created
from samvad.models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageHidden,
    MessageKind,
    MessageReaction,
    MessageReceipt,
    MessageStatus,
)
from samvad.schemas import MessageResponse, Reaction, ReadReceipt
from samvad.storage import utcnow

logger = logging.getLogger(__name__)

STATUS_ORDER = [MessageStatus.SENT.value, MessageStatus.DELIVERED.value, MessageStatus.READ.value]


# =============================================================================
# Visibility
# =============================================================================

def is_visible_to(message: Message, viewer_id: int) -> bool:
    return viewer_id not in message.hidden_for


def to_response(message: Message) -> MessageResponse:
    """Render a message, redacting content and media of a tombstone."""
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=None if message.deleted else message.content,
        kind=message.kind,
        media_url=None if message.deleted else message.media_url,
        media_type=None if message.deleted else message.media_type,
        status=message.status,
        read_by=[ReadReceipt.model_validate(receipt) for receipt in message.receipts],
        reply_to=message.reply_to_id,
        reactions=[Reaction.model_validate(reaction) for reaction in message.reactions],
        deleted=message.deleted,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def _visible_filter(conversation_id: int, viewer_id: int):
    hidden = (
        select(MessageHidden.id)
        .where(MessageHidden.message_id == Message.id, MessageHidden.user_id == viewer_id)
        .exists()
    )
    return [Message.conversation_id == conversation_id, ~hidden]


def latest_visible_message(db: Session, conversation_id: int, viewer_id: int) -> Optional[Message]:
    """Newest message of the conversation the viewer has not hidden."""
    stmt = (
        select(Message)
        .where(*_visible_filter(conversation_id, viewer_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


# =============================================================================
# Lookups
# =============================================================================

def _message_for_participant(db: Session, user_id: int, message_id: int) -> Tuple[Message, Conversation]:
    """
    Load a message together with its conversation.

    Raises:
        NotFoundError: message missing or user_id is not a participant
    """
    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    conversation = db.get(Conversation, message.conversation_id)
    if conversation is None or not is_participant(conversation, user_id):
        raise NotFoundError("Message not found")
    return message, conversation


def _advance_status(db: Session, message_id: int, target: str) -> None:
    """Move status forward to target; no-op if already there or beyond."""
    earlier = STATUS_ORDER[:STATUS_ORDER.index(target)]
    db.execute(
        update(Message)
        .where(Message.id == message_id, Message.status.in_(earlier))
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


# =============================================================================
# Operations
# =============================================================================

def list_messages(
    db: Session,
    user_id: int,
    conversation_id: int,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[list[Message], int]:
    """
    Messages of a conversation visible to user_id, oldest first.

    Ordering is created_at ASC, id ASC so messages created within the same
    clock tick keep insertion order.

    Returns:
        Tuple of (messages window, total visible messages)
    """
    get_conversation(db, user_id, conversation_id)

    conditions = _visible_filter(conversation_id, user_id)
    total = db.scalar(select(func.count(Message.id)).where(*conditions)) or 0

    stmt = (
        select(Message)
        .where(*conditions)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .offset(offset)
        .limit(limit)
    )
    messages = list(db.scalars(stmt))
    logger.debug(f"Listed {len(messages)} of {total} messages in {conversation_id} for {user_id}")
    return messages, total


def append_message(
    db: Session,
    sender_id: int,
    conversation_id: int,
    content: Optional[str] = None,
    kind: str = MessageKind.TEXT.value,
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
    reply_to: Optional[int] = None,
) -> Message:
    """
    Append a message to a conversation.

    Moves the conversation's last-message pointer forward and increments the
    unread counter of every participant except the sender.

    Raises:
        NotFoundError: sender is not a participant
        ForbiddenError: direct conversation whose other participant blocked the sender
        ValidationError: reply_to is not a message of this conversation
    """
    conversation = get_conversation(db, sender_id, conversation_id)

    if not conversation.is_group:
        recipient_id = next(uid for uid in conversation.participant_ids if uid != sender_id)
        if has_blocked(db, recipient_id, sender_id):
            logger.warning(f"Message rejected: {recipient_id} has blocked {sender_id}")
            raise ForbiddenError("You cannot send messages to this user")

    if reply_to is not None:
        target = db.get(Message, reply_to)
        if target is None or target.conversation_id != conversation_id:
            raise ValidationError("Reply target must be a message in the same conversation")

    try:
        kind = MessageKind(kind).value
    except ValueError:
        raise ValidationError(f"Invalid message kind: {kind}")
    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        kind=kind,
        media_url=media_url,
        media_type=media_type,
        reply_to_id=reply_to,
        status=MessageStatus.SENT.value,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    db.flush()

    # Pointer only moves forward; ids are assigned in insertion order
    db.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            or_(Conversation.last_message_id.is_(None), Conversation.last_message_id < message.id),
        )
        .values(last_message_id=message.id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id != sender_id,
        )
        .values(unread_count=ConversationParticipant.unread_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(message)

    record_message_created(kind)
    logger.info(f"Message appended: id={message.id}, conversation={conversation_id}, kind={kind}")
    return message


def mark_delivered(db: Session, message_id: int, user_id: Optional[int] = None) -> Message:
    """
    Advance a message to delivered.

    With user_id, the caller must be a participant; the sender's own call is
    a no-op.
    """
    if user_id is None:
        message = db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
    else:
        message, _ = _message_for_participant(db, user_id, message_id)
        if message.sender_id == user_id:
            return message

    _advance_status(db, message_id, MessageStatus.DELIVERED.value)
    db.commit()
    db.refresh(message)
    return message


def mark_read(db: Session, user_id: int, message_id: int) -> Message:
    """
    Record user_id's read receipt for a message.

    Idempotent: a second call for the same (user, message) neither adds a
    receipt nor decrements the unread counter again. The receipt insert and
    the decrement share one transaction.

    Direct conversations go to read on the recipient's receipt. Group
    messages go to delivered on the first receipt and to read once every
    other participant has one.
    """
    message, conversation = _message_for_participant(db, user_id, message_id)
    if message.sender_id == user_id:
        return message

    already_read = db.scalars(
        select(MessageReceipt.id).where(
            MessageReceipt.message_id == message_id, MessageReceipt.user_id == user_id
        )
    ).first()
    if already_read is not None:
        return message

    db.add(MessageReceipt(message_id=message_id, user_id=user_id, read_at=utcnow()))
    try:
        db.flush()
    except IntegrityError:
        # A concurrent call recorded the receipt first
        db.rollback()
        return db.get(Message, message_id)

    db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conversation.id,
            ConversationParticipant.user_id == user_id,
        )
        .values(
            unread_count=case(
                (ConversationParticipant.unread_count > 0, ConversationParticipant.unread_count - 1),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )

    if conversation.is_group:
        recipients = [uid for uid in conversation.participant_ids if uid != message.sender_id]
        readers = db.scalar(
            select(func.count(MessageReceipt.id)).where(
                MessageReceipt.message_id == message_id,
                MessageReceipt.user_id.in_(recipients),
            )
        )
        target = MessageStatus.READ if readers >= len(recipients) else MessageStatus.DELIVERED
    else:
        target = MessageStatus.READ
    _advance_status(db, message_id, target.value)

    db.commit()
    db.refresh(message)
    logger.info(f"Message read: id={message_id}, reader={user_id}, status={message.status}")
    return message


def react(db: Session, user_id: int, message_id: int, emoji: str) -> Message:
    """
    Set user_id's reaction on a message, replacing any earlier one.

    Raises:
        NotFoundError: not a participant
        ValidationError: the message was deleted for everyone
    """
    message, _ = _message_for_participant(db, user_id, message_id)
    if message.deleted:
        raise ValidationError("Cannot react to a deleted message")

    reaction = db.scalars(
        select(MessageReaction).where(
            MessageReaction.message_id == message_id, MessageReaction.user_id == user_id
        )
    ).first()
    if reaction is not None:
        reaction.emoji = emoji
    else:
        db.add(MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji))

    try:
        db.commit()
    except IntegrityError:
        # Lost an insert race with the same user's other session; overwrite theirs
        db.rollback()
        db.execute(
            update(MessageReaction)
            .where(MessageReaction.message_id == message_id, MessageReaction.user_id == user_id)
            .values(emoji=emoji)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    message = db.get(Message, message_id)
    db.refresh(message)
    logger.info(f"Reaction set: message={message_id}, user={user_id}")
    return message


def delete_for_everyone(db: Session, sender_id: int, message_id: int) -> Message:
    """
    Tombstone a message: content and media are cleared, the row stays so
    ordering and replies keep pointing at it.

    Raises:
        NotFoundError: not a participant
        ForbiddenError: caller is not the original sender
    """
    message, _ = _message_for_participant(db, sender_id, message_id)
    if message.sender_id != sender_id:
        logger.warning(f"Delete for everyone rejected: {sender_id} did not send {message_id}")
        raise ForbiddenError("Only the sender can delete a message for everyone")

    if not message.deleted:
        message.deleted = True
        message.content = None
        message.media_url = None
        message.media_type = None
        db.commit()
        db.refresh(message)
        logger.info(f"Message deleted for everyone: id={message_id}")
    return message


def delete_for_me(db: Session, user_id: int, message_id: int) -> None:
    """
    Hide a message from user_id's view only.

    Raises:
        NotFoundError: not a participant
    """
    _message_for_participant(db, user_id, message_id)

    hidden = db.scalars(
        select(MessageHidden.id).where(
            MessageHidden.message_id == message_id, MessageHidden.user_id == user_id
        )
    ).first()
    if hidden is not None:
        return

    db.add(MessageHidden(message_id=message_id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return
    logger.info(f"Message hidden: id={message_id}, user={user_id}")
