"""
Read-side projection of a conversation for one participant.

No state of its own: everything is derived per request from the
conversation row, its participants and the message log.
"""

from typing import Optional

from sqlalchemy.orm import Session

from samvad.messages import is_visible_to, latest_visible_message, to_response
from samvad.models import Conversation, Message
from samvad.schemas import ConversationSummary, UserProfile


def _last_message_for(db: Session, conversation: Conversation, viewer_id: int) -> Optional[Message]:
    """
    The cached last-message pointer when it is usable for this viewer,
    otherwise the newest visible message recomputed from the log.
    """
    if conversation.last_message_id is not None:
        pointed = db.get(Message, conversation.last_message_id)
        if (
            pointed is not None
            and pointed.conversation_id == conversation.id
            and is_visible_to(pointed, viewer_id)
        ):
            return pointed
    return latest_visible_message(db, conversation.id, viewer_id)


def summarize(db: Session, conversation: Conversation, viewer_id: int) -> ConversationSummary:
    unread = next(
        (p.unread_count for p in conversation.participants if p.user_id == viewer_id),
        0,
    )
    last_message = _last_message_for(db, conversation, viewer_id)

    return ConversationSummary(
        id=conversation.id,
        type=conversation.type,
        participants=[UserProfile.model_validate(p.user) for p in conversation.participants],
        group_name=conversation.group_name,
        group_avatar=conversation.group_avatar,
        group_admin=conversation.group_admin_id,
        last_message=to_response(last_message) if last_message is not None else None,
        unread_count=max(unread, 0),
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def summarize_all(db: Session, conversations: list[Conversation], viewer_id: int) -> list[ConversationSummary]:
    return [summarize(db, conversation, viewer_id) for conversation in conversations]
