import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from samvad import contacts, conversations, messages, summaries, users
from samvad.config import settings
from samvad.logging_utils import log_request_context
from samvad.models import ConversationType
from samvad.schemas import (
    ApiResponse,
    BlockStateResponse,
    ContactAddRequest,
    ContactRenameRequest,
    ContactResponse,
    ConversationCreateRequest,
    ConversationSummary,
    GroupInfoUpdateRequest,
    MessageCreateRequest,
    MessageResponse,
    MessagesPage,
    ProfileUpdateRequest,
    ReactionRequest,
    ThemeResponse,
    ThemeUpdateRequest,
    UserCreateRequest,
    UserProfile,
)
from samvad.storage import get_db

logger = logging.getLogger(__name__)


def get_current_user_id(
    request: Request,
    x_user_id: Annotated[int | None, Header(alias="X-User-Id")] = None,
    db: Session = Depends(get_db),
) -> int:
    """
    Caller identity as supplied by the authentication layer in front of
    this service.
    """
    if x_user_id is None or users.find_user(db, x_user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authentication required"
        )
    log_request_context(request, user_id=x_user_id)
    return x_user_id


CurrentUser = Annotated[int, Depends(get_current_user_id)]
DB = Annotated[Session, Depends(get_db)]


# =============================================================================
# User Routes
# =============================================================================

users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.post("", response_model=ApiResponse[UserProfile], status_code=status.HTTP_201_CREATED)
def register_user(body: UserCreateRequest, db: DB) -> ApiResponse[UserProfile]:
    user = users.create_user(
        db,
        name=body.name,
        email=body.email,
        phone=body.phone,
        avatar=body.avatar,
        bio=body.bio,
    )
    return ApiResponse(data=UserProfile.model_validate(user))


@users_router.get("/search", response_model=ApiResponse[list[UserProfile]])
def search_users(
    user_id: CurrentUser,
    db: DB,
    q: Annotated[str | None, Query(description="Substring of name, email or phone")] = None,
) -> ApiResponse[list[UserProfile]]:
    found = users.search_users(db, user_id, q or "")
    return ApiResponse(data=[UserProfile.model_validate(user) for user in found])


@users_router.put("/profile", response_model=ApiResponse[UserProfile])
def update_profile(body: ProfileUpdateRequest, user_id: CurrentUser, db: DB) -> ApiResponse[UserProfile]:
    user = users.update_profile(db, user_id, name=body.name, phone=body.phone, bio=body.bio)
    return ApiResponse(data=UserProfile.model_validate(user))


@users_router.put("/theme", response_model=ApiResponse[ThemeResponse])
def update_theme(body: ThemeUpdateRequest, user_id: CurrentUser, db: DB) -> ApiResponse[ThemeResponse]:
    user = users.update_theme(db, user_id, theme=body.theme, dark_mode=body.dark_mode)
    return ApiResponse(data=ThemeResponse.model_validate(user))


@users_router.get("/{target_id}", response_model=ApiResponse[UserProfile])
def get_user(target_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[UserProfile]:
    return ApiResponse(data=UserProfile.model_validate(users.get_user(db, target_id)))


# =============================================================================
# Contact Routes
# =============================================================================

contacts_router = APIRouter(prefix="/api/contacts", tags=["contacts"])


@contacts_router.get("", response_model=ApiResponse[list[ContactResponse]])
def list_contacts(user_id: CurrentUser, db: DB) -> ApiResponse[list[ContactResponse]]:
    records = contacts.list_contacts(db, user_id)
    return ApiResponse(data=[contacts.to_response(contact) for contact in records])


@contacts_router.post("/add", response_model=ApiResponse[ContactResponse], status_code=status.HTTP_201_CREATED)
def add_contact(body: ContactAddRequest, user_id: CurrentUser, db: DB) -> ApiResponse[ContactResponse]:
    contact = contacts.add_contact(db, user_id, body.contact_user_id, body.nickname)
    return ApiResponse(data=contacts.to_response(contact))


@contacts_router.put("/{contact_id}/nickname", response_model=ApiResponse[ContactResponse])
def rename_contact(
    contact_id: int, body: ContactRenameRequest, user_id: CurrentUser, db: DB
) -> ApiResponse[ContactResponse]:
    contact = contacts.rename_contact(db, user_id, contact_id, body.nickname)
    return ApiResponse(data=contacts.to_response(contact))


@contacts_router.put("/{contact_id}/block", response_model=ApiResponse[BlockStateResponse])
def toggle_block(contact_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[BlockStateResponse]:
    contact = contacts.toggle_block(db, user_id, contact_id)
    return ApiResponse(
        data=BlockStateResponse(id=contact.id, blocked=contact.blocked),
        message="Contact blocked" if contact.blocked else "Contact unblocked",
    )


@contacts_router.delete("/{contact_id}", response_model=ApiResponse[None])
def remove_contact(contact_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[None]:
    contacts.remove_contact(db, user_id, contact_id)
    return ApiResponse(message="Contact deleted successfully")


# =============================================================================
# Conversation Routes
# =============================================================================

conversations_router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@conversations_router.get("", response_model=ApiResponse[list[ConversationSummary]])
def list_conversations(user_id: CurrentUser, db: DB) -> ApiResponse[list[ConversationSummary]]:
    found = conversations.list_conversations(db, user_id)
    return ApiResponse(data=summaries.summarize_all(db, found, user_id))


@conversations_router.post(
    "/create", response_model=ApiResponse[ConversationSummary], status_code=status.HTTP_201_CREATED
)
def create_conversation(
    request: Request,
    response: Response,
    body: ConversationCreateRequest,
    user_id: CurrentUser,
    db: DB,
) -> ApiResponse[ConversationSummary]:
    """
    Find-or-create a direct conversation, or create a group.

    Answers 200 when an existing direct conversation is returned.
    """
    if body.type == ConversationType.DIRECT:
        conversation, created = conversations.find_or_create_direct(db, user_id, body.participant_id)
        if not created:
            response.status_code = status.HTTP_200_OK
    else:
        conversation = conversations.create_group(db, user_id, body.participants, body.group_name)
        created = True

    log_request_context(request, conversation_id=conversation.id, result="created" if created else "existing")
    return ApiResponse(data=summaries.summarize(db, conversation, user_id))


@conversations_router.get("/{conversation_id}", response_model=ApiResponse[ConversationSummary])
def get_conversation(conversation_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[ConversationSummary]:
    conversation = conversations.get_conversation(db, user_id, conversation_id)
    return ApiResponse(data=summaries.summarize(db, conversation, user_id))


@conversations_router.put("/{conversation_id}/group", response_model=ApiResponse[ConversationSummary])
def update_group_info(
    conversation_id: int, body: GroupInfoUpdateRequest, user_id: CurrentUser, db: DB
) -> ApiResponse[ConversationSummary]:
    conversation = conversations.update_group_info(
        db,
        user_id,
        conversation_id,
        group_name=body.group_name,
        group_avatar=body.group_avatar,
    )
    return ApiResponse(data=summaries.summarize(db, conversation, user_id))


@conversations_router.delete("/{conversation_id}", response_model=ApiResponse[None])
def delete_conversation(
    request: Request, conversation_id: int, user_id: CurrentUser, db: DB
) -> ApiResponse[None]:
    conversations.delete_conversation(db, user_id, conversation_id)
    log_request_context(request, conversation_id=conversation_id, result="deleted")
    return ApiResponse(message="Conversation deleted successfully")


@conversations_router.get("/{conversation_id}/messages", response_model=ApiResponse[MessagesPage])
def list_messages(
    conversation_id: int,
    user_id: CurrentUser,
    db: DB,
    limit: Annotated[int, Query(ge=1, le=settings.MESSAGES_MAX_PAGE_LIMIT)] = settings.MESSAGES_PAGE_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ApiResponse[MessagesPage]:
    """
    Messages visible to the caller, ordered oldest first.

    Messages the caller deleted for themselves are left out; messages
    deleted for everyone come back with content and media null.
    """
    window, total = messages.list_messages(db, user_id, conversation_id, limit=limit, offset=offset)
    return ApiResponse(
        data=MessagesPage(
            data=[messages.to_response(message) for message in window],
            total=total,
            limit=limit,
            offset=offset,
        )
    )


@conversations_router.post(
    "/{conversation_id}/messages", response_model=ApiResponse[MessageResponse], status_code=status.HTTP_201_CREATED
)
def send_message(
    request: Request,
    conversation_id: int,
    body: MessageCreateRequest,
    user_id: CurrentUser,
    db: DB,
) -> ApiResponse[MessageResponse]:
    message = messages.append_message(
        db,
        user_id,
        conversation_id,
        content=body.content,
        kind=body.kind.value,
        media_url=body.media_url,
        media_type=body.media_type,
        reply_to=body.reply_to,
    )
    log_request_context(request, conversation_id=conversation_id, message_id=message.id, result="created")
    return ApiResponse(data=messages.to_response(message))


# =============================================================================
# Message Routes
# =============================================================================

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


@messages_router.put("/{message_id}/delivered", response_model=ApiResponse[MessageResponse])
def mark_delivered(message_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[MessageResponse]:
    message = messages.mark_delivered(db, message_id, user_id=user_id)
    return ApiResponse(data=messages.to_response(message))


@messages_router.put("/{message_id}/read", response_model=ApiResponse[MessageResponse])
def mark_read(message_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[MessageResponse]:
    message = messages.mark_read(db, user_id, message_id)
    return ApiResponse(data=messages.to_response(message))


@messages_router.put("/{message_id}/reaction", response_model=ApiResponse[MessageResponse])
def react(message_id: int, body: ReactionRequest, user_id: CurrentUser, db: DB) -> ApiResponse[MessageResponse]:
    message = messages.react(db, user_id, message_id, body.emoji)
    return ApiResponse(data=messages.to_response(message))


@messages_router.delete("/{message_id}/everyone", response_model=ApiResponse[MessageResponse])
def delete_for_everyone(
    request: Request, message_id: int, user_id: CurrentUser, db: DB
) -> ApiResponse[MessageResponse]:
    message = messages.delete_for_everyone(db, user_id, message_id)
    log_request_context(request, message_id=message_id, result="deleted_for_everyone")
    return ApiResponse(data=messages.to_response(message), message="Message deleted for everyone")


@messages_router.delete("/{message_id}/me", response_model=ApiResponse[None])
def delete_for_me(request: Request, message_id: int, user_id: CurrentUser, db: DB) -> ApiResponse[None]:
    messages.delete_for_me(db, user_id, message_id)
    log_request_context(request, message_id=message_id, result="deleted_for_me")
    return ApiResponse(message="Message deleted for you")
