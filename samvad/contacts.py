"""
Contact registry: the directed (owner -> contact user) relationship.

Blocking lives here too. A recipient who has blocked a sender stops that
sender's messages into their direct conversation, see
messages.append_message.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from samvad.errors import DuplicateError, NotFoundError, SelfReferenceError
from samvad.models import Contact
from samvad.schemas import ContactResponse, UserProfile
from samvad.users import get_user

logger = logging.getLogger(__name__)


def to_response(contact: Contact) -> ContactResponse:
    """Contact record enriched with the contact user's public profile."""
    return ContactResponse(
        id=contact.id,
        owner_id=contact.owner_id,
        contact_user_id=contact.contact_user_id,
        nickname=contact.nickname,
        blocked=contact.blocked,
        added_at=contact.added_at,
        contact=UserProfile.model_validate(contact.contact_user),
    )


def _get_owned(db: Session, owner_id: int, contact_id: int) -> Contact:
    contact = db.scalars(
        select(Contact).where(Contact.id == contact_id, Contact.owner_id == owner_id)
    ).first()
    if contact is None:
        raise NotFoundError("Contact not found")
    return contact


def list_contacts(db: Session, owner_id: int) -> list[Contact]:
    """Non-blocked contacts of owner_id, most recently added first."""
    stmt = (
        select(Contact)
        .where(Contact.owner_id == owner_id, Contact.blocked.is_(False))
        .order_by(Contact.added_at.desc(), Contact.id.desc())
    )
    return list(db.scalars(stmt).unique())


def add_contact(
    db: Session,
    owner_id: int,
    target_user_id: int,
    nickname: Optional[str] = None,
) -> Contact:
    """
    Create the (owner_id, target_user_id) relationship.

    The nickname defaults to the target's current display name.

    Raises:
        SelfReferenceError: target_user_id == owner_id
        NotFoundError: target user does not exist
        DuplicateError: the pair already exists
    """
    if target_user_id == owner_id:
        raise SelfReferenceError("Cannot add yourself as a contact")

    target = get_user(db, target_user_id)

    existing = db.scalars(
        select(Contact.id).where(
            Contact.owner_id == owner_id, Contact.contact_user_id == target_user_id
        )
    ).first()
    if existing is not None:
        raise DuplicateError("Contact already exists")

    contact = Contact(
        owner_id=owner_id,
        contact_user_id=target_user_id,
        nickname=nickname or target.name,
    )
    db.add(contact)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent add of the same pair
        db.rollback()
        raise DuplicateError("Contact already exists")

    db.refresh(contact)
    logger.info(f"Contact added: owner={owner_id}, contact_user={target_user_id}")
    return contact


def rename_contact(db: Session, owner_id: int, contact_id: int, nickname: str) -> Contact:
    contact = _get_owned(db, owner_id, contact_id)
    contact.nickname = nickname.strip() or None
    db.commit()
    db.refresh(contact)
    logger.info(f"Contact renamed: id={contact_id}")
    return contact


def remove_contact(db: Session, owner_id: int, contact_id: int) -> None:
    """Delete the relationship. Conversations are not touched."""
    contact = _get_owned(db, owner_id, contact_id)
    db.delete(contact)
    db.commit()
    logger.info(f"Contact removed: id={contact_id}, owner={owner_id}")


def toggle_block(db: Session, owner_id: int, contact_id: int) -> Contact:
    """Flip the blocked flag and return the updated contact."""
    contact = _get_owned(db, owner_id, contact_id)
    contact.blocked = not contact.blocked
    db.commit()
    db.refresh(contact)
    logger.info(f"Contact {'blocked' if contact.blocked else 'unblocked'}: id={contact_id}")
    return contact


def has_blocked(db: Session, owner_id: int, target_user_id: int) -> bool:
    """True if owner_id keeps target_user_id as a blocked contact."""
    blocked = db.scalars(
        select(Contact.blocked).where(
            Contact.owner_id == owner_id, Contact.contact_user_id == target_user_id
        )
    ).first()
    return bool(blocked)
