"""
Identity lookups used by the messaging core.

The core only reads users (existence checks and public profiles); the
create/update operations here exist so the service can run on its own.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from samvad.config import settings
from samvad.errors import DuplicateError, NotFoundError, ValidationError
from samvad.models import User

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: int) -> User:
    """Return the user or raise NotFoundError."""
    user = db.get(User, user_id)
    if user is None:
        logger.debug(f"User lookup: {user_id} not found")
        raise NotFoundError("User not found")
    return user


def find_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def ensure_users_exist(db: Session, user_ids: Iterable[int]) -> None:
    """Raise NotFoundError naming the first id with no user."""
    wanted = set(user_ids)
    if not wanted:
        return
    found = set(db.scalars(select(User.id).where(User.id.in_(wanted))))
    missing = sorted(wanted - found)
    if missing:
        raise NotFoundError(f"User {missing[0]} not found")


def create_user(
    db: Session,
    name: str,
    email: str,
    phone: Optional[str] = None,
    avatar: Optional[str] = None,
    bio: Optional[str] = None,
) -> User:
    """
    Register a user profile.

    Raises:
        DuplicateError: the email is already registered
    """
    user = User(name=name, email=email.lower(), phone=phone)
    if avatar is not None:
        user.avatar = avatar
    if bio is not None:
        user.bio = bio

    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate email on registration: {email}")
        raise DuplicateError("Email is already registered")

    db.refresh(user)
    logger.info(f"User created: id={user.id}")
    return user


def search_users(db: Session, requester_id: int, query: str) -> list[User]:
    """
    Case-insensitive substring match on name, email or phone.
    The requester is never part of the result.
    """
    query = (query or "").strip()
    if not query:
        raise ValidationError("Search query is required")

    pattern = f"%{query}%"
    stmt = (
        select(User)
        .where(User.id != requester_id)
        .where(or_(User.name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern)))
        .order_by(User.name.asc(), User.id.asc())
        .limit(settings.USER_SEARCH_LIMIT)
    )
    users = list(db.scalars(stmt))
    logger.debug(f"User search by {requester_id}: {len(users)} matches")
    return users


def update_profile(
    db: Session,
    user_id: int,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    bio: Optional[str] = None,
) -> User:
    user = get_user(db, user_id)
    if name:
        user.name = name
    if phone:
        user.phone = phone
    if bio:
        user.bio = bio
    db.commit()
    db.refresh(user)
    logger.info(f"Profile updated: id={user_id}")
    return user


def update_theme(
    db: Session,
    user_id: int,
    theme: Optional[str] = None,
    dark_mode: Optional[bool] = None,
) -> User:
    user = get_user(db, user_id)
    if theme:
        user.theme = theme
    if dark_mode is not None:
        user.dark_mode = dark_mode
    db.commit()
    db.refresh(user)
    return user
