"""
User directory: registration, credentials, profiles and per-user mailboxes.

All functions take the caller's database session; none hold state.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from messagely.errors import ApiErrorCode, ConflictError, NotFoundError
from messagely.models import Message, User
from messagely.security import hash_password, verify_password

logger = logging.getLogger(__name__)


def _user_not_found(username: str) -> NotFoundError:
    return NotFoundError(code=ApiErrorCode.E_USER_NOT_FOUND, message=f"No user found: {username}")


def register(
    db: Session,
    username: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str,
) -> User:
    """
    Register a new user.

    The password is stored as a bcrypt hash. join_at and last_login_at
    both start at the current server time.

    Returns:
        The created User row (password holds the hash)

    Raises:
        ConflictError: username is already taken
    """
    logger.info(f"Registering user: {username}")

    existing = db.query(User.username).filter(User.username == username).first()
    if existing is not None:
        logger.info(f"Username already taken: {username}")
        raise ConflictError(message=f"Username already taken: {username}")

    now = datetime.now(timezone.utc)
    user = User(
        username=username,
        password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        join_at=now,
        last_login_at=now,
    )

    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Username already taken: {username}")
        raise ConflictError(message=f"Username already taken: {username}")

    db.refresh(user)
    logger.info(f"User registered: {username}")
    return user


def authenticate(db: Session, username: str, password: str) -> bool:
    """
    Is this username/password valid?

    An unknown username and a wrong password both return False.
    """
    hashed = db.query(User.password).filter(User.username == username).scalar()
    if hashed is None:
        logger.info(f"Authentication failed, no such user: {username}")
        return False

    is_valid = verify_password(password, hashed)
    logger.info(f"Authentication for {username}: {'valid' if is_valid else 'invalid'}")
    return is_valid


def update_login_timestamp(db: Session, username: str) -> User:
    """
    Set last_login_at to now.

    Raises:
        NotFoundError: no such user
    """
    user = db.query(User).filter(User.username == username).first()
    if user is None:
        raise _user_not_found(username)

    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    logger.debug(f"Updated last_login_at for {username}: {user.last_login_at}")
    return user


def all_users(db: Session) -> list[User]:
    """Every user; callers expose only the public profile fields."""
    users = db.query(User).order_by(User.username.asc()).all()
    logger.debug(f"Listed {len(users)} users")
    return users


def get_user(db: Session, username: str) -> User:
    """
    Get a user by username.

    Raises:
        NotFoundError: no such user
    """
    user = db.query(User).filter(User.username == username).first()
    if user is None:
        raise _user_not_found(username)
    return user


def messages_from(db: Session, username: str) -> list[Message]:
    """
    Messages sent by `username`, oldest first, each with its recipient loaded.
    """
    messages = (
        db.query(Message)
        .options(joinedload(Message.to_user))
        .filter(Message.from_username == username)
        .order_by(Message.id.asc())
        .all()
    )
    logger.debug(f"Found {len(messages)} messages from {username}")
    return messages


def messages_to(db: Session, username: str) -> list[Message]:
    """
    Messages received by `username`, oldest first, each with its sender loaded.
    """
    messages = (
        db.query(Message)
        .options(joinedload(Message.from_user))
        .filter(Message.to_username == username)
        .order_by(Message.id.asc())
        .all()
    )
    logger.debug(f"Found {len(messages)} messages to {username}")
    return messages
