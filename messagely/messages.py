"""
Message exchange: create, fetch with both parties, mark read, and the
access rules tying a message to its sender and recipient.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from messagely.errors import ApiErrorCode, ForbiddenError, NotFoundError
from messagely.models import Message

logger = logging.getLogger(__name__)


def create_message(db: Session, from_username: str, to_username: str, body: str) -> Message:
    """
    Store a new, unread message.

    Args:
        db: Database session
        from_username: Sender (must exist)
        to_username: Recipient (must exist)
        body: Message text

    Returns:
        The created Message row, including its generated id

    Raises:
        NotFoundError: sender or recipient does not exist
    """
    logger.info(f"Creating message: from={from_username}, to={to_username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=datetime.now(timezone.utc),
        read_at=None,
    )

    try:
        db.add(message)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Message rejected, unknown user: from={from_username}, to={to_username}")
        raise NotFoundError(
            code=ApiErrorCode.E_USER_NOT_FOUND,
            message=f"No user found: {from_username} or {to_username}",
        )

    db.refresh(message)
    logger.info(f"Message created: id={message.id}")
    return message


def get_message(db: Session, message_id: int) -> Message:
    """
    Fetch a message with from_user and to_user loaded.

    Raises:
        NotFoundError: no such message
    """
    message = (
        db.query(Message)
        .options(joinedload(Message.from_user), joinedload(Message.to_user))
        .filter(Message.id == message_id)
        .first()
    )
    logger.debug(f"Message lookup {message_id}: {'found' if message else 'not found'}")
    if message is None:
        raise NotFoundError(
            code=ApiErrorCode.E_MESSAGE_NOT_FOUND,
            message=f"No such message: {message_id}",
        )
    return message


def mark_read(db: Session, message_id: int) -> Message:
    """
    Set read_at to now.

    Marking an already-read message keeps the original read_at.

    Raises:
        NotFoundError: no such message
    """
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        raise NotFoundError(
            code=ApiErrorCode.E_MESSAGE_NOT_FOUND,
            message=f"No such message: {message_id}",
        )

    if message.read_at is not None:
        logger.debug(f"Message {message_id} already read at {message.read_at}")
        return message

    message.read_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(message)
    logger.info(f"Message {message_id} marked read")
    return message


def ensure_can_read(message: Message, username: str) -> None:
    """Only the sender or the recipient may read a message."""
    if username not in (message.from_username, message.to_username):
        logger.warning(f"User {username} denied read access to message {message.id}")
        raise ForbiddenError(message="Cannot read this message")


def ensure_can_mark_read(message: Message, username: str) -> None:
    """Only the recipient may mark a message read."""
    if username != message.to_username:
        logger.warning(f"User {username} denied mark-read on message {message.id}")
        raise ForbiddenError(message="Only the recipient can mark this message read")
