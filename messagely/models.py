"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from messagely.storage import Base


class User(Base):
    """
    Registered user of the site.

    Table: users
    Primary Key: username
    """
    __tablename__ = "users"

    username = Column(String, primary_key=True)
    password = Column(String, nullable=False)  # bcrypt hash
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    join_at = Column(DateTime(timezone=True), nullable=False)
    last_login_at = Column(DateTime(timezone=True))


class Message(Base):
    """
    Direct message between two users.

    Table: messages
    Append-only; read_at is the only column that changes after insert.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    to_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    from_user = relationship("User", foreign_keys=[from_username])
    to_user = relationship("User", foreign_keys=[to_username])
