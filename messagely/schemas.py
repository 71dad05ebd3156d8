"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

No response model exposes the password hash.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    """Body for POST /auth/register. All fields required and non-empty."""
    username: str = Field(..., min_length=1, description="Unique login name")
    password: str = Field(..., min_length=1, description="Plaintext password")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1, description="Phone number (unvalidated)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "secret",
                    "first_name": "Alice",
                    "last_name": "Liddell",
                    "phone": "+14155550100",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    """Body for POST /auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class MessageCreateRequest(BaseModel):
    """Body for POST /messages. The sender is the authenticated user."""
    to_username: str = Field(..., min_length=1, description="Recipient username")
    body: str = Field(..., min_length=1, description="Message text")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    """Access token returned by register and login."""
    token: str = Field(..., description="Bearer token")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class UserPublic(BaseModel):
    """Public profile: the fields safe to show other users."""
    username: str
    first_name: str
    last_name: str
    phone: str

    model_config = {"from_attributes": True}


class UserDetail(UserPublic):
    """A user's own record, timestamps included."""
    join_at: datetime
    last_login_at: Optional[datetime] = None


class UsersListResponse(BaseModel):
    users: list[UserPublic] = Field(default_factory=list)


class UserDetailResponse(BaseModel):
    user: UserDetail


class SentMessage(BaseModel):
    """Entry in a user's outbox, recipient hydrated."""
    id: int
    to_user: UserPublic
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReceivedMessage(BaseModel):
    """Entry in a user's inbox, sender hydrated."""
    id: int
    from_user: UserPublic
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SentMessagesResponse(BaseModel):
    messages: list[SentMessage] = Field(default_factory=list)


class ReceivedMessagesResponse(BaseModel):
    messages: list[ReceivedMessage] = Field(default_factory=list)


class MessageCreated(BaseModel):
    """A freshly stored message."""
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MessageDetail(BaseModel):
    """A message with both endpoints hydrated."""
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None
    from_user: UserPublic
    to_user: UserPublic

    model_config = {"from_attributes": True}


class MessageReadState(BaseModel):
    id: int
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MessageCreatedResponse(BaseModel):
    message: MessageCreated


class MessageDetailResponse(BaseModel):
    message: MessageDetail


class MessageReadResponse(BaseModel):
    message: MessageReadState


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
