"""
Password hashing and access tokens.

- Passwords are hashed with bcrypt at BCRYPT_WORK_FACTOR rounds
- Access tokens are HS256 JWTs signed with SECRET_KEY carrying the username
"""

import logging
import time
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from messagely.config import get_settings
from messagely.errors import ApiErrorCode, InvalidRequestError, UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes of input
BCRYPT_MAX_PASSWORD_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """
    Hash a plaintext password with bcrypt.

    Args:
        password: Plaintext password

    Returns:
        bcrypt hash as a str (includes salt and cost)
    """
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_PASSWORD_BYTES:
        raise InvalidRequestError(
            message=f"password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes"
        )
    rounds = get_settings().BCRYPT_WORK_FACTOR
    logger.debug(f"Hashing password with work factor {rounds}")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """
    Check a plaintext password against a stored bcrypt hash.

    bcrypt.checkpw compares in constant time.
    """
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def create_access_token(username: str) -> str:
    """Mint a signed token identifying `username`."""
    payload = {
        "sub": username,
        "username": username,
        "iat": int(time.time()),
    }
    return jwt.encode(payload, get_settings().SECRET_KEY, algorithm=TOKEN_ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """
    Verify a token and return the username it carries.

    Returns:
        The username, or None if the token is invalid
    """
    try:
        payload = jwt.decode(token, get_settings().SECRET_KEY, algorithms=[TOKEN_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected access token: {e}")
        return None
    username = payload.get("username")
    if not isinstance(username, str) or not username:
        return None
    return username


def get_current_username(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Dependency resolving the request's bearer token to a username.

    Raises:
        UnauthorizedError: no token, or the token does not verify
    """
    if credentials is None:
        raise UnauthorizedError(message="Missing bearer token")
    username = decode_access_token(credentials.credentials)
    if username is None:
        raise UnauthorizedError(code=ApiErrorCode.E_UNAUTHENTICATED, message="Invalid token")
    return username
