"""
Password hashing and bearer tokens.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from .config import get_settings
from .exceptions import AuthError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_token(user_id: int, secret: Optional[str] = None, expires_days: Optional[int] = None) -> str:
    settings = get_settings()
    expires = datetime.now(timezone.utc) + timedelta(days=expires_days or settings.jwt_expires_days)
    payload = {"id": user_id, "exp": expires}
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: Optional[str] = None) -> int:
    """
    Return the user id carried by a token.

    Raises:
        AuthError: If the token is expired, tampered with or has no user id
    """
    try:
        payload = jwt.decode(token, secret or get_settings().jwt_secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug(f"Rejected token: {e}")
        raise AuthError("Token is not valid")

    user_id = payload.get("id")
    if not isinstance(user_id, int):
        raise AuthError("Token is not valid")
    return user_id


def token_from_header(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    parts = (authorization or "").split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError("No token")
    return parts[1]
