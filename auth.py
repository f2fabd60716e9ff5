from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from backend import redis_backend
from constants import ACCESS_TOKEN_EXPIRE_DAYS, JWT_ALGORITHM, JWT_SECRET
from exceptions import AuthenticationError, AuthorizationError
from logging_config import get_logger

logger = get_logger(__name__)


def create_access_token(user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {"sub": user_id, "email": email, "iat": datetime.now(timezone.utc), "exp": expire}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token") from e


def authenticate_connection(couple_id: str, user_id: Optional[str], token: Optional[str]) -> str:
    """
    Validate a websocket handshake before the connection is admitted to a room.

    Raises:
        AuthenticationError: missing parameters, bad token, or token issued to another user
        AuthorizationError: the user is not a member of the couple
        redis.RedisError: the membership store is unreachable

    Returns:
        The verified user id
    """
    if not user_id or not token:
        raise AuthenticationError("Missing userId or token")

    payload = decode_token(token)
    if payload.get("sub") != user_id:
        raise AuthenticationError("User ID does not match token")

    if not redis_backend.is_couple_member(couple_id, user_id):
        raise AuthorizationError("User does not belong to this couple")

    logger.debug(f"Handshake authorized for user {user_id} in couple {couple_id}")
    return user_id
