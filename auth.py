from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from constants import JWT_SECRET, JWT_ALGORITHM
from logging_config import get_logger
from registry import Identity

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidTokenError(Exception):
    """Raised when a session token cannot be turned into an identity."""
    pass


def decode_token(token: str) -> Identity:
    """Verify a JWT issued by the auth service and return the identity it carries."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e
    user_id = payload.get("userId")
    if not user_id:
        raise InvalidTokenError("Token payload has no userId")
    return Identity(user_id=str(user_id), role=payload.get("role"))


def identify(token: Optional[str]) -> Optional[Identity]:
    """Resolve the identity of a socket connection.

    Fails open: a missing or bad token yields an anonymous connection, never a rejection.
    """
    if not token:
        return None
    try:
        return decode_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Socket auth error, continuing unauthenticated: {e}")
        return None


def get_current_identity(creds: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> Identity:
    """FastAPI dependency for the REST routes, which unlike sockets require a valid token."""
    if not creds or not creds.credentials:
        raise HTTPException(status_code=401, detail="Missing or invalid token")
    try:
        return decode_token(creds.credentials.strip())
    except InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
