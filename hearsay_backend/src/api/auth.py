"""
Authentication utilities: password hashing and JWT handling.

Clients send:
- Authorization: Bearer <token>

The token's `sub` claim is the user's stable identifier. Review endpoints only
need that identifier (`get_current_user_id`); profile endpoints load the user
row (`get_current_user`).
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select

from src.api.db import get_db_session, storage_errors
from src.api.errors import Unauthorized
from src.api.models import User

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_bearer_scheme = HTTPBearer(auto_error=False)


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET env var is required.")
    return secret


def _jwt_algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def _jwt_exp_minutes() -> int:
    try:
        return int(os.getenv("JWT_EXPIRES_MINUTES", "4320"))  # default: 3 days
    except ValueError:
        return 4320


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plain-text password."""
    return _pwd_context.hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a plain-text password against a hash; accounts without one never match."""
    if not password_hash:
        return False
    return _pwd_context.verify(password, password_hash)


# PUBLIC_INTERFACE
def create_access_token(*, user_id: str, email: Optional[str] = None) -> str:
    """
    Create a signed JWT access token.

    Token contains:
      - sub: user id (opaque string)
      - email (when known)
      - iat, exp

    Returns:
        JWT string.
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=_jwt_exp_minutes())
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, _jwt_secret(), algorithm=_jwt_algorithm())


def _decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()])
    except JWTError:
        raise Unauthorized("Invalid or expired token.")


# PUBLIC_INTERFACE
def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """
    FastAPI dependency returning the authenticated user's id from the bearer token.

    Raises Unauthorized (401) if the token is missing, invalid or has no subject.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized()

    payload = _decode_token(credentials.credentials)
    sub = payload.get("sub")
    if not sub or not isinstance(sub, str):
        raise Unauthorized("Invalid token payload.")
    return sub


# PUBLIC_INTERFACE
def get_current_user(user_id: str = Depends(get_current_user_id)) -> User:
    """
    FastAPI dependency that returns the authenticated user's profile row.

    Raises 401 if the token subject is not a known user.
    """
    try:
        owner = uuid.UUID(user_id)
    except ValueError:
        raise Unauthorized("Invalid token payload.")

    with storage_errors(), get_db_session() as db:
        user = db.execute(select(User).where(User.id == owner)).scalar_one_or_none()
        if not user:
            raise Unauthorized("User not found.")
        db.expunge(user)
        return user
