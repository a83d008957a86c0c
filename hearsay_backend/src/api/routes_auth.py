"""
Local account endpoints:
- POST /auth/register
- POST /auth/login

Both return { token, token_type }. Registering an email that already belongs to
an identity without a password attaches the password to that identity.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.auth import create_access_token, hash_password, verify_password
from src.api.db import get_db_session, storage_errors
from src.api.models import User
from src.api.schemas import AuthLoginRequest, AuthRegisterRequest, AuthTokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _email_in_use() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"error": "email_in_use", "message": "Email is already registered."},
    )


def _create_user(db: Session, email: str, password: str, now: datetime) -> str:
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password),
        firstname="",
        lastname="",
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        raise _email_in_use()

    logger.info("account_created: user_id=%s", user.id)
    return str(user.id)


@router.post(
    "/register",
    response_model=AuthTokenResponse,
    summary="Register a local account",
    description="Creates a user (or adds a password to an existing passwordless one) and returns a JWT token.",
    operation_id="register_user",
)
def register(req: AuthRegisterRequest) -> AuthTokenResponse:
    """Register a new user with email/password."""
    email = req.email.lower().strip()
    now = datetime.now(timezone.utc)

    with storage_errors(), get_db_session() as db:
        existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if existing is None:
            user_id = _create_user(db, email, req.password, now)
        elif existing.password_hash:
            raise _email_in_use()
        else:
            existing.password_hash = hash_password(req.password)
            existing.updated_at = now
            user_id = str(existing.id)
            logger.info("account_linked: user_id=%s", user_id)

    return AuthTokenResponse(token=create_access_token(user_id=user_id, email=email))


@router.post(
    "/login",
    response_model=AuthTokenResponse,
    summary="Login",
    description="Validates credentials and returns a JWT token.",
    operation_id="login_user",
)
def login(req: AuthLoginRequest) -> AuthTokenResponse:
    """Login an existing user."""
    email = req.email.lower().strip()

    with storage_errors(), get_db_session() as db:
        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not user or not verify_password(req.password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": "invalid_credentials", "message": "Invalid email or password."},
            )
        user_id = str(user.id)

    return AuthTokenResponse(token=create_access_token(user_id=user_id, email=email))
