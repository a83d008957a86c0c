"""
Profile endpoints (authenticated):
- GET /profile
- POST /profile/update

The email is immutable; only first/last name can change.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.api.auth import get_current_user
from src.api.db import db_session_dep
from src.api.models import User, UserReview
from src.api.schemas import ProfileResponse, ProfileUpdateRequest

router = APIRouter(prefix="/profile", tags=["Profile"])

_MAX_NAME_CHARS = 100


def _profile(db: Session, user: User) -> ProfileResponse:
    review_count = db.execute(
        select(func.count()).select_from(UserReview).where(UserReview.user_id == user.id)
    ).scalar_one()
    return ProfileResponse(
        id=user.id,
        email=user.email,
        firstname=user.firstname or "",
        lastname=user.lastname or "",
        review_count=int(review_count),
        created_at=user.created_at,
    )


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if len(value) > _MAX_NAME_CHARS:
        raise HTTPException(
            status_code=400,
            detail={"error": "field_too_long", "message": f"Names are limited to {_MAX_NAME_CHARS} characters."},
        )
    return value


@router.get(
    "",
    response_model=ProfileResponse,
    summary="Current user's profile",
    operation_id="get_profile",
)
def get_profile(
    user: User = Depends(get_current_user),
    db: Session = Depends(db_session_dep),
) -> ProfileResponse:
    """Return the caller's profile including how many reviews it owns."""
    return _profile(db, user)


@router.post(
    "/update",
    response_model=ProfileResponse,
    summary="Update profile names",
    operation_id="update_profile",
)
def update_profile(
    req: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(db_session_dep),
) -> ProfileResponse:
    """Update first/last name; omitted fields are left unchanged."""
    firstname = _clean_name(req.firstname)
    lastname = _clean_name(req.lastname)

    row = db.get(User, user.id)
    if row is None:
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": "User not found."})
    if firstname is not None:
        row.firstname = firstname
    if lastname is not None:
        row.lastname = lastname
    row.updated_at = datetime.now(timezone.utc)
    db.flush()
    return _profile(db, row)
