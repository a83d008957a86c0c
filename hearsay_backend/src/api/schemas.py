"""
Pydantic models (request/response shapes) for API endpoints.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field


class AuthRegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address (unique).")
    password: str = Field(..., min_length=6, description="User password (min 6 chars).")


class AuthLoginRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address.")
    password: str = Field(..., description="User password.")


class AuthTokenResponse(BaseModel):
    token: str = Field(..., description="JWT access token.")
    token_type: str = Field("bearer", description="Token type for Authorization header.")


class ProfileResponse(BaseModel):
    id: uuid.UUID = Field(..., description="User UUID.")
    email: str = Field(..., description="User email address.")
    firstname: str = Field("", description="First name.")
    lastname: str = Field("", description="Last name.")
    review_count: int = Field(0, description="Number of reviews recorded on the profile.")
    created_at: datetime = Field(..., description="Creation timestamp.")


class ProfileUpdateRequest(BaseModel):
    firstname: Optional[str] = Field(None, description="New first name (trimmed, max 100 chars).")
    lastname: Optional[str] = Field(None, description="New last name (trimmed, max 100 chars).")


class ReviewUpsertRequest(BaseModel):
    # Loosely typed on purpose: out-of-range or malformed ratings are dropped, not rejected.
    type: Any = Field(..., description="Item type: song, album or artist.")
    oid: Any = Field(..., description="Catalog id of the reviewed item.")
    rating: Optional[Any] = Field(None, description="Rating in [0.5, 5]; snapped to 0.5 steps.")
    text: Optional[Any] = Field(None, description="Review text, at most 1000 words.")


class ReviewResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Review UUID.")
    user_id: str = Field(..., description="Owning user id.")
    item_type: str = Field(..., description="song, album or artist.")
    item_id: str = Field(..., description="Catalog id of the reviewed item.")
    rating: Optional[float] = Field(None, description="Half-point rating, null when unset.")
    text: str = Field("", description="Review text.")
    likes: int = Field(0, description="Like counter.")
    dislikes: int = Field(0, description="Dislike counter.")
    created_at: datetime = Field(..., description="Creation timestamp.")
    updated_at: datetime = Field(..., description="Last write timestamp.")


class ReviewEnvelope(BaseModel):
    review: Optional[ReviewResponse] = Field(None, description="The review, or null when none exists.")


class ReviewDeleteResponse(BaseModel):
    deleted: bool = Field(..., description="Whether a review was actually removed.")


class MediaResponse(BaseModel):
    title: str = Field(..., description="Catalog title.")
    cover_art: Optional[str] = Field(None, description="Cover image URL.")
    route: str = Field(..., description="Frontend route for the item.")


class ReviewListItem(BaseModel):
    id: uuid.UUID = Field(..., description="Review UUID.")
    type: str = Field(..., description="Item type.")
    oid: str = Field(..., description="Catalog id of the reviewed item.")
    rating: Optional[float] = Field(None, description="Half-point rating, null when unset.")
    text: str = Field("", description="Review text.")
    created_at: datetime = Field(..., description="Creation timestamp.")
    updated_at: datetime = Field(..., description="Last write timestamp.")
    media: Optional[MediaResponse] = Field(None, description="Catalog display metadata, null if unavailable.")
    user_name: Optional[str] = Field(None, description="Author display name (public views only).")


class ReviewListResponse(BaseModel):
    items: List[ReviewListItem] = Field(default_factory=list)
    next_offset: Optional[int] = Field(None, description="Offset of the next page, null when exhausted.")


class TopSongResponse(BaseModel):
    id: str = Field(..., description="Catalog track id.")
    title: str = Field(..., description="Track title.")
    artists: List[str] = Field(default_factory=list, description="Credited artist names.")
    cover_art: Optional[str] = Field(None, description="Album cover URL.")
    avg_rating: float = Field(..., description="Average rating, rounded to 2 decimals.")
    review_count: int = Field(..., description="Number of ratings behind the average.")
    external_url: Optional[str] = Field(None, description="Deep link to the provider.")
