"""
Review endpoints:
- POST   /reviews/upsert        (auth) create or update the caller's review of an item
- GET    /reviews/my            (auth) the caller's review of an item, or null
- DELETE /reviews/my            (auth) delete the caller's review of an item
- GET    /reviews/my/list       (auth) the caller's reviews, newest first, with media
- GET    /reviews/recent        (public) newest reviews across all users
- GET    /reviews/{review_id}   (public) a single review

The user id always comes from the bearer token, never from the request body or
query, so a caller can only touch their own reviews.
"""

from __future__ import annotations

import dataclasses
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.status import HTTP_404_NOT_FOUND

from src.api import reviews
from src.api.auth import get_current_user_id
from src.api.catalog import SpotifyCatalog, get_catalog
from src.api.db import storage_errors
from src.api.schemas import (
    MediaResponse,
    ReviewDeleteResponse,
    ReviewEnvelope,
    ReviewListItem,
    ReviewListResponse,
    ReviewResponse,
    ReviewUpsertRequest,
)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def _review_response(stored: reviews.StoredReview) -> ReviewResponse:
    return ReviewResponse(**dataclasses.asdict(stored))


def _list_item(listed: reviews.ListedReview) -> ReviewListItem:
    r = listed.review
    media = listed.media
    return ReviewListItem(
        id=r.id,
        type=r.item_type,
        oid=r.item_id,
        rating=r.rating,
        text=r.text,
        created_at=r.created_at,
        updated_at=r.updated_at,
        media=MediaResponse(title=media.title, cover_art=media.cover_art, route=media.route) if media else None,
        user_name=listed.author_name,
    )


def _page_response(page: reviews.ReviewPage) -> ReviewListResponse:
    return ReviewListResponse(items=[_list_item(i) for i in page.items], next_offset=page.next_offset)


@router.post(
    "/upsert",
    response_model=ReviewEnvelope,
    summary="Create or update my review",
    description=(
        "Writes the caller's review of a song, album or artist. Only supplied fields change. "
        "Ratings outside [0.5, 5] are ignored; text is limited to 1000 words."
    ),
    operation_id="upsert_review",
)
def upsert_review(req: ReviewUpsertRequest, user_id: str = Depends(get_current_user_id)) -> ReviewEnvelope:
    """Upsert the caller's review and return the normalized, persisted review."""
    with storage_errors():
        stored = reviews.upsert_review(user_id, req.type, req.oid, rating=req.rating, text=req.text)
    return ReviewEnvelope(review=_review_response(stored))


@router.get(
    "/my",
    response_model=ReviewEnvelope,
    summary="Get my review of an item",
    operation_id="get_my_review",
)
def get_my_review(
    type: str = Query(..., description="Item type: song, album or artist."),
    oid: str = Query(..., description="Catalog id of the item."),
    user_id: str = Depends(get_current_user_id),
) -> ReviewEnvelope:
    """Return the caller's review of an item, or null."""
    with storage_errors():
        stored = reviews.get_review(user_id, type, oid)
    return ReviewEnvelope(review=_review_response(stored) if stored else None)


@router.delete(
    "/my",
    response_model=ReviewDeleteResponse,
    summary="Delete my review of an item",
    description="Idempotent: deleting a review that does not exist returns deleted=false.",
    operation_id="delete_my_review",
)
def delete_my_review(
    type: str = Query(..., description="Item type: song, album or artist."),
    oid: str = Query(..., description="Catalog id of the item."),
    user_id: str = Depends(get_current_user_id),
) -> ReviewDeleteResponse:
    """Delete the caller's review of an item."""
    with storage_errors():
        deleted = reviews.delete_review(user_id, type, oid)
    return ReviewDeleteResponse(deleted=deleted)


@router.get(
    "/my/list",
    response_model=ReviewListResponse,
    summary="List my reviews",
    operation_id="list_my_reviews",
)
def list_my_reviews(
    limit: Optional[int] = Query(None, description="Page size (1-20, default 5)."),
    offset: Optional[int] = Query(None, description="Number of reviews to skip."),
    user_id: str = Depends(get_current_user_id),
    catalog: SpotifyCatalog = Depends(get_catalog),
) -> ReviewListResponse:
    """Page through the caller's reviews with catalog display metadata."""
    with storage_errors():
        page = reviews.list_my_reviews(user_id, catalog, limit=limit, offset=offset)
    return _page_response(page)


@router.get(
    "/recent",
    response_model=ReviewListResponse,
    summary="Recent reviews",
    description="Newest reviews from all users (public).",
    operation_id="list_recent_reviews",
)
def list_recent_reviews(
    limit: Optional[int] = Query(None, description="Page size (1-50, default 20)."),
    offset: Optional[int] = Query(None, description="Number of reviews to skip."),
    catalog: SpotifyCatalog = Depends(get_catalog),
) -> ReviewListResponse:
    """Public feed of recent reviews."""
    with storage_errors():
        page = reviews.list_recent_reviews(catalog, limit=limit, offset=offset)
    return _page_response(page)


@router.get(
    "/{review_id}",
    response_model=ReviewListItem,
    summary="Get a review",
    operation_id="get_review",
)
def get_review(review_id: uuid.UUID, catalog: SpotifyCatalog = Depends(get_catalog)) -> ReviewListItem:
    """Public view of a single review."""
    with storage_errors():
        listed = reviews.get_review_by_id(review_id, catalog)
    if listed is None:
        raise HTTPException(
            status_code=HTTP_404_NOT_FOUND,
            detail={"error": "review_not_found", "message": "Review not found."},
        )
    return _list_item(listed)
