"""
Review store: one review per (user, item type, item id).

Writes go through a single `INSERT ... ON CONFLICT DO UPDATE` keyed by the
`uq_reviews_user_item` constraint, so concurrent first-time upserts for the same
triple collapse into one row. If the insert still loses a race and raises an
IntegrityError, the write is retried once as a plain UPDATE.

Every function opens its own session through `get_db_session()`. The
user -> review back-reference is updated afterwards in a separate session and
its failures are only logged.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.api.db import dialect_name, get_db_session
from src.api.errors import EmptyReview, InvalidItemId, InvalidItemType, ReviewStoreError, TextTooLong, Unauthorized
from src.api.models import ITEM_TYPES, Review, User, UserReview

logger = logging.getLogger(__name__)

MIN_RATING = 0.5
MAX_RATING = 5.0
MAX_WORDS = 1000

LIST_DEFAULT_LIMIT = 5
LIST_MAX_LIMIT = 20
RECENT_DEFAULT_LIMIT = 20
RECENT_MAX_LIMIT = 50

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}
_KEY_COLUMNS = ["user_id", "item_type", "item_id"]


@dataclass(frozen=True)
class ReviewKey:
    user_id: str
    item_type: str
    item_id: str


@dataclass(frozen=True)
class StoredReview:
    """A persisted review with its rating back in the half-point domain."""

    id: uuid.UUID
    user_id: str
    item_type: str
    item_id: str
    rating: Optional[float]
    text: str
    likes: int
    dislikes: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Review) -> "StoredReview":
        return cls(
            id=row.id,
            user_id=row.user_id,
            item_type=row.item_type,
            item_id=row.item_id,
            rating=half_points_to_rating(row.rating_half_points),
            text=row.text or "",
            likes=row.likes or 0,
            dislikes=row.dislikes or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class MediaInfo:
    title: str
    cover_art: Optional[str]
    route: str


@dataclass(frozen=True)
class ListedReview:
    review: StoredReview
    media: Optional[MediaInfo] = None
    author_name: Optional[str] = None


@dataclass(frozen=True)
class ReviewPage:
    items: List[ListedReview]
    next_offset: Optional[int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: Optional[int], default: int, low: int, high: int) -> int:
    if value is None:
        return default
    return max(low, min(int(value), high))


# PUBLIC_INTERFACE
def normalize_rating(rating: Any) -> Optional[int]:
    """
    Snap a rating to the 0.5 grid and return it as half points (4.5 -> 9).

    Anything that is not a finite number within [0.5, 5] is treated as
    "not provided" and yields None, including 0.
    """
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return None
    try:
        value = float(rating)
    except OverflowError:
        return None
    if not math.isfinite(value) or not (MIN_RATING <= value <= MAX_RATING):
        return None
    # Halves round up: 3.25 -> 3.5.
    return int(math.floor(value * 2 + 0.5))


# PUBLIC_INTERFACE
def half_points_to_rating(half_points: Optional[int]) -> Optional[float]:
    if half_points is None:
        return None
    return half_points / 2


# PUBLIC_INTERFACE
def normalize_text(text: Any) -> Optional[str]:
    """Trim review text; None when not supplied. Raises TextTooLong past the word limit."""
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if len(trimmed.split()) > MAX_WORDS:
        raise TextTooLong(MAX_WORDS)
    return trimmed


# PUBLIC_INTERFACE
def validate_key(user_id: Optional[str], item_type: Any, item_id: Any) -> ReviewKey:
    """Check the (user, item type, item id) triple in the order errors are reported."""
    if not user_id:
        raise Unauthorized()
    if item_type not in ITEM_TYPES:
        raise InvalidItemType()
    if not isinstance(item_id, str) or not item_id.strip():
        raise InvalidItemId()
    return ReviewKey(user_id=str(user_id), item_type=item_type, item_id=item_id)


@dataclass(frozen=True)
class ReviewWrite:
    """
    Field-level payload of an upsert.

    `set_fields` are written on both branches; `insert_defaults` only fill the
    remaining columns when the row is created. The two maps never share a key.
    """

    rating_half_points: Optional[int] = None
    text: Optional[str] = None

    @classmethod
    def build(cls, rating: Any, text: Any) -> "ReviewWrite":
        half_points = normalize_rating(rating)
        normalized_text = normalize_text(text)
        if half_points is None and not normalized_text:
            raise EmptyReview()
        return cls(rating_half_points=half_points, text=normalized_text)

    def set_fields(self, now: datetime) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"updated_at": now}
        if self.rating_half_points is not None:
            fields["rating_half_points"] = self.rating_half_points
        if self.text is not None:
            fields["text"] = self.text
        return fields

    def insert_defaults(self, key: ReviewKey, now: datetime) -> Dict[str, Any]:
        defaults: Dict[str, Any] = {
            "id": uuid.uuid4(),
            "user_id": key.user_id,
            "item_type": key.item_type,
            "item_id": key.item_id,
            "likes": 0,
            "dislikes": 0,
            "created_at": now,
        }
        if self.rating_half_points is None:
            defaults["rating_half_points"] = None
        if self.text is None:
            defaults["text"] = ""
        return defaults


def _insert_for_dialect():
    name = dialect_name()
    try:
        return _INSERTS[name]
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect for upserts: {name}")


def _key_filter(key: ReviewKey):
    return (
        Review.user_id == key.user_id,
        Review.item_type == key.item_type,
        Review.item_id == key.item_id,
    )


def _upsert_statement(key: ReviewKey, write: ReviewWrite, now: datetime):
    insert = _insert_for_dialect()
    set_fields = write.set_fields(now)
    stmt = insert(Review).values(**write.insert_defaults(key, now), **set_fields)
    return stmt.on_conflict_do_update(index_elements=_KEY_COLUMNS, set_=set_fields)


def _load(db: Session, key: ReviewKey) -> Optional[StoredReview]:
    row = db.execute(
        select(Review).where(*_key_filter(key)).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    return StoredReview.from_row(row) if row is not None else None


def _retry_as_update(key: ReviewKey, write: ReviewWrite, now: datetime) -> StoredReview:
    try:
        with get_db_session() as db:
            result = db.execute(update(Review).where(*_key_filter(key)).values(**write.set_fields(now)))
            stored = _load(db, key) if result.rowcount == 1 else None
            if stored is None:
                raise ReviewStoreError("Review upsert retry matched no row.")
            return stored
    except IntegrityError as exc:
        logger.exception(
            "review_upsert_retry_failed: user_id=%s item_type=%s item_id=%s",
            key.user_id,
            key.item_type,
            key.item_id,
        )
        raise ReviewStoreError("Review upsert failed after retry.") from exc


def _owner_uuid(user_id: str) -> uuid.UUID:
    return uuid.UUID(str(user_id))


def _owner_or_none(user_id: str) -> Optional[uuid.UUID]:
    try:
        return _owner_uuid(user_id)
    except ValueError:
        logger.info("review_backref_skipped: user_id=%s reason=not_a_profile_id", user_id)
        return None


def _link_review(user_id: str, review_id: uuid.UUID) -> None:
    """Add the review to the owner's review set; never raises."""
    try:
        owner = _owner_or_none(user_id)
        if owner is None:
            return
        with get_db_session() as db:
            if db.get(User, owner) is None:
                logger.info("review_backref_skipped: user_id=%s reason=no_profile", user_id)
                return
            stmt = (
                _insert_for_dialect()(UserReview)
                .values(user_id=owner, review_id=review_id)
                .on_conflict_do_nothing()
            )
            db.execute(stmt)
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning(
            "review_backref_add_failed: user_id=%s review_id=%s exc=%s",
            user_id,
            review_id,
            exc.__class__.__name__,
        )


def _unlink_review(user_id: str, review_id: uuid.UUID) -> None:
    """Remove the review from the owner's review set; never raises."""
    try:
        owner = _owner_or_none(user_id)
        if owner is None:
            return
        with get_db_session() as db:
            db.execute(
                delete(UserReview).where(UserReview.user_id == owner, UserReview.review_id == review_id)
            )
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning(
            "review_backref_remove_failed: user_id=%s review_id=%s exc=%s",
            user_id,
            review_id,
            exc.__class__.__name__,
        )


# PUBLIC_INTERFACE
def upsert_review(
    user_id: Optional[str],
    item_type: Any,
    item_id: Any,
    rating: Any = None,
    text: Any = None,
) -> StoredReview:
    """
    Create or update the caller's review of one item.

    Only the fields supplied in this call are overwritten; `updated_at` is
    always refreshed and `created_at` is only set when the row is created.

    Raises:
        Unauthorized, InvalidItemType, InvalidItemId, TextTooLong, EmptyReview:
            validation failures, nothing is written.
        ReviewStoreError: the single retry after an insert collision failed.
    """
    key = validate_key(user_id, item_type, item_id)
    write = ReviewWrite.build(rating, text)
    now = _utcnow()

    try:
        with get_db_session() as db:
            db.execute(_upsert_statement(key, write, now))
            stored = _load(db, key)
    except IntegrityError:
        logger.warning(
            "review_upsert_race: user_id=%s item_type=%s item_id=%s",
            key.user_id,
            key.item_type,
            key.item_id,
        )
        stored = _retry_as_update(key, write, now)

    if stored is None:
        raise ReviewStoreError("Review missing after upsert.")

    logger.info(
        "review_upserted: review_id=%s user_id=%s item_type=%s item_id=%s",
        stored.id,
        key.user_id,
        key.item_type,
        key.item_id,
    )
    _link_review(key.user_id, stored.id)
    return stored


# PUBLIC_INTERFACE
def get_review(user_id: Optional[str], item_type: Any, item_id: Any) -> Optional[StoredReview]:
    """Return the caller's review of an item, or None."""
    key = validate_key(user_id, item_type, item_id)
    with get_db_session() as db:
        return _load(db, key)


# PUBLIC_INTERFACE
def delete_review(user_id: Optional[str], item_type: Any, item_id: Any) -> bool:
    """Delete the caller's review of an item. Returns False when there was nothing to delete."""
    key = validate_key(user_id, item_type, item_id)
    with get_db_session() as db:
        review_id = db.execute(select(Review.id).where(*_key_filter(key))).scalar_one_or_none()
        if review_id is None:
            return False
        result = db.execute(delete(Review).where(Review.id == review_id))
        deleted = result.rowcount == 1

    if deleted:
        logger.info("review_deleted: review_id=%s user_id=%s", review_id, key.user_id)
        _unlink_review(key.user_id, review_id)
    return deleted


# PUBLIC_INTERFACE
def resolve_media(catalog, pairs: Iterable[Tuple[str, str]]) -> Dict[Tuple[str, str], MediaInfo]:
    """
    Look up display metadata for (item_type, item_id) pairs, one batched call per kind.

    Pairs whose batch failed or that the catalog does not know are left out.
    """
    ids_by_kind: Dict[str, List[str]] = {}
    for item_type, item_id in pairs:
        ids_by_kind.setdefault(item_type, []).append(item_id)

    media: Dict[Tuple[str, str], MediaInfo] = {}
    for kind, ids in ids_by_kind.items():
        for item_id, record in catalog.lookup_many(kind, ids).items():
            media[(kind, item_id)] = MediaInfo(
                title=record.title,
                cover_art=record.cover_art_url,
                route=f"/{kind}/{item_id}",
            )
    return media


# PUBLIC_INTERFACE
def list_my_reviews(
    user_id: Optional[str],
    catalog,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> ReviewPage:
    """Page through the caller's reviews, most recently updated first."""
    if not user_id:
        raise Unauthorized()
    limit = _clamp(limit, LIST_DEFAULT_LIMIT, 1, LIST_MAX_LIMIT)
    offset = max(0, offset or 0)

    with get_db_session() as db:
        rows = db.execute(
            select(Review)
            .where(Review.user_id == str(user_id))
            .order_by(Review.updated_at.desc(), Review.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        reviews = [StoredReview.from_row(r) for r in rows]

    media = resolve_media(catalog, [(r.item_type, r.item_id) for r in reviews])
    items = [ListedReview(review=r, media=media.get((r.item_type, r.item_id))) for r in reviews]
    next_offset = None if len(items) < limit else offset + len(items)
    return ReviewPage(items=items, next_offset=next_offset)


def _author_names(db: Session, user_ids: Iterable[str]) -> Dict[str, str]:
    owners: Dict[uuid.UUID, str] = {}
    for user_id in set(user_ids):
        try:
            owners[_owner_uuid(user_id)] = user_id
        except ValueError:
            continue
    if not owners:
        return {}

    names: Dict[str, str] = {}
    for user in db.execute(select(User).where(User.id.in_(list(owners)))).scalars():
        full_name = " ".join(p for p in (user.firstname, user.lastname) if p)
        names[owners[user.id]] = full_name or user.email
    return names


# PUBLIC_INTERFACE
def list_recent_reviews(catalog, limit: Optional[int] = None, offset: Optional[int] = None) -> ReviewPage:
    """Public feed of the newest reviews across all users."""
    limit = _clamp(limit, RECENT_DEFAULT_LIMIT, 1, RECENT_MAX_LIMIT)
    offset = max(0, offset or 0)

    with get_db_session() as db:
        rows = db.execute(
            select(Review).order_by(Review.created_at.desc(), Review.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        reviews = [StoredReview.from_row(r) for r in rows]
        names = _author_names(db, [r.user_id for r in reviews])

    media = resolve_media(catalog, [(r.item_type, r.item_id) for r in reviews])
    items = [
        ListedReview(
            review=r,
            media=media.get((r.item_type, r.item_id)),
            author_name=names.get(r.user_id, "Anonymous"),
        )
        for r in reviews
    ]
    next_offset = None if len(items) < limit else offset + len(items)
    return ReviewPage(items=items, next_offset=next_offset)


# PUBLIC_INTERFACE
def get_review_by_id(review_id: uuid.UUID, catalog) -> Optional[ListedReview]:
    """Public view of a single review with its author's display name."""
    with get_db_session() as db:
        row = db.get(Review, review_id)
        if row is None:
            return None
        review = StoredReview.from_row(row)
        names = _author_names(db, [review.user_id])

    media = resolve_media(catalog, [(review.item_type, review.item_id)])
    return ListedReview(
        review=review,
        media=media.get((review.item_type, review.item_id)),
        author_name=names.get(review.user_id, "Anonymous"),
    )
