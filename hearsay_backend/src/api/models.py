"""
SQLAlchemy models for users, reviews and the user -> review back-reference.

The unique constraint on reviews is the storage-level guarantee behind
"one review per (user, item)"; the upsert in `reviews.py` targets it directly.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, PrimaryKeyConstraint, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ITEM_TYPES = ("song", "album", "artist")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class User(Base):
    """User profile row.

    `password_hash` is only set for local accounts; identities issued by an
    external provider have no password.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    firstname: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lastname: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Review(Base):
    """A user's rating and/or text for one catalog item.

    `rating_half_points` holds round(rating * 2) so 4.5 is stored as 9;
    NULL means the review has no rating.
    """

    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "item_type", "item_id", name="uq_reviews_user_item"),
        Index("ix_reviews_user_updated", "user_id", "updated_at"),
        Index("ix_reviews_type_item", "item_type", "item_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_type: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)

    rating_half_points: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dislikes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserReview(Base):
    """Denormalized set of review ids owned by a user.

    No foreign keys: rows are maintained best-effort after the review write
    commits and may briefly lag behind the reviews table.
    """

    __tablename__ = "user_reviews"
    __table_args__ = (PrimaryKeyConstraint("user_id", "review_id", name="pk_user_reviews"),)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    review_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
