from __future__ import annotations

import itertools
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import OperationalError

from src.api import reviews
from src.api.db import get_db_session
from src.api.errors import (
    EmptyReview,
    InvalidItemId,
    InvalidItemType,
    ReviewStoreError,
    TextTooLong,
    Unauthorized,
)
from src.api.models import Review, User, UserReview


def _review_count() -> int:
    with get_db_session() as db:
        return db.execute(select(func.count()).select_from(Review)).scalar_one()


def _create_user() -> str:
    user_id = uuid.uuid4()
    now = datetime.now(timezone.utc)
    with get_db_session() as db:
        db.add(User(id=user_id, email=f"{user_id.hex}@example.com", created_at=now, updated_at=now))
    return str(user_id)


def _backrefs(user_id: str) -> list:
    with get_db_session() as db:
        return list(
            db.execute(select(UserReview.review_id).where(UserReview.user_id == uuid.UUID(user_id))).scalars()
        )


@pytest.fixture
def ticking_clock(monkeypatch):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    counter = itertools.count()
    monkeypatch.setattr(reviews, "_utcnow", lambda: start + timedelta(seconds=next(counter)))


@pytest.mark.parametrize(
    "raw, expected",
    [
        (3.3, 7),
        (3.2, 6),
        (3.25, 7),
        (0.5, 1),
        (5, 10),
        (4.5, 9),
        (0.2, None),
        (5.7, None),
        (0, None),
        (float("nan"), None),
        (float("inf"), None),
        (True, None),
        ("4", None),
        (None, None),
        (10**400, None),
        (-(10**400), None),
    ],
)
def test_normalize_rating(raw, expected):
    assert reviews.normalize_rating(raw) == expected


def test_rating_is_quantized_on_write():
    assert reviews.upsert_review("u1", "song", "s1", rating=3.3).rating == 3.5
    assert reviews.upsert_review("u1", "song", "s2", rating=3.2).rating == 3.0


def test_out_of_range_rating_is_dropped_not_rejected():
    stored = reviews.upsert_review("u1", "song", "s1", rating=5.7, text="still counts")

    assert stored.rating is None
    assert stored.text == "still counts"


def test_round_trip():
    reviews.upsert_review("u1", "album", "a1", rating=4.5, text="great")

    fetched = reviews.get_review("u1", "album", "a1")

    assert fetched is not None
    assert fetched.rating == 4.5
    assert fetched.text == "great"
    with get_db_session() as db:
        assert db.execute(select(Review.rating_half_points)).scalar_one() == 9


def test_text_is_trimmed():
    assert reviews.upsert_review("u1", "song", "s1", text="  loud and clear \n").text == "loud and clear"


def test_word_limit_boundary():
    exactly = " ".join(["word"] * 1000)
    stored = reviews.upsert_review("u1", "song", "s1", text=exactly)
    assert len(stored.text.split()) == 1000

    with pytest.raises(TextTooLong) as excinfo:
        reviews.upsert_review("u1", "song", "s2", text=exactly + " more")
    assert excinfo.value.max_words == 1000
    assert reviews.get_review("u1", "song", "s2") is None


@pytest.mark.parametrize("rating, text", [(None, None), (None, "   "), (0, ""), (7, None)])
def test_empty_review_is_rejected_and_not_stored(rating, text):
    with pytest.raises(EmptyReview):
        reviews.upsert_review("u1", "song", "s1", rating=rating, text=text)
    assert _review_count() == 0


def test_validation_order():
    with pytest.raises(Unauthorized):
        reviews.upsert_review(None, "playlist", "", rating=4)
    with pytest.raises(Unauthorized):
        reviews.upsert_review("", "song", "s1", rating=4)
    with pytest.raises(InvalidItemType):
        reviews.upsert_review("u1", "playlist", "", rating=4)
    with pytest.raises(InvalidItemId):
        reviews.upsert_review("u1", "song", "   ", rating=4)
    with pytest.raises(InvalidItemId):
        reviews.upsert_review("u1", "song", 42, rating=4)
    with pytest.raises(InvalidItemType):
        reviews.get_review("u1", "track", "s1")
    with pytest.raises(InvalidItemId):
        reviews.delete_review("u1", "song", "")
    assert _review_count() == 0


def test_unauthorized_reads_and_deletes():
    reviews.upsert_review("u1", "song", "s1", rating=4)

    with pytest.raises(Unauthorized):
        reviews.get_review(None, "song", "s1")
    with pytest.raises(Unauthorized):
        reviews.delete_review(None, "song", "s1")
    with pytest.raises(Unauthorized):
        reviews.list_my_reviews(None, catalog=None)
    assert _review_count() == 1


def test_upsert_updates_only_supplied_fields(ticking_clock):
    first = reviews.upsert_review("u1", "song", "s1", rating=4, text="first take")
    second = reviews.upsert_review("u1", "song", "s1", text="second take")
    third = reviews.upsert_review("u1", "song", "s1", rating=2.5)

    assert second.id == first.id == third.id
    assert second.rating == 4.0
    assert third.text == "second take"
    assert third.rating == 2.5
    assert third.created_at == first.created_at
    assert third.updated_at > second.updated_at > first.updated_at
    assert _review_count() == 1


def test_empty_text_with_rating_clears_text():
    reviews.upsert_review("u1", "song", "s1", rating=4, text="to be removed")

    stored = reviews.upsert_review("u1", "song", "s1", rating=4, text="")

    assert stored.text == ""
    assert stored.rating == 4.0


def test_text_only_review_has_no_rating():
    stored = reviews.upsert_review("u1", "artist", "ar1", text="underrated")

    assert stored.rating is None
    with get_db_session() as db:
        assert db.execute(select(Review.rating_half_points)).scalar_one() is None


def test_reviews_are_scoped_per_user_and_item_type():
    reviews.upsert_review("u1", "song", "x1", rating=4)
    reviews.upsert_review("u2", "song", "x1", rating=2)
    reviews.upsert_review("u1", "album", "x1", rating=1)

    assert _review_count() == 3
    assert reviews.get_review("u2", "song", "x1").rating == 2.0
    assert reviews.get_review("u1", "artist", "x1") is None


def test_concurrent_upserts_leave_a_single_review():
    ratings = [0.5 * n for n in range(1, 11)] * 2

    def submit(rating):
        return reviews.upsert_review("u1", "song", "contested", rating=rating, text=f"take {rating}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(submit, ratings))

    assert _review_count() == 1
    assert len({r.id for r in results}) == 1
    final = reviews.get_review("u1", "song", "contested")
    assert final.rating in ratings
    assert final.text.startswith("take ")


def _plain_insert(key, write, now):
    return insert(Review).values(**write.insert_defaults(key, now), **write.set_fields(now))


def test_lost_insert_race_is_retried_as_update(monkeypatch, caplog):
    monkeypatch.setattr(reviews, "_upsert_statement", _plain_insert)
    first = reviews.upsert_review("u1", "song", "s1", rating=3)

    with caplog.at_level(logging.WARNING, logger="src.api.reviews"):
        second = reviews.upsert_review("u1", "song", "s1", rating=5, text="changed my mind")

    assert second.id == first.id
    assert second.rating == 5.0
    assert second.text == "changed my mind"
    assert _review_count() == 1
    assert "review_upsert_race" in caplog.text


def test_retry_that_cannot_update_is_a_hard_failure(monkeypatch):
    existing = reviews.upsert_review("u1", "song", "s1", rating=3)

    def colliding_insert(key, write, now):
        values = {**write.insert_defaults(key, now), **write.set_fields(now), "id": existing.id}
        return insert(Review).values(**values)

    monkeypatch.setattr(reviews, "_upsert_statement", colliding_insert)

    with pytest.raises(ReviewStoreError):
        reviews.upsert_review("u1", "song", "s2", rating=4)
    assert _review_count() == 1


def test_delete_is_idempotent():
    reviews.upsert_review("u1", "song", "s1", rating=4)

    assert reviews.delete_review("u1", "song", "s1") is True
    assert reviews.delete_review("u1", "song", "s1") is False
    assert reviews.get_review("u1", "song", "s1") is None


def test_delete_never_touches_other_users_reviews():
    reviews.upsert_review("owner", "song", "s1", rating=4)

    assert reviews.delete_review("intruder", "song", "s1") is False
    assert reviews.get_review("owner", "song", "s1") is not None


def test_back_reference_follows_create_and_delete():
    user_id = _create_user()

    stored = reviews.upsert_review(user_id, "song", "s1", rating=4)
    reviews.upsert_review(user_id, "song", "s1", rating=5)
    assert _backrefs(user_id) == [stored.id]

    reviews.delete_review(user_id, "song", "s1")
    assert _backrefs(user_id) == []


def test_back_reference_skipped_for_identities_without_profile():
    stored = reviews.upsert_review("google-oauth2|12345", "song", "s1", rating=4)

    assert stored.rating == 4.0
    assert reviews.delete_review("google-oauth2|12345", "song", "s1") is True


def test_back_reference_failure_does_not_fail_the_write(monkeypatch, caplog):
    user_id = _create_user()

    def broken(_user_id):
        raise OperationalError("INSERT INTO user_reviews", {}, Exception("database is down"))

    monkeypatch.setattr(reviews, "_owner_uuid", broken)

    with caplog.at_level(logging.WARNING, logger="src.api.reviews"):
        stored = reviews.upsert_review(user_id, "song", "s1", rating=4)
        deleted = reviews.delete_review(user_id, "song", "s1")

    assert stored.rating == 4.0
    assert deleted is True
    assert "review_backref_add_failed" in caplog.text
    assert "review_backref_remove_failed" in caplog.text


def test_list_my_reviews_orders_and_paginates(ticking_clock, catalog):
    for n in range(1, 4):
        reviews.upsert_review("u1", "song", f"s{n}", rating=n)
    reviews.upsert_review("u2", "song", "s9", rating=5)
    # Touching s1 again moves it to the front.
    reviews.upsert_review("u1", "song", "s1", text="revisited")

    page = reviews.list_my_reviews("u1", catalog, limit=2, offset=0)
    assert [i.review.item_id for i in page.items] == ["s1", "s3"]
    assert page.next_offset == 2

    page = reviews.list_my_reviews("u1", catalog, limit=2, offset=2)
    assert [i.review.item_id for i in page.items] == ["s2"]
    assert page.next_offset is None


def test_list_my_reviews_clamps_limit_and_offset(catalog):
    for n in range(25):
        reviews.upsert_review("u1", "song", f"s{n}", rating=3)

    assert len(reviews.list_my_reviews("u1", catalog).items) == 5
    assert len(reviews.list_my_reviews("u1", catalog, limit=500).items) == 20
    assert len(reviews.list_my_reviews("u1", catalog, limit=0, offset=-3).items) == 1


def test_list_my_reviews_attaches_media_and_tolerates_failed_batches(catalog):
    catalog.add_song("s1", "Song One", [("ar1", "Artist")])
    catalog.add_item("album", "al1", "Album One")
    catalog.add_item("artist", "ar1", "Artist")
    catalog.failing_ids.add("ar1")
    reviews.upsert_review("u1", "song", "s1", rating=4)
    reviews.upsert_review("u1", "album", "al1", rating=4)
    reviews.upsert_review("u1", "artist", "ar1", rating=4)

    page = reviews.list_my_reviews("u1", catalog, limit=10)
    media = {i.review.item_id: i.media for i in page.items}

    assert media["s1"].title == "Song One"
    assert media["s1"].route == "/song/s1"
    assert media["al1"].cover_art == "https://img.example/al1.jpg"
    assert media["ar1"] is None


def test_huge_integer_rating_is_dropped():
    stored = reviews.upsert_review("u1", "song", "s1", rating=10**400, text="hi")

    assert stored.rating is None
    assert stored.text == "hi"
