"""
Top-rated songs for an artist.

Stored ratings know nothing about artists, so the work happens in two phases:
rank songs by average rating in SQL, then walk the ranked candidates through
the catalog in provider-sized batches and keep the ones credited to the artist.

Only the best CANDIDATE_CAP songs overall are considered. An artist whose best
rated song ranks below that cap globally gets no results; widening the scan
would make the cost depend on corpus size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func, select

from src.api.catalog import BATCH_LIMITS, CatalogError, chunked
from src.api.db import get_db_session
from src.api.errors import InvalidArtistId
from src.api.models import Review

logger = logging.getLogger(__name__)

CANDIDATE_CAP = 300
DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass(frozen=True)
class SongCandidate:
    item_id: str
    avg_half_points: float
    review_count: int


@dataclass(frozen=True)
class TopSong:
    id: str
    title: str
    artists: List[str] = field(default_factory=list)
    cover_art: Optional[str] = None
    avg_rating: float = 0.0
    review_count: int = 0
    external_url: Optional[str] = None


# PUBLIC_INTERFACE
def rank_song_candidates(cap: int = CANDIDATE_CAP) -> List[SongCandidate]:
    """Songs with at least one rating, best average first, more ratings first on ties."""
    avg_rating = func.avg(Review.rating_half_points).label("avg_rating")
    review_count = func.count(Review.id).label("review_count")
    stmt = (
        select(Review.item_id, avg_rating, review_count)
        .where(Review.item_type == "song", Review.rating_half_points.is_not(None))
        .group_by(Review.item_id)
        .order_by(avg_rating.desc(), review_count.desc(), Review.item_id)
        .limit(cap)
    )
    with get_db_session() as db:
        return [
            SongCandidate(item_id=row.item_id, avg_half_points=float(row.avg_rating), review_count=int(row.review_count))
            for row in db.execute(stmt)
        ]


# PUBLIC_INTERFACE
def top_songs_for_artist(artist_id: Optional[str], catalog, limit: Optional[int] = None) -> List[TopSong]:
    """
    Return up to `limit` of the artist's songs with the highest average rating.

    A batch whose catalog lookup fails is skipped, so the result may miss
    songs but the call itself does not fail.

    Raises:
        InvalidArtistId: if `artist_id` is blank.
    """
    if not isinstance(artist_id, str) or not artist_id.strip():
        raise InvalidArtistId()
    artist_id = artist_id.strip()
    limit = DEFAULT_LIMIT if limit is None else max(1, min(int(limit), MAX_LIMIT))

    candidates = rank_song_candidates()
    results: List[TopSong] = []
    for batch in chunked(candidates, BATCH_LIMITS["song"]):
        try:
            records = catalog.lookup_batch("song", [c.item_id for c in batch])
        except CatalogError as exc:
            logger.warning(
                "top_songs_batch_skipped: artist_id=%s size=%s status=%s exc=%s",
                artist_id,
                len(batch),
                exc.status_code,
                exc,
            )
            continue

        for candidate in batch:
            record = records.get(candidate.item_id)
            if record is None or not record.has_artist(artist_id):
                continue
            results.append(
                TopSong(
                    id=candidate.item_id,
                    title=record.title,
                    artists=[a.name for a in record.artists],
                    cover_art=record.cover_art_url,
                    avg_rating=round(candidate.avg_half_points / 2, 2),
                    review_count=candidate.review_count,
                    external_url=record.external_url,
                )
            )
            if len(results) >= limit:
                return results
    return results
