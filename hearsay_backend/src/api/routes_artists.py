"""
Artist endpoints (public):
- GET /artists/{artist_id}/top-songs
"""

from __future__ import annotations

import dataclasses
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from src.api import top_songs
from src.api.catalog import SpotifyCatalog, get_catalog
from src.api.db import storage_errors
from src.api.schemas import TopSongResponse

router = APIRouter(prefix="/artists", tags=["Artists"])


@router.get(
    "/{artist_id}/top-songs",
    response_model=List[TopSongResponse],
    summary="Top rated songs for an artist",
    description=(
        "Songs credited to the artist with the highest average user rating. "
        "Only the 300 best-rated songs overall are considered."
    ),
    operation_id="top_songs_for_artist",
)
def top_songs_for_artist(
    artist_id: str,
    limit: Optional[int] = Query(None, description="Maximum number of songs (1-50, default 10)."),
    catalog: SpotifyCatalog = Depends(get_catalog),
) -> List[TopSongResponse]:
    """Return the artist's best rated songs, best first."""
    with storage_errors():
        songs = top_songs.top_songs_for_artist(artist_id, catalog, limit=limit)
    return [TopSongResponse(**dataclasses.asdict(s)) for s in songs]
