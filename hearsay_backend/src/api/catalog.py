"""
Batched metadata lookups against the Spotify Web API.

The catalog is read-only and never authoritative: callers treat every lookup as
best-effort display enrichment. One app-level access token (client-credentials
grant) is cached per process and refreshed lazily; refresh is single-flight so
concurrent requests hitting an expired token trigger one token call, not many.
"""

from __future__ import annotations

import base64
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TOKEN_URL = "https://accounts.spotify.com/api/token"
_API_BASE = "https://api.spotify.com/v1"

# Provider ceilings for the "several items" endpoints.
BATCH_LIMITS: Dict[str, int] = {"song": 50, "album": 20, "artist": 50}

_ENDPOINTS: Dict[str, tuple] = {
    "song": ("/tracks", "tracks"),
    "album": ("/albums", "albums"),
    "artist": ("/artists", "artists"),
}


class CatalogError(Exception):
    """A catalog request failed (transport error, HTTP error or rate limit)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, retry_after: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


@dataclass(frozen=True)
class CatalogArtist:
    id: str
    name: str


@dataclass(frozen=True)
class CatalogRecord:
    """Display metadata for one song, album or artist."""

    id: str
    title: str
    artists: List[CatalogArtist] = field(default_factory=list)
    cover_art_url: Optional[str] = None
    external_url: Optional[str] = None

    def has_artist(self, artist_id: str) -> bool:
        return any(a.id == artist_id for a in self.artists)


def _timeout_seconds() -> float:
    try:
        return float(os.getenv("SPOTIFY_TIMEOUT_SECONDS", "10"))
    except ValueError:
        return 10.0


def _first_image(images: Any) -> Optional[str]:
    if isinstance(images, list) and images and isinstance(images[0], dict):
        url = images[0].get("url")
        return url if isinstance(url, str) else None
    return None


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_record(kind: str, raw: Dict[str, Any]) -> CatalogRecord:
    raw_artists = raw.get("artists")
    artists = [
        CatalogArtist(id=str(a.get("id") or ""), name=str(a.get("name") or ""))
        for a in (raw_artists if isinstance(raw_artists, list) else [])
        if isinstance(a, dict)
    ]
    if kind == "song":
        cover = _first_image(_dict(raw.get("album")).get("images"))
    else:
        cover = _first_image(raw.get("images"))
    return CatalogRecord(
        id=str(raw.get("id")),
        title=str(raw.get("name") or ""),
        artists=artists,
        cover_art_url=cover,
        external_url=_str_or_none(_dict(raw.get("external_urls")).get("spotify")),
    )


def _json_object(response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise CatalogError("Spotify returned a non-JSON body", status_code=response.status_code) from exc
    if not isinstance(payload, dict):
        raise CatalogError("Spotify returned an unexpected payload", status_code=response.status_code)
    return payload


def chunked(ids: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of `ids` with at most `size` entries."""
    for start in range(0, len(ids), size):
        yield list(ids[start : start + size])


class _TokenCache:
    """Process-wide client-credentials token with explicit expiry."""

    def __init__(self) -> None:
        self.access_token: Optional[str] = None
        self.expires_at: float = 0.0
        self._lock = threading.Lock()

    def get(self, fetch) -> str:
        token = self.access_token
        if token and time.time() < self.expires_at:
            return token
        with self._lock:
            # Another thread may have refreshed while we waited.
            if self.access_token and time.time() < self.expires_at:
                return self.access_token
            token, expires_in = fetch()
            self.access_token = token
            self.expires_at = time.time() + max(0, expires_in - 30)
            return token

    def invalidate(self) -> None:
        with self._lock:
            self.access_token = None
            self.expires_at = 0.0


_token_cache = _TokenCache()


class SpotifyCatalog:
    """Client for the Spotify "several tracks/albums/artists" endpoints."""

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        market: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        token_cache: Optional[_TokenCache] = None,
    ) -> None:
        self.client_id = client_id or os.getenv("SPOTIFY_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("SPOTIFY_CLIENT_SECRET")
        self.market = market or os.getenv("SPOTIFY_MARKET") or None
        self.timeout_sec = timeout_sec if timeout_sec is not None else _timeout_seconds()
        self._tokens = token_cache or _token_cache

    def _fetch_token(self) -> tuple:
        if not self.client_id or not self.client_secret:
            raise CatalogError("Spotify credentials not configured")

        auth_payload = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        auth_header = base64.b64encode(auth_payload).decode("ascii")
        try:
            response = requests.post(
                _TOKEN_URL,
                data={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {auth_header}"},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise CatalogError(f"Spotify token request failed ({exc.__class__.__name__})") from exc
        if response.status_code != 200:
            raise CatalogError(f"Spotify token request failed ({response.status_code})", status_code=response.status_code)

        payload = _json_object(response)
        token = payload.get("access_token")
        if not token or not isinstance(token, str):
            raise CatalogError("Spotify token response missing access_token")
        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise CatalogError("Spotify token response has a bad expires_in") from exc
        logger.info("catalog_token_refreshed: expires_in=%s", payload.get("expires_in"))
        return token, expires_in

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{_API_BASE}{path}"
        for attempt in (1, 2):
            token = self._tokens.get(self._fetch_token)
            try:
                response = requests.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self.timeout_sec,
                )
            except requests.RequestException as exc:
                raise CatalogError(f"Spotify request failed ({exc.__class__.__name__})") from exc

            if response.status_code == 401 and attempt == 1:
                self._tokens.invalidate()
                continue
            if response.status_code == 429:
                raise CatalogError(
                    "Spotify rate limit hit",
                    status_code=429,
                    retry_after=response.headers.get("Retry-After"),
                )
            if response.status_code != 200:
                raise CatalogError(f"Spotify request failed ({response.status_code})", status_code=response.status_code)
            return _json_object(response)
        raise CatalogError("Spotify rejected a freshly issued token", status_code=401)

    # PUBLIC_INTERFACE
    def lookup_batch(self, kind: str, ids: Sequence[str]) -> Dict[str, CatalogRecord]:
        """
        Resolve one chunk of ids of a single kind.

        Ids the provider does not know are simply absent from the result.

        Raises:
            CatalogError: if the request fails or the chunk exceeds the provider ceiling.
        """
        if kind not in _ENDPOINTS:
            raise CatalogError(f"Unsupported catalog kind: {kind}")
        wanted = [i for i in ids if i]
        if not wanted:
            return {}
        if len(wanted) > BATCH_LIMITS[kind]:
            raise CatalogError(f"At most {BATCH_LIMITS[kind]} {kind} ids per lookup")

        path, key = _ENDPOINTS[kind]
        params: Dict[str, Any] = {"ids": ",".join(wanted)}
        if self.market:
            params["market"] = self.market

        payload = self._get(path, params)
        records: Dict[str, CatalogRecord] = {}
        items = payload.get(key) or []
        if not isinstance(items, list):
            raise CatalogError(f"Spotify response has no {key} list", status_code=200)
        for raw in items:
            # Unknown ids come back as null entries.
            if isinstance(raw, dict) and raw.get("id"):
                record = _parse_record(kind, raw)
                records[record.id] = record
        return records

    # PUBLIC_INTERFACE
    def lookup_many(self, kind: str, ids: Sequence[str]) -> Dict[str, CatalogRecord]:
        """Resolve any number of ids, chunking by the provider ceiling and skipping failed chunks."""
        records: Dict[str, CatalogRecord] = {}
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        for chunk in chunked(unique_ids, BATCH_LIMITS.get(kind, 20)):
            try:
                records.update(self.lookup_batch(kind, chunk))
            except CatalogError as exc:
                logger.warning(
                    "catalog_chunk_failed: kind=%s size=%s status=%s exc=%s",
                    kind,
                    len(chunk),
                    exc.status_code,
                    exc,
                )
        return records


_catalog: Optional[SpotifyCatalog] = None


# PUBLIC_INTERFACE
def get_catalog() -> SpotifyCatalog:
    """FastAPI dependency returning the process-wide catalog client."""
    global _catalog
    if _catalog is None:
        _catalog = SpotifyCatalog()
    return _catalog
