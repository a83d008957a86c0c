from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence, Set, Tuple

import pytest

from src.api import db
from src.api.auth import create_access_token
from src.api.catalog import CatalogArtist, CatalogError, CatalogRecord, SpotifyCatalog


class FakeCatalog(SpotifyCatalog):
    """In-memory catalog; `lookup_many` chunking comes from the real client."""

    def __init__(self) -> None:
        super().__init__(client_id="test-client-id", client_secret="test-client-secret")
        self.records: Dict[Tuple[str, str], CatalogRecord] = {}
        self.failing_ids: Set[str] = set()
        self.calls: list = []

    def add_song(self, song_id: str, title: str, artists: Iterable[Tuple[str, str]]) -> None:
        self.records[("song", song_id)] = CatalogRecord(
            id=song_id,
            title=title,
            artists=[CatalogArtist(id=a_id, name=a_name) for a_id, a_name in artists],
            cover_art_url=f"https://img.example/{song_id}.jpg",
            external_url=f"https://open.spotify.com/track/{song_id}",
        )

    def add_item(self, kind: str, item_id: str, title: str) -> None:
        self.records[(kind, item_id)] = CatalogRecord(
            id=item_id,
            title=title,
            cover_art_url=f"https://img.example/{item_id}.jpg",
        )

    def lookup_batch(self, kind: str, ids: Sequence[str]) -> Dict[str, CatalogRecord]:
        self.calls.append((kind, list(ids)))
        if self.failing_ids.intersection(ids):
            raise CatalogError("catalog unavailable", status_code=503)
        return {i: self.records[(kind, i)] for i in ids if (kind, i) in self.records}


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'hearsay.db'}")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("DB_AUTO_CREATE", "true")
    db.reset_engine()
    db.init_db()
    yield
    db.reset_engine()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def client(catalog):
    from fastapi.testclient import TestClient

    from src.api.catalog import get_catalog
    from src.api.main import app

    app.dependency_overrides[get_catalog] = lambda: catalog
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id: str, email: Optional[str] = None) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id, email=email)}"}
