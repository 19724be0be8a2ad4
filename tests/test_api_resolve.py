from __future__ import annotations

import importlib
import sqlite3
import sys

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from db.resolved_tracks import ResolvedTrackStore
from engine.errors import MetadataExtractionFailed, NoConfidentLinksFound, PersistenceError, UnsupportedUrlError
from metadata.types import CoreMeta, Platform, Resolution, ResolveHit

SEED_URL = "https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b"


def _resolution() -> Resolution:
    return Resolution(
        core=CoreMeta(title="Blinding Lights", artist="The Weeknd", isrc="USUG11904206"),
        links=[
            ResolveHit(
                platform=Platform.SPOTIFY,
                platform_id="0VjIjW4GlUZAMYd2vXMi3b",
                url_web=SEED_URL,
                url_app="spotify:track:0VjIjW4GlUZAMYd2vXMi3b",
                confidence=1.0,
            )
        ],
        source="spotify_track",
    )


class _FakeResolver:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[dict] = []

    async def resolve(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.result


def _build_client(monkeypatch, tmp_path, resolver: _FakeResolver):
    sys.modules.pop("api.main", None)
    module = importlib.import_module("api.main")
    module.app.router.on_startup.clear()
    module.app.router.on_shutdown.clear()
    store = ResolvedTrackStore(str(tmp_path / "api.sqlite"))
    module.app.state.resolver = resolver
    module.app.state.store = store
    module.app.state.api_tokens = {"secret-token": "user-1"}
    return TestClient(module.app), store


def test_resolve_returns_track_and_links(monkeypatch, tmp_path) -> None:
    resolver = _FakeResolver(result=_resolution())
    client, store = _build_client(monkeypatch, tmp_path, resolver)

    response = client.post("/api/resolve", json={"seed_url": SEED_URL, "storefront": "gb"})

    assert response.status_code == 200
    body = response.json()
    assert body["core"]["isrc"] == "USUG11904206"
    assert body["links"][0]["platform"] == "spotify"
    assert body["links"][0]["confidence"] == 1.0
    assert store.get_track(body["track_id"]) is not None
    assert resolver.calls[0]["seed_url"] == SEED_URL
    assert resolver.calls[0]["storefront"] == "gb"


def test_confirmed_track_returns_note_without_links(monkeypatch, tmp_path) -> None:
    client, store = _build_client(monkeypatch, tmp_path, _FakeResolver(result=_resolution()))
    first = client.post("/api/resolve", json={"seed_url": SEED_URL}).json()
    store.set_user_confirmed(first["track_id"])

    response = client.post("/api/resolve", json={"seed_url": SEED_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["note"] == "track confirmed; not overwriting"
    assert body["track_id"] == first["track_id"]
    assert body["links"] == []


@pytest.mark.parametrize(
    "error, status, code",
    [
        (UnsupportedUrlError("seed_url is not a canonical track URL"), 400, "unsupported_url"),
        (MetadataExtractionFailed("could not establish title and artist"), 422, "metadata_extraction_failed"),
        (NoConfidentLinksFound("no platform produced a confident match"), 424, "no_confident_links"),
    ],
)
def test_resolution_errors_map_to_status_codes(monkeypatch, tmp_path, error, status, code) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver(error=error))

    response = client.post("/api/resolve", json={"seed_url": SEED_URL, "overwrite": True})

    assert response.status_code == status
    body = response.json()
    assert body["error"] == code
    assert body["received_keys"] == ["overwrite", "seed_url"]


def test_structured_input_requires_title_and_artist(monkeypatch, tmp_path) -> None:
    resolver = _FakeResolver(result=_resolution())
    client, _store = _build_client(monkeypatch, tmp_path, resolver)

    response = client.post("/api/resolve", json={"title": "Blinding Lights"})

    assert response.status_code == 400
    assert response.json()["error"] == "missing_input"
    assert resolver.calls == []


def test_structured_input_is_passed_as_core_meta(monkeypatch, tmp_path) -> None:
    resolver = _FakeResolver(result=_resolution())
    client, _store = _build_client(monkeypatch, tmp_path, resolver)

    response = client.post(
        "/api/resolve",
        json={"title": "Blinding Lights", "artist": "The Weeknd", "duration_ms": 200040},
    )

    assert response.status_code == 200
    meta = resolver.calls[0]["meta"]
    assert meta.title == "Blinding Lights"
    assert meta.duration_ms == 200040


def test_persistence_failure_returns_500(monkeypatch, tmp_path) -> None:
    client, store = _build_client(monkeypatch, tmp_path, _FakeResolver(result=_resolution()))

    def broken_upsert(core, links, *, overwrite=False):
        raise PersistenceError("failed to store resolved track")

    monkeypatch.setattr(store, "upsert_resolved", broken_upsert)

    response = client.post("/api/resolve", json={"seed_url": SEED_URL})

    assert response.status_code == 500
    assert response.json()["error"] == "persistence_failed"


def test_valid_bearer_token_claims_ownership(monkeypatch, tmp_path) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver(result=_resolution()))

    response = client.post(
        "/api/resolve",
        json={"seed_url": SEED_URL},
        headers={"Authorization": "Bearer secret-token"},
    )

    assert response.status_code == 200
    conn = sqlite3.connect(str(tmp_path / "api.sqlite"))
    try:
        claims = conn.execute("SELECT track_id, user_id FROM track_claims").fetchall()
    finally:
        conn.close()
    assert claims == [(response.json()["track_id"], "user-1")]


def test_invalid_bearer_token_does_not_affect_result(monkeypatch, tmp_path) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver(result=_resolution()))

    response = client.post(
        "/api/resolve",
        json={"seed_url": SEED_URL},
        headers={"Authorization": "Bearer wrong-token"},
    )

    assert response.status_code == 200
    conn = sqlite3.connect(str(tmp_path / "api.sqlite"))
    try:
        assert conn.execute("SELECT COUNT(*) FROM track_claims").fetchone()[0] == 0
    finally:
        conn.close()


def test_parse_api_tokens_ignores_malformed_entries(monkeypatch) -> None:
    sys.modules.pop("api.main", None)
    module = importlib.import_module("api.main")

    assert module._parse_api_tokens("a:user-a, bad ,:x,b:user-b") == {"a": "user-a", "b": "user-b"}


def test_health(monkeypatch, tmp_path) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver())

    assert client.get("/api/health").json() == {"status": "ok"}


def test_unreachable_store_returns_structured_500(monkeypatch, tmp_path) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver(result=_resolution()))
    client.app.state.store = ResolvedTrackStore(str(tmp_path / "missing_dir" / "db.sqlite"))

    response = client.post("/api/resolve", json={"seed_url": SEED_URL})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "persistence_failed"
    assert body["received_keys"] == ["seed_url"]


def test_unexpected_failure_returns_structured_500(monkeypatch, tmp_path) -> None:
    client, _store = _build_client(monkeypatch, tmp_path, _FakeResolver(error=RuntimeError("boom")))

    response = client.post("/api/resolve", json={"query": "blinding lights"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "resolution_error"
    assert body["received_keys"] == ["query"]
