from __future__ import annotations

from typing import Any

import pytest

from engine.errors import MetadataExtractionFailed, MissingInputError, NoMatchError, ProviderError, UnsupportedUrlError
from metadata.extractor import MetadataExtractor
from metadata.providers.audd import AuddMatch
from metadata.types import CoreMeta, Platform


def _spotify_track(name="Blinding Lights", artist="The Weeknd", isrc="USUG11904206", track_id="0VjIjW4GlUZAMYd2vXMi3b"):
    return {
        "id": track_id,
        "name": name,
        "duration_ms": 200040,
        "artists": [{"name": artist}] if artist else [],
        "album": {"name": "After Hours", "release_date": "2020-03-20", "images": []},
        "external_ids": {"isrc": isrc} if isrc else {},
        "uri": f"spotify:track:{track_id}",
    }


class _FakeSpotify:
    def __init__(self, *, configured=True, track=None, search=None, error=None) -> None:
        self.configured = configured
        self.track = track
        self.search = search or []
        self.error = error
        self.calls: list[tuple[str, Any]] = []

    def has_credentials(self) -> bool:
        return self.configured

    def get_track(self, track_id, *, market=None):
        self.calls.append(("get_track", track_id))
        if self.error:
            raise self.error
        return self.track

    def search_tracks(self, query, *, limit=5, market=None):
        self.calls.append(("search_tracks", query))
        if self.error:
            raise self.error
        return list(self.search)


class _FakeAudd:
    def __init__(self, *, configured=True, core=None, result=None, error=None) -> None:
        self.configured = configured
        self.core = core
        self.result = result or {}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def has_credentials(self) -> bool:
        return self.configured

    def _answer(self) -> AuddMatch:
        if self.error:
            raise self.error
        return AuddMatch(core=self.core, result=self.result)

    def match_url(self, url):
        self.calls.append(("match_url", url))
        return self._answer()

    def match_text(self, query):
        self.calls.append(("match_text", query))
        return self._answer()


def _extractor(spotify=None, audd=None) -> MetadataExtractor:
    return MetadataExtractor(spotify_client=spotify or _FakeSpotify(), audd_client=audd or _FakeAudd(configured=False))


def test_non_canonical_url_is_rejected() -> None:
    with pytest.raises(UnsupportedUrlError):
        _extractor().extract(seed_url="https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M")


def test_missing_input_is_rejected() -> None:
    with pytest.raises(MissingInputError):
        _extractor().extract(query="   ")


def test_spotify_url_uses_authoritative_lookup() -> None:
    spotify = _FakeSpotify(track=_spotify_track())

    result = _extractor(spotify=spotify).extract(seed_url="https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b")

    assert result.source == "spotify_track"
    assert result.core.isrc == "USUG11904206"
    assert result.source_hit is not None
    assert result.source_hit.platform == Platform.SPOTIFY
    assert result.source_hit.confidence == 1.0
    assert spotify.calls == [("get_track", "0VjIjW4GlUZAMYd2vXMi3b")]


def test_spotify_failure_falls_back_to_audd() -> None:
    audd = _FakeAudd(core=CoreMeta(title="Blinding Lights", artist="The Weeknd"))
    extractor = _extractor(spotify=_FakeSpotify(error=ProviderError("down")), audd=audd)

    result = extractor.extract(seed_url="https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b")

    assert result.source == "audd_url"
    assert result.source_hit is None
    assert audd.calls == [("match_url", "https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b")]


def test_non_spotify_url_goes_straight_to_audd() -> None:
    spotify = _FakeSpotify(track=_spotify_track())
    audd = _FakeAudd(core=CoreMeta(title="Blinding Lights", artist="The Weeknd"))

    result = _extractor(spotify=spotify, audd=audd).extract(seed_url="https://www.deezer.com/track/908604612")

    assert result.source == "audd_url"
    assert spotify.calls == []


def test_all_sources_failing_raises_extraction_failed() -> None:
    extractor = _extractor(
        spotify=_FakeSpotify(error=ProviderError("down")),
        audd=_FakeAudd(error=NoMatchError("nothing")),
    )

    with pytest.raises(MetadataExtractionFailed) as excinfo:
        extractor.extract(seed_url="https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b")

    assert excinfo.value.details["attempted"] == ["spotify_track", "audd_url"]
    assert excinfo.value.status_code == 422


def test_query_picks_first_search_result_covering_the_text() -> None:
    spotify = _FakeSpotify(
        search=[
            _spotify_track(name="Save Your Tears", track_id="other"),
            _spotify_track(artist=None, track_id="no-artist"),
            _spotify_track(),
        ]
    )

    result = _extractor(spotify=spotify).extract(query="the weeknd blinding lights")

    assert result.source == "spotify_search"
    assert result.core.title == "Blinding Lights"
    assert result.source_hit is None


def test_query_without_spotify_uses_audd_search() -> None:
    audd = _FakeAudd(core=CoreMeta(title="Blinding Lights", artist="The Weeknd"))

    result = _extractor(spotify=_FakeSpotify(configured=False), audd=audd).extract(query="blinding lights")

    assert result.source == "audd_search"
    assert audd.calls == [("match_text", "blinding lights")]


def test_structured_input_passes_through() -> None:
    meta = CoreMeta(title="Blinding Lights", artist="The Weeknd")

    result = _extractor().extract(meta=meta)

    assert result.source == "structured"
    assert result.core is meta


def test_enrich_isrc_fills_missing_fields() -> None:
    spotify = _FakeSpotify(search=[_spotify_track(isrc=None, track_id="a"), _spotify_track()])
    core = CoreMeta(title="Blinding Lights", artist="The Weeknd", album="Single")

    enriched = _extractor(spotify=spotify).enrich_isrc(core)

    assert enriched.isrc == "USUG11904206"
    assert enriched.album == "Single"
    assert enriched.duration_ms == 200040
    assert spotify.calls == [("search_tracks", 'track:"Blinding Lights" artist:"The Weeknd"')]


def test_enrich_isrc_ignores_unrelated_results() -> None:
    spotify = _FakeSpotify(search=[_spotify_track(name="Something Else", artist="Someone")])
    core = CoreMeta(title="Blinding Lights", artist="The Weeknd")

    assert _extractor(spotify=spotify).enrich_isrc(core) is core


def test_enrich_isrc_survives_provider_errors() -> None:
    core = CoreMeta(title="Blinding Lights", artist="The Weeknd")

    assert _extractor(spotify=_FakeSpotify(error=ProviderError("down"))).enrich_isrc(core) is core


AUDD_CORE = CoreMeta(title="Blinding Lights", artist="The Weeknd", isrc="USUG11904206", duration_ms=200040)


def _audd_apple_result(spotify_id=None) -> dict[str, Any]:
    result: dict[str, Any] = {
        "apple_music": {
            "name": "Blinding Lights",
            "artistName": "The Weeknd",
            "isrc": "USUG11904206",
            "durationInMillis": 200040,
            "url": "https://music.apple.com/us/album/blinding-lights/1499378108?i=1499378615",
            "playParams": {"id": "1499378615"},
        }
    }
    if spotify_id:
        result["spotify"] = {"id": spotify_id}
    return result


def test_audd_streaming_objects_become_extra_hits() -> None:
    audd = _FakeAudd(core=AUDD_CORE, result=_audd_apple_result())

    result = _extractor(spotify=_FakeSpotify(configured=False), audd=audd).extract(query="blinding lights")

    assert result.source == "audd_search"
    assert [(hit.platform, hit.platform_id) for hit in result.extra_hits] == [(Platform.APPLE_MUSIC, "1499378615")]
    assert result.extra_hits[0].storefront == "us"


def test_non_spotify_url_is_upgraded_to_the_spotify_track_audd_found() -> None:
    spotify = _FakeSpotify(track=_spotify_track())
    audd = _FakeAudd(core=AUDD_CORE, result=_audd_apple_result(spotify_id="0VjIjW4GlUZAMYd2vXMi3b"))

    result = _extractor(spotify=spotify, audd=audd).extract(seed_url="https://www.deezer.com/track/908604612")

    assert result.source == "audd_spotify"
    assert result.core.album == "After Hours"
    assert result.source_hit is not None
    assert result.source_hit.platform == Platform.SPOTIFY
    assert result.source_hit.platform_id == "0VjIjW4GlUZAMYd2vXMi3b"
    assert result.source_hit.confidence == 1.0
    assert [hit.platform for hit in result.extra_hits] == [Platform.APPLE_MUSIC]
    assert spotify.calls == [("get_track", "0VjIjW4GlUZAMYd2vXMi3b")]


def test_spotify_upgrade_failure_keeps_audd_metadata() -> None:
    spotify = _FakeSpotify(error=ProviderError("down"))
    audd = _FakeAudd(core=AUDD_CORE, result=_audd_apple_result(spotify_id="0VjIjW4GlUZAMYd2vXMi3b"))

    result = _extractor(spotify=spotify, audd=audd).extract(seed_url="https://www.deezer.com/track/908604612")

    assert result.source == "audd_url"
    assert result.core is AUDD_CORE
    assert result.source_hit is None
    assert len(result.extra_hits) == 1


def test_spotify_seed_falling_back_to_audd_is_not_upgraded() -> None:
    spotify = _FakeSpotify(error=ProviderError("down"))
    audd = _FakeAudd(core=AUDD_CORE, result=_audd_apple_result(spotify_id="0VjIjW4GlUZAMYd2vXMi3b"))

    result = _extractor(spotify=spotify, audd=audd).extract(seed_url="https://open.spotify.com/track/0VjIjW4GlUZAMYd2vXMi3b")

    assert result.source == "audd_url"
    assert spotify.calls == [("get_track", "0VjIjW4GlUZAMYd2vXMi3b")]
