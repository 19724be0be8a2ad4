"""Spotify Web API client for track lookups and catalog search."""

from __future__ import annotations

import logging
import os
import urllib.parse
from typing import Any, TypedDict

import requests

from config.settings import (
    PROVIDER_TIMEOUT_SECONDS,
    SPOTIFY_CLIENT_ID_ENV,
    SPOTIFY_CLIENT_SECRET_ENV,
)
from engine.errors import ProviderError
from engine.token_cache import TokenCache, exchange_client_credentials
from metadata.types import CandidateTrack, CoreMeta, Platform, ResolveHit

logger = logging.getLogger(__name__)


class _SpotifyArtist(TypedDict, total=False):
    name: str


class _SpotifyImage(TypedDict, total=False):
    url: str
    width: int | None
    height: int | None


class _SpotifyAlbum(TypedDict, total=False):
    name: str
    release_date: str
    images: list[_SpotifyImage]


class SpotifyTrack(TypedDict, total=False):
    """Subset of the Spotify track object this project reads."""

    id: str
    name: str
    duration_ms: int
    artists: list[_SpotifyArtist]
    album: _SpotifyAlbum
    external_ids: dict[str, str]
    external_urls: dict[str, str]
    uri: str


class SpotifyCatalogClient:
    """Client-credentials Spotify client with an injectable token cache."""

    _TOKEN_URL = "https://accounts.spotify.com/api/token"
    _TRACK_URL = "https://api.spotify.com/v1/tracks/{track_id}"
    _SEARCH_URL = "https://api.spotify.com/v1/search"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_cache: TokenCache | None = None,
        timeout_sec: float = PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self.client_id = client_id or os.environ.get(SPOTIFY_CLIENT_ID_ENV)
        self.client_secret = client_secret or os.environ.get(SPOTIFY_CLIENT_SECRET_ENV)
        self.token_cache = token_cache or TokenCache()
        self.timeout_sec = timeout_sec

    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _get_access_token(self) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached
        if not self.has_credentials():
            raise ProviderError("Spotify credentials are required")
        token, expires_in = exchange_client_credentials(
            self._TOKEN_URL,
            str(self.client_id),
            str(self.client_secret),
            timeout_sec=self.timeout_sec,
        )
        self.token_cache.store(token, expires_in)
        return token

    def _get(self, url: str, params: dict[str, Any] | None, token: str) -> requests.Response:
        try:
            return requests.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Spotify request failed: {exc}") from exc

    def _request_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = self._get(url, params, self._get_access_token())
        if response.status_code == 401:
            self.token_cache.invalidate()
            response = self._get(url, params, self._get_access_token())
        if response.status_code != 200:
            raise ProviderError(f"Spotify request failed ({response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Spotify response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError("Spotify response is not an object")
        return payload

    def get_track(self, track_id: str, *, market: str | None = None) -> SpotifyTrack:
        cleaned = (track_id or "").strip()
        if not cleaned:
            raise ValueError("track_id is required")
        params = {"market": market.upper()} if market else None
        return self._request_json(
            self._TRACK_URL.format(track_id=urllib.parse.quote(cleaned, safe="")),
            params=params,
        )

    def search_tracks(
        self,
        query: str,
        *,
        limit: int = 5,
        market: str | None = None,
    ) -> list[SpotifyTrack]:
        params: dict[str, Any] = {"q": query, "type": "track", "limit": limit}
        if market:
            params["market"] = market.upper()
        payload = self._request_json(self._SEARCH_URL, params=params)
        items = (payload.get("tracks") or {}).get("items") or []
        return [item for item in items if isinstance(item, dict) and item.get("id")]


def _first_artist(track: SpotifyTrack) -> str:
    artists = track.get("artists") or []
    if artists and isinstance(artists[0], dict):
        return str(artists[0].get("name") or "")
    return ""


def track_web_url(track: SpotifyTrack) -> str:
    url = (track.get("external_urls") or {}).get("spotify")
    return url or f"https://open.spotify.com/track/{track.get('id')}"


def track_to_core(track: SpotifyTrack) -> CoreMeta:
    """Map a Spotify track object into ``CoreMeta``; raises ``ValueError`` without title/artist."""
    album = track.get("album") or {}
    images = album.get("images") or []
    artwork_url = images[0].get("url") if images and isinstance(images[0], dict) else None
    return CoreMeta(
        title=str(track.get("name") or ""),
        artist=_first_artist(track),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        album=album.get("name"),
        duration_ms=track.get("duration_ms"),
        release_date=album.get("release_date"),
        source_url=track_web_url(track),
        artwork_url=artwork_url,
    )


def track_to_candidate(track: SpotifyTrack) -> CandidateTrack:
    track_id = str(track.get("id") or "")
    return CandidateTrack(
        title=str(track.get("name") or ""),
        artist=_first_artist(track),
        platform_id=track_id,
        url_web=track_web_url(track),
        url_app=track.get("uri") or f"spotify:track:{track_id}",
        duration_ms=track.get("duration_ms"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
    )


def canonical_hit(track: SpotifyTrack, *, storefront: str | None = None) -> ResolveHit:
    """Hit for the track the caller handed us; it is the source, so confidence is 1.0."""
    candidate = track_to_candidate(track)
    return ResolveHit(
        platform=Platform.SPOTIFY,
        platform_id=candidate.platform_id,
        url_web=candidate.url_web,
        url_app=candidate.url_app,
        storefront=storefront,
        confidence=1.0,
    )
