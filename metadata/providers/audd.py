"""AudD recognition client used as the non-authoritative metadata fallback."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, TypedDict

import requests

from config.settings import AUDD_API_TOKEN_ENV, PROVIDER_TIMEOUT_SECONDS
from engine.errors import NoMatchError, ProviderError
from metadata.types import CoreMeta

logger = logging.getLogger(__name__)

_AUDD_URL = "https://api.audd.io/"
_RETURN_FIELDS = "apple_music,spotify,deezer"


class AuddResult(TypedDict, total=False):
    artist: str
    title: str
    album: str
    release_date: str
    song_link: str
    isrc: str
    spotify: dict[str, Any]
    apple_music: dict[str, Any]
    deezer: dict[str, Any]


def _nested(source: Any, *keys: str) -> Any:
    value = source
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _isrc_from(result: AuddResult) -> str | None:
    # Plans without streaming metadata never carry an ISRC.
    for candidate in (
        _nested(result, "apple_music", "isrc"),
        _nested(result, "spotify", "external_ids", "isrc"),
        _nested(result, "deezer", "isrc"),
        result.get("isrc"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _duration_from(result: AuddResult) -> int | None:
    spotify_ms = _nested(result, "spotify", "duration_ms")
    if isinstance(spotify_ms, int):
        return spotify_ms
    apple_ms = _nested(result, "apple_music", "durationInMillis")
    if isinstance(apple_ms, int):
        return apple_ms
    deezer_sec = _nested(result, "deezer", "duration")
    if isinstance(deezer_sec, int):
        return deezer_sec * 1000
    return None


def _first_result(result: Any) -> AuddResult:
    if isinstance(result, list):
        result = result[0] if result else None
    if not isinstance(result, dict):
        raise NoMatchError("AudD returned no result")
    return result


def result_to_core(result: Any) -> CoreMeta:
    """Map an AudD ``result`` into ``CoreMeta`` or raise ``NoMatchError``."""
    result = _first_result(result)
    title = result.get("title") or _nested(result, "spotify", "name")
    artist = result.get("artist")
    if not artist:
        artists = _nested(result, "spotify", "artists") or []
        if isinstance(artists, list) and artists and isinstance(artists[0], dict):
            artist = artists[0].get("name")
    if not title or not artist:
        raise NoMatchError("AudD result has no title/artist")
    return CoreMeta(
        title=str(title),
        artist=str(artist),
        isrc=_isrc_from(result),
        album=result.get("album") or None,
        duration_ms=_duration_from(result),
        release_date=result.get("release_date") or None,
        source_url=result.get("song_link") or None,
    )


@dataclass(frozen=True)
class AuddMatch:
    """A recognised track together with the raw result it was mapped from."""

    core: CoreMeta
    result: AuddResult

    @property
    def spotify_id(self) -> str | None:
        track_id = _nested(self.result, "spotify", "id")
        return str(track_id) if track_id else None


class AuddClient:
    def __init__(self, *, api_token: str | None = None, timeout_sec: float = PROVIDER_TIMEOUT_SECONDS) -> None:
        self.api_token = api_token or os.environ.get(AUDD_API_TOKEN_ENV)
        self.timeout_sec = timeout_sec

    def has_credentials(self) -> bool:
        return bool(self.api_token)

    def _post(self, data: dict[str, str]) -> Any:
        if not self.has_credentials():
            raise ProviderError("AudD api token is required")
        payload = {"api_token": str(self.api_token), "return": _RETURN_FIELDS, **data}
        try:
            response = requests.post(_AUDD_URL, data=payload, timeout=self.timeout_sec)
        except requests.RequestException as exc:
            raise ProviderError(f"AudD request failed: {exc}") from exc
        if response.status_code != 200:
            raise ProviderError(f"AudD request failed ({response.status_code})")
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("AudD response is not JSON") from exc
        if not isinstance(body, dict):
            raise NoMatchError("AudD response is not an object")
        if body.get("status") != "success":
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            raise ProviderError(f"AudD error: {error.get('error_message') or body.get('status')}")
        return body.get("result")

    def _match(self, data: dict[str, str]) -> AuddMatch:
        result = _first_result(self._post(data))
        return AuddMatch(core=result_to_core(result), result=result)

    def match_url(self, url: str) -> AuddMatch:
        return self._match({"url": url.strip()})

    def match_text(self, query: str) -> AuddMatch:
        return self._match({"method": "search", "q": query.strip()})
