"""Per-provider lookups that turn canonical metadata into scored platform hits.

Every adapter answers with an ``AdapterResult``. Credential gaps, transport
errors, non-2xx statuses and malformed payloads become
``AdapterResult.failure`` so one provider outage never blocks the others.
"""

from __future__ import annotations

import logging
import os
import re
import urllib.parse
from typing import Any, TypedDict

import requests
from yt_dlp import YoutubeDL

from config.settings import (
    APPLE_MUSIC_DEVELOPER_TOKEN_ENV,
    CONFIDENCE_THRESHOLD,
    DEFAULT_STOREFRONT,
    PROVIDER_TIMEOUT_SECONDS,
    SEARCH_PROVIDERS_ENV,
    TIDAL_CLIENT_ID_ENV,
    TIDAL_CLIENT_SECRET_ENV,
)
from engine.errors import ProviderError
from engine.json_utils import log_event
from engine.similarity import score_match
from engine.token_cache import TokenCache, exchange_client_credentials
from metadata.types import AdapterResult, CandidateTrack, CoreMeta, Platform, ResolveHit
from spotify.client import SpotifyCatalogClient, track_to_candidate

logger = logging.getLogger(__name__)


def _http_get(url: str, *, params=None, headers=None, timeout=PROVIDER_TIMEOUT_SECONDS) -> requests.Response:
    try:
        return requests.get(url, params=params, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise ProviderError(f"request failed: {exc}") from exc


def _json_body(response: requests.Response) -> dict[str, Any]:
    if response.status_code != 200:
        raise ProviderError(f"unexpected status {response.status_code}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError("response is not JSON") from exc
    if not isinstance(payload, dict):
        raise ProviderError("response is not an object")
    return payload


def score_candidates(
    platform: Platform,
    query: CoreMeta,
    candidates: list[CandidateTrack],
    *,
    storefront: str | None = None,
) -> list[ResolveHit]:
    """Score ``candidates`` against ``query`` and keep the confident ones as hits."""
    hits: list[ResolveHit] = []
    for candidate in candidates:
        # A different ISRC is a different recording, whatever the text says.
        if query.isrc and candidate.isrc and candidate.isrc.strip().upper() != query.isrc:
            continue
        confidence = score_match(query, candidate)
        if confidence < CONFIDENCE_THRESHOLD:
            continue
        hits.append(
            ResolveHit(
                platform=platform,
                platform_id=candidate.platform_id,
                url_web=candidate.url_web,
                url_app=candidate.url_app,
                storefront=storefront,
                confidence=round(confidence, 4),
            )
        )
    return hits


class PlatformAdapter:
    platform: Platform
    # The authoritative adapter is skipped when the seed metadata came from it.
    authoritative = False
    storefront_scoped = False

    def lookup(self, query: CoreMeta, storefront: str | None = None) -> AdapterResult:
        storefront = (storefront or DEFAULT_STOREFRONT).strip().lower()
        try:
            candidates = self._candidates(query, storefront)
        except ProviderError as exc:
            log_event(logging.WARNING, "adapter_failed", platform=self.platform.value, reason=str(exc))
            return AdapterResult.failure(self.platform, str(exc))
        except Exception as exc:
            logging.exception("Adapter lookup failed for platform=%s", self.platform.value)
            return AdapterResult.failure(self.platform, f"unexpected error: {exc}")

        hits = score_candidates(
            self.platform,
            query,
            candidates,
            storefront=storefront if self.storefront_scoped else None,
        )
        log_event(
            logging.INFO,
            "adapter_completed",
            platform=self.platform.value,
            candidates=len(candidates),
            accepted=len(hits),
        )
        return AdapterResult.success(self.platform, hits)

    def _candidates(self, query: CoreMeta, storefront: str) -> list[CandidateTrack]:
        raise NotImplementedError

    @staticmethod
    def text_query(query: CoreMeta) -> str:
        return f"{query.title} {query.artist}".strip()


class SpotifyAdapter(PlatformAdapter):
    platform = Platform.SPOTIFY
    authoritative = True

    def __init__(self, client: SpotifyCatalogClient | None = None) -> None:
        self.client = client or SpotifyCatalogClient()

    def _candidates(self, query, storefront):
        if not self.client.has_credentials():
            raise ProviderError("Spotify credentials are not configured")
        search = f"isrc:{query.isrc}" if query.isrc else self.text_query(query)
        tracks = self.client.search_tracks(search, limit=5, market=storefront)
        return [track_to_candidate(track) for track in tracks]


class _AppleSongAttributes(TypedDict, total=False):
    name: str
    artistName: str
    albumName: str
    durationInMillis: int
    isrc: str
    url: str


class _AppleSong(TypedDict, total=False):
    id: str
    type: str
    attributes: _AppleSongAttributes


class AppleMusicAdapter(PlatformAdapter):
    platform = Platform.APPLE_MUSIC
    storefront_scoped = True

    _CATALOG_URL = "https://api.music.apple.com/v1/catalog/{storefront}"

    def __init__(self, *, developer_token: str | None = None, timeout_sec: float = PROVIDER_TIMEOUT_SECONDS) -> None:
        self.developer_token = developer_token or os.environ.get(APPLE_MUSIC_DEVELOPER_TOKEN_ENV)
        self.timeout_sec = timeout_sec

    def _candidates(self, query, storefront):
        if not self.developer_token:
            raise ProviderError("Apple Music developer token is not configured")
        base = self._CATALOG_URL.format(storefront=urllib.parse.quote(storefront, safe=""))
        headers = {"Authorization": f"Bearer {self.developer_token}"}
        if query.isrc:
            payload = _json_body(
                _http_get(
                    f"{base}/songs",
                    params={"filter[isrc]": query.isrc},
                    headers=headers,
                    timeout=self.timeout_sec,
                )
            )
            songs = payload.get("data") or []
        else:
            payload = _json_body(
                _http_get(
                    f"{base}/search",
                    params={"term": self.text_query(query), "types": "songs", "limit": 5},
                    headers=headers,
                    timeout=self.timeout_sec,
                )
            )
            songs = ((payload.get("results") or {}).get("songs") or {}).get("data") or []
        return [candidate for candidate in (self._map(song) for song in songs) if candidate]

    @staticmethod
    def _map(song: _AppleSong) -> CandidateTrack | None:
        if not isinstance(song, dict) or not song.get("id"):
            return None
        attributes = song.get("attributes") or {}
        url = attributes.get("url")
        if not url:
            return None
        return CandidateTrack(
            title=str(attributes.get("name") or ""),
            artist=str(attributes.get("artistName") or ""),
            platform_id=str(song["id"]),
            url_web=url,
            url_app=re.sub(r"^https?://", "music://", url),
            duration_ms=attributes.get("durationInMillis"),
            isrc=attributes.get("isrc"),
        )


class _DeezerArtist(TypedDict, total=False):
    id: int
    name: str


class _DeezerTrack(TypedDict, total=False):
    id: int
    title: str
    duration: int
    isrc: str
    link: str
    artist: _DeezerArtist


class DeezerAdapter(PlatformAdapter):
    platform = Platform.DEEZER

    _API_URL = "https://api.deezer.com"
    # Deezer answers 200 with an error object; code 800 means "no data".
    _NO_DATA_CODE = 800

    def __init__(self, *, timeout_sec: float = PROVIDER_TIMEOUT_SECONDS) -> None:
        self.timeout_sec = timeout_sec

    def _candidates(self, query, storefront):
        if query.isrc:
            payload = _json_body(
                _http_get(
                    f"{self._API_URL}/track/isrc:{urllib.parse.quote(query.isrc, safe='')}",
                    timeout=self.timeout_sec,
                )
            )
            if self._no_data(payload):
                return []
            tracks = [payload]
        else:
            search = f'artist:"{query.artist}" track:"{query.title}"'
            payload = _json_body(
                _http_get(f"{self._API_URL}/search", params={"q": search, "limit": 5}, timeout=self.timeout_sec)
            )
            if self._no_data(payload):
                return []
            tracks = payload.get("data") or []
        return [candidate for candidate in (self._map(track) for track in tracks) if candidate]

    def _no_data(self, payload: dict[str, Any]) -> bool:
        error = payload.get("error")
        if not error:
            return False
        if isinstance(error, dict) and error.get("code") == self._NO_DATA_CODE:
            return True
        raise ProviderError(f"Deezer error: {error}")

    @staticmethod
    def _map(track: _DeezerTrack) -> CandidateTrack | None:
        if not isinstance(track, dict) or not track.get("id"):
            return None
        track_id = str(track["id"])
        duration = track.get("duration")
        return CandidateTrack(
            title=str(track.get("title") or ""),
            artist=str((track.get("artist") or {}).get("name") or ""),
            platform_id=track_id,
            url_web=track.get("link") or f"https://www.deezer.com/track/{track_id}",
            url_app=f"deezer://www.deezer.com/track/{track_id}",
            duration_ms=int(duration) * 1000 if isinstance(duration, int) else None,
            isrc=track.get("isrc"),
        )


_ISO_DURATION_RE = re.compile(r"^PT(?:(?P<h>\d+)H)?(?:(?P<m>\d+)M)?(?:(?P<s>\d+(?:\.\d+)?)S)?$")


def parse_iso_duration_ms(value: Any) -> int | None:
    match = _ISO_DURATION_RE.match(str(value or ""))
    if not match or not any(match.groupdict().values()):
        return None
    hours = int(match.group("h") or 0)
    minutes = int(match.group("m") or 0)
    seconds = float(match.group("s") or 0)
    return int(round((hours * 3600 + minutes * 60 + seconds) * 1000))


class _TidalResource(TypedDict, total=False):
    id: str
    type: str
    attributes: dict[str, Any]
    relationships: dict[str, Any]


class TidalAdapter(PlatformAdapter):
    platform = Platform.TIDAL
    storefront_scoped = True

    _TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"
    _API_URL = "https://openapi.tidal.com/v2"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_cache: TokenCache | None = None,
        timeout_sec: float = PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self.client_id = client_id or os.environ.get(TIDAL_CLIENT_ID_ENV)
        self.client_secret = client_secret or os.environ.get(TIDAL_CLIENT_SECRET_ENV)
        self.token_cache = token_cache or TokenCache()
        self.timeout_sec = timeout_sec

    def _get_access_token(self) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached
        if not (self.client_id and self.client_secret):
            raise ProviderError("Tidal credentials are not configured")
        token, expires_in = exchange_client_credentials(
            self._TOKEN_URL,
            str(self.client_id),
            str(self.client_secret),
            timeout_sec=self.timeout_sec,
        )
        self.token_cache.store(token, expires_in)
        return token

    def _request(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        def _send() -> requests.Response:
            headers = {
                "Authorization": f"Bearer {self._get_access_token()}",
                "Accept": "application/vnd.api+json",
            }
            return _http_get(url, params=params, headers=headers, timeout=self.timeout_sec)

        response = _send()
        if response.status_code == 401:
            self.token_cache.invalidate()
            response = _send()
        return _json_body(response)

    def _candidates(self, query, storefront):
        country = storefront.upper()
        if query.isrc:
            payload = self._request(
                f"{self._API_URL}/tracks",
                {"countryCode": country, "filter[isrc]": query.isrc, "include": "artists"},
            )
            tracks = payload.get("data") or []
        else:
            term = urllib.parse.quote(self.text_query(query), safe="")
            payload = self._request(
                f"{self._API_URL}/searchResults/{term}/relationships/tracks",
                {"countryCode": country, "include": "tracks"},
            )
            tracks = [item for item in payload.get("included") or [] if isinstance(item, dict) and item.get("type") == "tracks"]
        artists = {
            str(item.get("id")): str((item.get("attributes") or {}).get("name") or "")
            for item in payload.get("included") or []
            if isinstance(item, dict) and item.get("type") == "artists"
        }
        return [candidate for candidate in (self._map(track, artists) for track in tracks) if candidate]

    @staticmethod
    def _map(track: _TidalResource, artists: dict[str, str]) -> CandidateTrack | None:
        if not isinstance(track, dict) or not track.get("id"):
            return None
        track_id = str(track["id"])
        attributes = track.get("attributes") or {}
        artist_refs = ((track.get("relationships") or {}).get("artists") or {}).get("data") or []
        artist_names = [artists.get(str(ref.get("id")), "") for ref in artist_refs if isinstance(ref, dict)]
        return CandidateTrack(
            title=str(attributes.get("title") or ""),
            artist=next((name for name in artist_names if name), ""),
            platform_id=track_id,
            url_web=f"https://tidal.com/browse/track/{track_id}",
            url_app=f"tidal://track/{track_id}",
            duration_ms=parse_iso_duration_ms(attributes.get("duration")),
            isrc=attributes.get("isrc"),
        )


class _YtDlpSearchMixin(PlatformAdapter):
    """Search-engine style providers with no ISRC filter; queried by text."""

    search_prefix = ""
    limit = 5

    def _extract(self, search_term: str) -> Any:
        opts = {
            "skip_download": True,
            "quiet": True,
            "no_warnings": True,
            "ignoreerrors": True,
            "noplaylist": True,
            "cachedir": False,
            "socket_timeout": 10,
        }
        try:
            with YoutubeDL(opts) as ydl:
                return ydl.extract_info(search_term, download=False)
        except Exception as exc:
            raise ProviderError(f"search failed: {exc}") from exc

    def _candidates(self, query, storefront):
        info = self._extract(f"{self.search_prefix}{self.limit}:{self.text_query(query)}")
        entries = info.get("entries") if isinstance(info, dict) else None
        candidates = []
        for entry in entries or []:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            url = entry.get("webpage_url")
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                continue
            isrc = entry.get("isrc")
            if not isrc:
                isrcs = entry.get("isrcs")
                if isinstance(isrcs, list) and isrcs:
                    isrc = isrcs[0]
            duration = entry.get("duration")
            candidates.append(
                CandidateTrack(
                    title=str(entry.get("track") or entry.get("title") or ""),
                    artist=str(entry.get("artist") or entry.get("uploader") or entry.get("channel") or ""),
                    platform_id=str(entry["id"]),
                    url_web=self._web_url(entry, url),
                    duration_ms=int(float(duration) * 1000) if isinstance(duration, (int, float)) else None,
                    isrc=isrc,
                )
            )
        return candidates

    def _web_url(self, entry: dict[str, Any], url: str) -> str:
        return url


class YouTubeMusicAdapter(_YtDlpSearchMixin):
    platform = Platform.YOUTUBE_MUSIC
    search_prefix = "ytsearch"

    def _web_url(self, entry, url):
        return f"https://music.youtube.com/watch?v={entry['id']}"


class SoundCloudAdapter(_YtDlpSearchMixin):
    platform = Platform.SOUNDCLOUD
    search_prefix = "scsearch"


def default_adapters(
    spotify_client: SpotifyCatalogClient | None = None,
    *,
    include_search_providers: bool | None = None,
) -> list[PlatformAdapter]:
    """Catalog adapters, plus the yt-dlp search providers when enabled.

    Search providers rarely expose an ISRC, so their results seldom clear the
    confidence threshold; they are off unless ``include_search_providers`` or
    the ``RESOLVER_SEARCH_PROVIDERS`` environment flag turns them on.
    """
    if include_search_providers is None:
        flag = (os.environ.get(SEARCH_PROVIDERS_ENV) or "").strip().lower()
        include_search_providers = flag in {"1", "true", "yes", "on"}
    adapters: list[PlatformAdapter] = [
        SpotifyAdapter(spotify_client),
        AppleMusicAdapter(),
        DeezerAdapter(),
        TidalAdapter(),
    ]
    if include_search_providers:
        adapters.extend([YouTubeMusicAdapter(), SoundCloudAdapter()])
    return adapters


_APPLE_STOREFRONT_RE = re.compile(r"music\.apple\.com/([a-z]{2})/")
_APPLE_SONG_ID_RE = re.compile(r"[?&]i=(\d+)")


def audd_hits(core: CoreMeta, result: dict[str, Any]) -> list[ResolveHit]:
    """Scored hits for the Spotify, Apple Music and Deezer objects AudD embeds."""
    hits: list[ResolveHit] = []
    spotify = result.get("spotify")
    if isinstance(spotify, dict) and spotify.get("id"):
        hits.extend(score_candidates(Platform.SPOTIFY, core, [track_to_candidate(spotify)]))

    apple = result.get("apple_music")
    if isinstance(apple, dict):
        play_params = apple.get("playParams") if isinstance(apple.get("playParams"), dict) else {}
        song_id = play_params.get("id")
        if not song_id:
            id_match = _APPLE_SONG_ID_RE.search(str(apple.get("url") or ""))
            song_id = id_match.group(1) if id_match else None
        candidate = AppleMusicAdapter._map({"id": song_id, "attributes": apple})
        if candidate:
            storefront_match = _APPLE_STOREFRONT_RE.search(candidate.url_web)
            hits.extend(
                score_candidates(
                    Platform.APPLE_MUSIC,
                    core,
                    [candidate],
                    storefront=storefront_match.group(1) if storefront_match else None,
                )
            )

    deezer = result.get("deezer")
    if isinstance(deezer, dict):
        candidate = DeezerAdapter._map(deezer)
        if candidate:
            hits.extend(score_candidates(Platform.DEEZER, core, [candidate]))
    return hits
