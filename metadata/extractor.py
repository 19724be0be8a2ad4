"""Canonical metadata extraction from a seed URL, free text or structured input.

Sources are tried as an explicit, ordered list of strategies. Each strategy
either returns an ``ExtractionResult`` or ``None`` to let the next one try;
provider faults inside a strategy count as "try next". Spotify is the
authoritative source. AudD is a best-effort fallback that accepts both URLs
and text. The streaming links AudD returns become extra hits, and a
non-Spotify URL that AudD ties to a Spotify track is upgraded to that track's
authoritative metadata.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from config.settings import ENRICHMENT_MIN_SIMILARITY
from engine.errors import MetadataExtractionFailed, MissingInputError, NoMatchError, ProviderError, UnsupportedUrlError
from engine.json_utils import log_event
from engine.platform_adapters import audd_hits
from engine.similarity import similarity, tokenize
from input.platform_patterns import extract_platform_id, is_canonical
from metadata.providers.audd import AuddClient, AuddMatch
from metadata.types import CoreMeta, ExtractionResult, Platform
from spotify.client import SpotifyCatalogClient, canonical_hit, track_to_core

logger = logging.getLogger(__name__)

Strategy = Callable[[], Optional[ExtractionResult]]


def _covers(part: str, text: str) -> bool:
    part_tokens = tokenize(part)
    if not part_tokens:
        return False
    shared = part_tokens & tokenize(text)
    return len(shared) / len(part_tokens) >= ENRICHMENT_MIN_SIMILARITY


class MetadataExtractor:
    def __init__(
        self,
        *,
        spotify_client: SpotifyCatalogClient | None = None,
        audd_client: AuddClient | None = None,
    ) -> None:
        self.spotify_client = spotify_client or SpotifyCatalogClient()
        self.audd_client = audd_client or AuddClient()

    def extract(
        self,
        *,
        seed_url: str | None = None,
        query: str | None = None,
        meta: CoreMeta | None = None,
        storefront: str | None = None,
    ) -> ExtractionResult:
        seed_url = (seed_url or "").strip() or None
        query = (query or "").strip() or None
        if seed_url and not is_canonical(seed_url):
            raise UnsupportedUrlError("seed_url is not a canonical track URL", seed_url=seed_url)
        if not (seed_url or query or meta):
            raise MissingInputError("seed_url, query or title/artist is required")

        strategies = self._strategies(seed_url=seed_url, query=query, meta=meta, storefront=storefront)
        attempted: list[str] = []
        for name, strategy in strategies:
            attempted.append(name)
            try:
                result = strategy()
            except (ProviderError, NoMatchError, ValueError) as exc:
                log_event(logging.INFO, "metadata_strategy_failed", strategy=name, reason=str(exc))
                continue
            if result is not None:
                log_event(
                    logging.INFO,
                    "metadata_extracted",
                    strategy=name,
                    title=result.core.title,
                    artist=result.core.artist,
                    has_isrc=bool(result.core.isrc),
                )
                return result
        raise MetadataExtractionFailed(
            "could not establish title and artist",
            attempted=attempted,
        )

    def _strategies(
        self,
        *,
        seed_url: str | None,
        query: str | None,
        meta: CoreMeta | None,
        storefront: str | None,
    ) -> list[tuple[str, Strategy]]:
        strategies: list[tuple[str, Strategy]] = []
        if seed_url:
            match = extract_platform_id(seed_url)
            is_spotify = bool(match and match.platform == Platform.SPOTIFY)
            if is_spotify:
                strategies.append(
                    ("spotify_track", lambda: self._from_spotify_track(match.platform_id, storefront))
                )
            strategies.append(
                ("audd_url", lambda: self._from_audd_url(seed_url, storefront, upgrade=not is_spotify))
            )
        elif query:
            strategies.append(("spotify_search", lambda: self._from_spotify_search(query, storefront)))
            strategies.append(("audd_search", lambda: self._from_audd_search(query)))
        elif meta is not None:
            strategies.append(("structured", lambda: ExtractionResult(core=meta, source="structured")))
        return strategies

    def _from_spotify_track(self, track_id: str, storefront: str | None) -> Optional[ExtractionResult]:
        if not self.spotify_client.has_credentials():
            return None
        track = self.spotify_client.get_track(track_id, market=storefront)
        return ExtractionResult(
            core=track_to_core(track),
            source="spotify_track",
            source_hit=canonical_hit(track),
        )

    def _from_spotify_search(self, query: str, storefront: str | None) -> Optional[ExtractionResult]:
        if not self.spotify_client.has_credentials():
            return None
        for track in self.spotify_client.search_tracks(query, limit=5, market=storefront):
            try:
                core = track_to_core(track)
            except ValueError:
                continue
            if _covers(core.title, query) and _covers(core.artist, query):
                return ExtractionResult(core=core, source="spotify_search")
        return None

    def _from_audd_url(self, url: str, storefront: str | None, *, upgrade: bool = True) -> Optional[ExtractionResult]:
        if not self.audd_client.has_credentials():
            return None
        match = self.audd_client.match_url(url)
        result = self._audd_result(match, "audd_url")
        return self._upgrade_with_spotify(result, match, storefront) if upgrade else result

    def _from_audd_search(self, query: str) -> Optional[ExtractionResult]:
        if not self.audd_client.has_credentials():
            return None
        return self._audd_result(self.audd_client.match_text(query), "audd_search")

    @staticmethod
    def _audd_result(match: AuddMatch, source: str) -> ExtractionResult:
        return ExtractionResult(core=match.core, source=source, extra_hits=audd_hits(match.core, match.result))

    def _upgrade_with_spotify(
        self, result: ExtractionResult, match: AuddMatch, storefront: str | None
    ) -> ExtractionResult:
        """Swap AudD metadata for the Spotify track AudD pointed at, when reachable."""
        track_id = match.spotify_id
        if not track_id or not self.spotify_client.has_credentials():
            return result
        try:
            track = self.spotify_client.get_track(track_id, market=storefront)
            core = track_to_core(track)
        except (ProviderError, ValueError) as exc:
            log_event(logging.INFO, "audd_spotify_upgrade_failed", track_id=track_id, reason=str(exc))
            return result
        return ExtractionResult(
            core=core,
            source="audd_spotify",
            source_hit=canonical_hit(track),
            extra_hits=result.extra_hits,
        )

    def enrich_isrc(self, core: CoreMeta, *, storefront: str | None = None) -> CoreMeta:
        """Look the track up once on Spotify and return a copy with its ISRC filled in.

        Returns ``core`` unchanged when it already has an ISRC, when Spotify is
        not configured, or when no result resembles the title and artist.
        """
        if core.isrc or not self.spotify_client.has_credentials():
            return core
        search = f'track:"{core.title}" artist:"{core.artist}"'
        try:
            tracks = self.spotify_client.search_tracks(search, limit=5, market=storefront)
        except ProviderError as exc:
            logger.info("ISRC enrichment failed for %s - %s: %s", core.artist, core.title, exc)
            return core
        for track in tracks:
            try:
                found = track_to_core(track)
            except ValueError:
                continue
            if not found.isrc:
                continue
            if similarity(core.title, found.title) < ENRICHMENT_MIN_SIMILARITY:
                continue
            if similarity(core.artist, found.artist) < ENRICHMENT_MIN_SIMILARITY:
                continue
            return core.enriched(
                isrc=found.isrc,
                album=found.album,
                duration_ms=found.duration_ms,
                release_date=found.release_date,
                artwork_url=found.artwork_url,
            )
        return core
