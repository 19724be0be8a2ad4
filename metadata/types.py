"""Structured track types shared by extraction, fan-out and persistence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class Platform(Enum):
    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"
    DEEZER = "deezer"
    TIDAL = "tidal"
    YOUTUBE_MUSIC = "youtube_music"
    YOUTUBE = "youtube"
    SOUNDCLOUD = "soundcloud"


@dataclass(frozen=True)
class CoreMeta:
    """Query-side description of a recording.

    ``title`` and ``artist`` are required. Everything else is best-effort and
    may be filled in later (for example an ISRC found by an enrichment search).
    """

    title: str
    artist: str
    isrc: str | None = None
    album: str | None = None
    duration_ms: int | None = None
    release_date: str | None = None
    source_url: str | None = None
    artwork_url: str | None = None

    def __post_init__(self) -> None:
        title = str(self.title or "").strip()
        artist = str(self.artist or "").strip()
        if not title:
            raise ValueError("title is required")
        if not artist:
            raise ValueError("artist is required")
        object.__setattr__(self, "title", title)
        object.__setattr__(self, "artist", artist)
        isrc = str(self.isrc or "").strip().upper() or None
        object.__setattr__(self, "isrc", isrc)
        if self.duration_ms is not None:
            object.__setattr__(self, "duration_ms", int(self.duration_ms))

    def enriched(self, **changes: Any) -> "CoreMeta":
        """Return a copy with the non-empty ``changes`` applied to empty fields."""
        updates = {
            key: value
            for key, value in changes.items()
            if value not in (None, "") and not getattr(self, key)
        }
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResolveHit:
    """One platform's candidate link for the queried recording."""

    platform: Platform
    platform_id: str
    url_web: str
    confidence: float
    url_app: str | None = None
    storefront: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["platform"] = self.platform.value
        return payload


@dataclass(frozen=True)
class CandidateTrack:
    """Provider result mapped into the shape the scorer understands."""

    title: str
    artist: str
    platform_id: str
    url_web: str
    duration_ms: int | None = None
    isrc: str | None = None
    url_app: str | None = None


@dataclass(frozen=True)
class AdapterResult:
    """Tagged outcome of one adapter lookup."""

    platform: Platform
    ok: bool
    hits: list[ResolveHit] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def success(cls, platform: Platform, hits: list[ResolveHit]) -> "AdapterResult":
        return cls(platform=platform, ok=True, hits=list(hits))

    @classmethod
    def failure(cls, platform: Platform, reason: str) -> "AdapterResult":
        return cls(platform=platform, ok=False, hits=[], reason=reason)


@dataclass(frozen=True)
class ExtractionResult:
    """Identity established by the metadata extractor.

    ``source_hit`` is only set when the metadata came straight from the
    authoritative source, in which case that source's link is known exactly.
    ``extra_hits`` carries confident links a recognition provider returned
    alongside the metadata.
    """

    core: CoreMeta
    source: str
    source_hit: ResolveHit | None = None
    extra_hits: list[ResolveHit] = field(default_factory=list)


@dataclass(frozen=True)
class Resolution:
    core: CoreMeta
    links: list[ResolveHit]
    source: str
    adapter_failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "core": self.core.to_dict(),
            "links": [hit.to_dict() for hit in self.links],
        }
