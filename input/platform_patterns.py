"""Canonical track-page detection for supported streaming platforms."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from metadata.types import Platform

_TAIL = r"(?:[/?#]\S*)?"

# Track-detail shapes only. Search, playlist, album and artist pages never match.
_PATTERN_BODIES: tuple[tuple[Platform, str], ...] = (
    (
        Platform.SPOTIFY,
        r"https?://open\.spotify\.com/(?:intl-[a-z]{2}(?:-[a-z]{2})?/)?track/(?P<id>[A-Za-z0-9]+)" + _TAIL,
    ),
    (Platform.SPOTIFY, r"spotify:track:(?P<id>[A-Za-z0-9]+)"),
    (
        Platform.APPLE_MUSIC,
        r"https?://(?:geo\.)?music\.apple\.com/[a-z]{2}/album/[^/?#\s]+/\d+/?\?(?:[^#\s]*&)?i=(?P<id>\d+)\S*",
    ),
    (
        Platform.APPLE_MUSIC,
        r"https?://(?:geo\.)?music\.apple\.com/[a-z]{2}/song/(?:[^/?#\s]+/)?(?P<id>\d+)" + _TAIL,
    ),
    (Platform.DEEZER, r"https?://(?:www\.)?deezer\.com/(?:[a-z]{2}/)?track/(?P<id>\d+)" + _TAIL),
    (Platform.TIDAL, r"https?://(?:listen\.|www\.)?tidal\.com/(?:browse/)?track/(?P<id>\d+)" + _TAIL),
    (
        Platform.YOUTUBE_MUSIC,
        r"https?://music\.youtube\.com/watch\?(?:[^#\s]*&)?v=(?P<id>[A-Za-z0-9_-]{11})\S*",
    ),
    (
        Platform.YOUTUBE,
        r"https?://(?:www\.|m\.)?youtube\.com/watch\?(?:[^#\s]*&)?v=(?P<id>[A-Za-z0-9_-]{11})\S*",
    ),
    (Platform.YOUTUBE, r"https?://youtu\.be/(?P<id>[A-Za-z0-9_-]{11})(?:[?#]\S*)?"),
    (
        Platform.SOUNDCLOUD,
        r"https?://(?:www\.|m\.)?soundcloud\.com/"
        r"(?P<id>(?!(?:discover|search|charts|stream|you|upload)/)[A-Za-z0-9_-]+/"
        r"(?!(?:sets|likes|reposts|tracks|albums|popular-tracks|followers|following|comments)(?:[/?#\s]|$))"
        r"[A-Za-z0-9_-]+)/?(?:[?#]\S*)?",
    ),
)

_SEARCH_PATTERNS = tuple((platform, re.compile(body)) for platform, body in _PATTERN_BODIES)
_CANONICAL_PATTERNS = tuple((platform, re.compile(rf"^{body}$")) for platform, body in _PATTERN_BODIES)


@dataclass(frozen=True)
class PlatformMatch:
    platform: Platform
    platform_id: str


def detect_platform(url: str) -> Optional[Platform]:
    """Return the platform whose track-page pattern appears in ``url``."""
    raw = url or ""
    for platform, pattern in _SEARCH_PATTERNS:
        if pattern.search(raw):
            return platform
    return None


def is_canonical(url: str) -> bool:
    """True when ``url`` is exactly a track page of its detected platform."""
    platform = detect_platform(url)
    if platform is None:
        return False
    trimmed = (url or "").strip()
    return any(
        pattern.match(trimmed)
        for candidate, pattern in _CANONICAL_PATTERNS
        if candidate == platform
    )


def extract_platform_id(url: str) -> Optional[PlatformMatch]:
    """Extract ``(platform, platform_id)`` from a canonical track URL."""
    trimmed = (url or "").strip()
    for platform, pattern in _CANONICAL_PATTERNS:
        match = pattern.match(trimmed)
        if match:
            return PlatformMatch(platform=platform, platform_id=match.group("id"))
    return None
