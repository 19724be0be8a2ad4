"""Token-set similarity and weighted match scoring for candidate tracks."""

from __future__ import annotations

import re
from typing import Any

from config.settings import (
    ARTIST_WEIGHT,
    DURATION_TOLERANCE_MS,
    DURATION_WEIGHT,
    ISRC_WEIGHT,
    MIN_ISRC_LENGTH,
    TITLE_WEIGHT,
)

_TRAILING_FEAT_RE = re.compile(r"\s*\(\s*feat\.[^)]*\)\s*$", re.IGNORECASE)
_SEPARATOR_RE = re.compile(r"[\(\)\[\]\{\}\-_.]")
_WS_RE = re.compile(r"\s+")


def normalize(value: Any) -> str:
    text = str(value or "").lower()
    text = _TRAILING_FEAT_RE.sub("", text)
    text = _SEPARATOR_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def tokenize(value: Any) -> set[str]:
    normalized = normalize(value)
    return set(normalized.split(" ")) if normalized else set()


def similarity(a: Any, b: Any) -> float:
    """Share of tokens the two strings have in common, relative to the larger set."""
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def _field(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def score_match(query: Any, hit: Any) -> float:
    """Confidence that ``hit`` is the same recording as ``query``.

    ``hit`` only needs ``title``, ``artist`` and optionally ``duration_ms`` and
    ``isrc``; both dicts and attribute objects are accepted. Without an ISRC the
    score can not exceed ``TITLE_WEIGHT + ARTIST_WEIGHT + DURATION_WEIGHT``.
    """
    score = 0.0
    isrc = str(_field(hit, "isrc") or "").strip()
    if len(isrc) >= MIN_ISRC_LENGTH:
        score += ISRC_WEIGHT
    score += similarity(_field(query, "title"), _field(hit, "title")) * TITLE_WEIGHT
    score += similarity(_field(query, "artist"), _field(hit, "artist")) * ARTIST_WEIGHT

    query_duration = _field(query, "duration_ms")
    hit_duration = _field(hit, "duration_ms")
    if query_duration is not None and hit_duration is not None:
        try:
            delta = abs(int(query_duration) - int(hit_duration))
        except (TypeError, ValueError):
            delta = None
        if delta is not None and delta <= DURATION_TOLERANCE_MS:
            score += DURATION_WEIGHT
    return min(score, 1.0)
