from __future__ import annotations

import pytest

from input.platform_patterns import detect_platform, extract_platform_id, is_canonical
from metadata.types import Platform


@pytest.mark.parametrize(
    "url, platform, platform_id",
    [
        ("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC", Platform.SPOTIFY, "4uLU6hMCjMI75M1A2tKUQC"),
        ("https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC?si=abc123", Platform.SPOTIFY, "4uLU6hMCjMI75M1A2tKUQC"),
        ("https://open.spotify.com/intl-de/track/4uLU6hMCjMI75M1A2tKUQC", Platform.SPOTIFY, "4uLU6hMCjMI75M1A2tKUQC"),
        ("spotify:track:4uLU6hMCjMI75M1A2tKUQC", Platform.SPOTIFY, "4uLU6hMCjMI75M1A2tKUQC"),
        (
            "https://music.apple.com/us/album/blinding-lights/1499378108?i=1499378615",
            Platform.APPLE_MUSIC,
            "1499378615",
        ),
        ("https://music.apple.com/gb/song/blinding-lights/1499378615", Platform.APPLE_MUSIC, "1499378615"),
        ("https://www.deezer.com/en/track/908604612", Platform.DEEZER, "908604612"),
        ("https://tidal.com/browse/track/134858527", Platform.TIDAL, "134858527"),
        ("https://music.youtube.com/watch?v=4NRXx6U8ABQ", Platform.YOUTUBE_MUSIC, "4NRXx6U8ABQ"),
        ("https://www.youtube.com/watch?v=4NRXx6U8ABQ", Platform.YOUTUBE, "4NRXx6U8ABQ"),
        ("https://youtu.be/4NRXx6U8ABQ", Platform.YOUTUBE, "4NRXx6U8ABQ"),
        ("https://soundcloud.com/theweeknd/blinding-lights", Platform.SOUNDCLOUD, "theweeknd/blinding-lights"),
    ],
)
def test_track_urls_are_canonical(url: str, platform: Platform, platform_id: str) -> None:
    assert detect_platform(url) == platform
    assert is_canonical(url) is True
    match = extract_platform_id(url)
    assert match is not None
    assert match.platform == platform
    assert match.platform_id == platform_id


@pytest.mark.parametrize(
    "url",
    [
        "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M",
        "https://open.spotify.com/album/4yP0hdKOZPNshxUOjY0cZj",
        "https://music.apple.com/us/album/after-hours/1499378108",
        "https://www.deezer.com/en/album/137217782",
        "https://soundcloud.com/theweeknd/sets/after-hours",
        "https://open.spotify.com/search/blinding%20lights",
        "https://open.spotify.com/artist/1Xyo4u8uXC1ZmMpatF05PJ",
        "https://music.apple.com/us/artist/the-weeknd/479756766",
        "https://www.deezer.com/en/artist/4050205",
        "https://soundcloud.com/search/sounds?q=x",
        "https://music.youtube.com/search?q=x",
        "https://example.com/track/123",
        "",
    ],
)
def test_non_track_urls_are_rejected(url: str) -> None:
    assert is_canonical(url) is False
    assert extract_platform_id(url) is None


def test_embedded_track_url_is_detected_but_not_canonical() -> None:
    text = "listen to this https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC"

    assert detect_platform(text) == Platform.SPOTIFY
    assert is_canonical(text) is False


def test_surrounding_whitespace_is_ignored() -> None:
    assert is_canonical("  https://www.deezer.com/track/908604612\n") is True
