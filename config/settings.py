"""Application settings constants."""

from __future__ import annotations

# Minimum confidence a hit needs to be returned or persisted.
CONFIDENCE_THRESHOLD = 0.9

# Match scoring weights. ISRC agreement dominates; text and duration corroborate.
ISRC_WEIGHT = 0.8
TITLE_WEIGHT = 0.12
ARTIST_WEIGHT = 0.08
DURATION_WEIGHT = 0.05

# Allowed absolute difference between query and candidate durations.
DURATION_TOLERANCE_MS = 2000

# Shorter ISRC values are treated as absent.
MIN_ISRC_LENGTH = 8

# Cached bearer tokens are considered expired this long before the provider says so.
TOKEN_EXPIRY_MARGIN_SECONDS = 300

DEFAULT_STOREFRONT = "us"

PROVIDER_TIMEOUT_SECONDS = 15

# Text-search fallbacks only accept results that overlap the query at least this much.
ENRICHMENT_MIN_SIMILARITY = 0.5

SPOTIFY_CLIENT_ID_ENV = "SPOTIFY_CLIENT_ID"
SPOTIFY_CLIENT_SECRET_ENV = "SPOTIFY_CLIENT_SECRET"
AUDD_API_TOKEN_ENV = "AUDD_API_TOKEN"
APPLE_MUSIC_DEVELOPER_TOKEN_ENV = "APPLE_MUSIC_DEVELOPER_TOKEN"
TIDAL_CLIENT_ID_ENV = "TIDAL_CLIENT_ID"
TIDAL_CLIENT_SECRET_ENV = "TIDAL_CLIENT_SECRET"
DB_PATH_ENV = "RESOLVER_DB_PATH"
API_TOKENS_ENV = "RESOLVER_API_TOKENS"
LOG_LEVEL_ENV = "RESOLVER_LOG_LEVEL"
# YouTube Music and SoundCloud are text-search providers; off unless enabled.
SEARCH_PROVIDERS_ENV = "RESOLVER_SEARCH_PROVIDERS"
