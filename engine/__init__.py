from .errors import (
    MetadataExtractionFailed,
    MissingInputError,
    NoConfidentLinksFound,
    PersistenceError,
    ResolutionError,
    UnsupportedUrlError,
)

__all__ = [
    "MetadataExtractionFailed",
    "MissingInputError",
    "NoConfidentLinksFound",
    "PersistenceError",
    "ResolutionError",
    "UnsupportedUrlError",
]
