"""Error taxonomy for track resolution."""

from __future__ import annotations

from typing import Any


class ResolutionError(Exception):
    """Terminal resolution failure reported to the caller as a structured code."""

    code = "resolution_error"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class UnsupportedUrlError(ResolutionError):
    """URL is not a canonical track page on any known platform."""

    code = "unsupported_url"
    status_code = 400


class MissingInputError(ResolutionError):
    code = "missing_input"
    status_code = 400


class MetadataExtractionFailed(ResolutionError):
    """Neither the authoritative nor the fallback source produced title/artist."""

    code = "metadata_extraction_failed"
    status_code = 422


class NoConfidentLinksFound(ResolutionError):
    code = "no_confident_links"
    status_code = 424


class PersistenceError(ResolutionError):
    code = "persistence_failed"
    status_code = 500


class NoMatchError(Exception):
    """A metadata provider answered but had no usable result."""


class ProviderError(Exception):
    """A provider call failed (credentials, transport, status or payload)."""
