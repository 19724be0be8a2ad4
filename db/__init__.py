"""Database helpers for resolved tracks."""

from db.resolved_tracks import ResolvedTrackStore, UpsertResult, save_resolution

__all__ = ["ResolvedTrackStore", "UpsertResult", "save_resolution"]
