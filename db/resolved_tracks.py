"""Persistence for resolved tracks, their platform links and user claims."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from db.migrations import ensure_resolved_track_tables
from engine.errors import PersistenceError
from engine.json_utils import log_event
from metadata.types import CoreMeta, Platform, Resolution, ResolveHit

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UpsertResult:
    track_id: str
    links: list[ResolveHit] = field(default_factory=list)
    skipped: bool = False


def _row_to_hit(row: sqlite3.Row) -> ResolveHit:
    return ResolveHit(
        platform=Platform(row["platform"]),
        platform_id=str(row["platform_id"]),
        url_web=str(row["url_web"]),
        url_app=row["url_app"],
        storefront=row["storefront"],
        confidence=float(row["confidence"]),
    )


class ResolvedTrackStore:
    """SQLite store keyed by ISRC when one is known."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        ensure_resolved_track_tables(conn)
        return conn

    def ensure_schema(self) -> None:
        conn = self._connect()
        conn.close()

    def find_track_by_isrc(self, isrc: str) -> dict[str, Any] | None:
        cleaned = (isrc or "").strip().upper()
        if not cleaned:
            return None
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM resolved_tracks WHERE isrc=?", (cleaned,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def get_track(self, track_id: str) -> dict[str, Any] | None:
        """Return the stored track with its ``links`` list, or ``None``."""
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM resolved_tracks WHERE id=?", (track_id,)).fetchone()
            if not row:
                return None
            track = dict(row)
            track["user_confirmed"] = bool(track["user_confirmed"])
            links = conn.execute(
                "SELECT * FROM track_links WHERE track_id=? ORDER BY id ASC",
                (track_id,),
            ).fetchall()
            track["links"] = [_row_to_hit(link) for link in links]
            return track
        finally:
            conn.close()

    def set_user_confirmed(self, track_id: str, confirmed: bool = True) -> bool:
        conn = self._connect()
        try:
            cur = conn.execute(
                "UPDATE resolved_tracks SET user_confirmed=?, updated_at=? WHERE id=?",
                (1 if confirmed else 0, _utc_now(), track_id),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def _existing_track_id(self, cur: sqlite3.Cursor, core: CoreMeta, links: list[ResolveHit]) -> str | None:
        if core.isrc:
            cur.execute("SELECT id FROM resolved_tracks WHERE isrc=?", (core.isrc,))
            row = cur.fetchone()
            if row:
                return str(row["id"])
            return None
        for hit in links:
            cur.execute(
                "SELECT track_id FROM track_links WHERE platform=? AND platform_id=? LIMIT 1",
                (hit.platform.value, hit.platform_id),
            )
            row = cur.fetchone()
            if row:
                return str(row["track_id"])
        return None

    def upsert_resolved(
        self,
        core: CoreMeta,
        links: list[ResolveHit],
        *,
        overwrite: bool = False,
    ) -> UpsertResult:
        """Write the track and all its links in one transaction.

        A user-confirmed record is left untouched unless ``overwrite`` is set;
        the result then reports ``skipped`` with no links. Links stored for
        platforms missing from ``links`` are removed.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to open track store: {exc}") from exc
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            track_id = self._existing_track_id(cur, core, links)
            now = _utc_now()
            if track_id is not None:
                cur.execute("SELECT user_confirmed FROM resolved_tracks WHERE id=?", (track_id,))
                row = cur.fetchone()
                if row and row["user_confirmed"] and not overwrite:
                    conn.commit()
                    log_event(logging.INFO, "resolved_track_protected", track_id=track_id)
                    return UpsertResult(track_id=track_id, links=[], skipped=True)
                cur.execute(
                    """
                    UPDATE resolved_tracks
                    SET isrc=COALESCE(?, isrc), title=?, artist=?, album=?, duration_ms=?,
                        release_date=?, source_url=?, artwork_url=?, updated_at=?
                    WHERE id=?
                    """,
                    (
                        core.isrc,
                        core.title,
                        core.artist,
                        core.album,
                        core.duration_ms,
                        core.release_date,
                        core.source_url,
                        core.artwork_url,
                        now,
                        track_id,
                    ),
                )
            else:
                track_id = str(uuid.uuid4())
                cur.execute(
                    """
                    INSERT INTO resolved_tracks (
                        id, isrc, title, artist, album, duration_ms, release_date,
                        source_url, artwork_url, user_confirmed, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        track_id,
                        core.isrc,
                        core.title,
                        core.artist,
                        core.album,
                        core.duration_ms,
                        core.release_date,
                        core.source_url,
                        core.artwork_url,
                        now,
                        now,
                    ),
                )
            platforms = [hit.platform.value for hit in links]
            if platforms:
                placeholders = ",".join("?" for _ in platforms)
                cur.execute(
                    f"DELETE FROM track_links WHERE track_id=? AND platform NOT IN ({placeholders})",
                    (track_id, *platforms),
                )
            else:
                cur.execute("DELETE FROM track_links WHERE track_id=?", (track_id,))
            cur.executemany(
                """
                INSERT INTO track_links (
                    track_id, platform, platform_id, url_web, url_app, storefront, confidence, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(track_id, platform) DO UPDATE SET
                    platform_id=excluded.platform_id,
                    url_web=excluded.url_web,
                    url_app=excluded.url_app,
                    storefront=excluded.storefront,
                    confidence=excluded.confidence,
                    updated_at=excluded.updated_at
                """,
                [
                    (
                        track_id,
                        hit.platform.value,
                        hit.platform_id,
                        hit.url_web,
                        hit.url_app,
                        hit.storefront,
                        float(hit.confidence),
                        now,
                    )
                    for hit in links
                ],
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"failed to store resolved track: {exc}") from exc
        finally:
            conn.close()
        log_event(logging.INFO, "resolved_track_stored", track_id=track_id, links=len(links))
        return UpsertResult(track_id=track_id, links=list(links), skipped=False)

    def claim_ownership(self, track_id: str, user_id: str) -> bool:
        """Record that ``user_id`` owns ``track_id``; returns ``False`` if already claimed."""
        conn = self._connect()
        try:
            cur = conn.execute(
                "INSERT OR IGNORE INTO track_claims (track_id, user_id, claimed_at) VALUES (?, ?, ?)",
                (track_id, user_id, _utc_now()),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()


def save_resolution(
    store: ResolvedTrackStore,
    resolution: Resolution,
    *,
    overwrite: bool = False,
    user_id: str | None = None,
) -> UpsertResult:
    """Persist ``resolution`` and, for an authenticated caller, claim the track.

    The claim is only made when the record was actually written. A skipped
    write (confirmed record, no overwrite) leaves claims untouched. Claim
    failures are logged and never fail the save.
    """
    result = store.upsert_resolved(resolution.core, resolution.links, overwrite=overwrite)
    if user_id and not result.skipped:
        try:
            store.claim_ownership(result.track_id, user_id)
        except Exception:
            logger.exception("Ownership claim failed track_id=%s user_id=%s", result.track_id, user_id)
    return result
