"""SQLite migrations for resolved track storage."""

from __future__ import annotations

import sqlite3


def ensure_resolved_track_tables(conn: sqlite3.Connection) -> None:
    """Ensure resolved track, link and ownership tables exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS resolved_tracks (
            id TEXT PRIMARY KEY,
            isrc TEXT UNIQUE,
            title TEXT NOT NULL,
            artist TEXT NOT NULL,
            album TEXT,
            duration_ms INTEGER,
            release_date TEXT,
            source_url TEXT,
            artwork_url TEXT,
            user_confirmed INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS track_links (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            track_id TEXT NOT NULL,
            platform TEXT NOT NULL,
            platform_id TEXT NOT NULL,
            url_web TEXT NOT NULL,
            url_app TEXT,
            storefront TEXT,
            confidence REAL NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (track_id) REFERENCES resolved_tracks(id) ON DELETE CASCADE,
            UNIQUE (track_id, platform)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_track_links_platform_id "
        "ON track_links (platform, platform_id)"
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS track_claims (
            track_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            claimed_at TEXT NOT NULL,
            FOREIGN KEY (track_id) REFERENCES resolved_tracks(id) ON DELETE CASCADE,
            PRIMARY KEY (track_id, user_id)
        )
        """
    )
    conn.commit()
