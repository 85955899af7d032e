"""Database operations for metadata lookups and engine state."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

from .models import MetadataCacheEntry


class Database:
    """SQLite database for the metadata cache and small engine flags."""

    def __init__(self, db_path: str):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS metadata_cache (
                    cache_key TEXT PRIMARY KEY,
                    tmdb_id INTEGER,
                    tvdb_id INTEGER,
                    confidence INTEGER NOT NULL DEFAULT 0,
                    last_lookup TIMESTAMP NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_metadata_cache_last_lookup
                ON metadata_cache(last_lookup)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS engine_state (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    @contextmanager
    def get_connection(self):
        """Get database connection context manager."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def get_all_metadata_cache(self) -> Dict[str, MetadataCacheEntry]:
        """Load every cached lookup.

        Returns:
            Dict mapping cache key to entry
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT cache_key, tmdb_id, tvdb_id, confidence, last_lookup
                FROM metadata_cache
                """
            )
            result = {}
            for row in cursor.fetchall():
                result[row["cache_key"]] = MetadataCacheEntry(
                    tmdb_id=row["tmdb_id"],
                    tvdb_id=row["tvdb_id"],
                    confidence=row["confidence"],
                    last_lookup=_parse_timestamp(row["last_lookup"]),
                )
            return result

    def set_multiple_metadata_cache(self, entries: Dict[str, MetadataCacheEntry]):
        """Store multiple lookups in the cache.

        Args:
            entries: Dict mapping cache key to entry
        """
        if not entries:
            return

        with self.get_connection() as conn:
            cursor = conn.cursor()
            data = [
                (
                    key,
                    entry.tmdb_id,
                    entry.tvdb_id,
                    entry.confidence,
                    (entry.last_lookup or datetime.now(timezone.utc)).isoformat(),
                )
                for key, entry in entries.items()
            ]
            cursor.executemany(
                """
                INSERT OR REPLACE INTO metadata_cache
                (cache_key, tmdb_id, tvdb_id, confidence, last_lookup)
                VALUES (?, ?, ?, ?, ?)
                """,
                data
            )
            conn.commit()

    def delete_stale_metadata_cache(self, max_age_days: int, now: Optional[datetime] = None) -> int:
        """Delete lookups older than max_age_days.

        Args:
            max_age_days: Maximum age before an entry is stale
            now: Reference time (defaults to current UTC time)

        Returns:
            Number of deleted rows
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=max_age_days)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM metadata_cache WHERE last_lookup < ?",
                (cutoff.isoformat(),)
            )
            conn.commit()
            return cursor.rowcount

    def clear_metadata_cache(self) -> int:
        """Delete every cached lookup.

        Returns:
            Number of deleted rows
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM metadata_cache")
            conn.commit()
            return cursor.rowcount

    def count_metadata_cache(self) -> int:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) as count FROM metadata_cache")
            return cursor.fetchone()["count"]

    def get_state(self, key: str) -> Optional[str]:
        """Get a persisted engine flag.

        Args:
            key: State key

        Returns:
            Stored value or None
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM engine_state WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def set_state(self, key: str, value: Optional[str]):
        """Persist an engine flag; None removes it."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            if value is None:
                cursor.execute("DELETE FROM engine_state WHERE key = ?", (key,))
            else:
                cursor.execute(
                    """
                    INSERT OR REPLACE INTO engine_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (key, value, datetime.now(timezone.utc).isoformat())
                )
            conn.commit()


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
