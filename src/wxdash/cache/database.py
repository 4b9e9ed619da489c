"""DuckDB cache database for wxdash."""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import duckdb

from wxdash.cache.models import FetchLog, SlotIdentity, SlotKind
from wxdash.config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

# SQL schema - DuckDB uses sequences for auto-increment
SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS seq_fetch_log_id START 1;

-- Weather payload cache, one row per slot identity
CREATE TABLE IF NOT EXISTS weather_cache (
    slot_kind VARCHAR NOT NULL,
    slot_value VARCHAR NOT NULL,
    payload VARCHAR,
    observations VARCHAR,
    observations_available BOOLEAN NOT NULL DEFAULT FALSE,
    location_display VARCHAR,
    fetched_at VARCHAR,
    written_at TIMESTAMP NOT NULL,
    PRIMARY KEY (slot_kind, slot_value)
);

-- Small key/value records: favorites, last viewed place, preferences
CREATE TABLE IF NOT EXISTS app_state (
    key VARCHAR PRIMARY KEY,
    value VARCHAR NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

-- Fetch log for debugging/monitoring
CREATE TABLE IF NOT EXISTS fetch_log (
    id INTEGER DEFAULT nextval('seq_fetch_log_id') PRIMARY KEY,
    source VARCHAR NOT NULL,
    slot VARCHAR,
    timestamp TIMESTAMP NOT NULL,
    status VARCHAR NOT NULL,
    duration_ms INTEGER,
    error_message VARCHAR
);

CREATE INDEX IF NOT EXISTS idx_fetch_log_time ON fetch_log(timestamp);
"""


def _utcnow() -> datetime:
    """Naive UTC timestamp for TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheDatabase:
    """DuckDB cache database manager.

    Stores raw rows only; serialization of payloads and timestamps lives in
    ``WeatherCache``. Each weather row is addressed by its slot kind and
    value, so no key-prefix parsing is ever needed.

    Example:
        >>> db = CacheDatabase()
        >>> db.get_cache_row(SlotIdentity.for_uid("loc_45.5200_-122.6800"))
        (...)
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to DuckDB file. Creates if doesn't exist.
        """
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._init_schema()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get database connection (lazy initialization with retry)."""
        if self._conn is None:
            self._conn = self._connect_with_retry()
        return self._conn

    def _connect_with_retry(self, max_retries: int = 3) -> duckdb.DuckDBPyConnection:
        """Connect to database with retry logic for lock handling."""
        last_error = None
        for attempt in range(max_retries):
            try:
                return duckdb.connect(str(self.db_path))
            except duckdb.IOException as e:
                last_error = e
                if "lock" in str(e).lower() and attempt < max_retries - 1:
                    wait_time = 0.5 * (2 ** attempt)  # Exponential backoff
                    logger.warning(f"Database locked, retrying in {wait_time}s...")
                    time.sleep(wait_time)
                else:
                    raise
        raise last_error

    def _init_schema(self) -> None:
        """Initialize database schema."""
        # DuckDB executes multiple statements with execute()
        for statement in SCHEMA_SQL.split(";"):
            statement = statement.strip()
            if statement:
                self.conn.execute(statement)
        logger.info(f"Cache database initialized at {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------------------------------
    # Weather Cache Operations
    # -------------------------------------------------------------------------

    def get_cache_row(self, slot: SlotIdentity) -> Optional[tuple]:
        """Get the raw cache row for a slot.

        Returns:
            Tuple of (payload, observations, observations_available,
            location_display, fetched_at), or None if the slot is empty
        """
        return self.conn.execute(
            """
            SELECT payload, observations, observations_available,
                   location_display, fetched_at
            FROM weather_cache
            WHERE slot_kind = ? AND slot_value = ?
            """,
            [slot.kind.value, slot.value],
        ).fetchone()

    def get_fetched_at(self, slot: SlotIdentity) -> Optional[str]:
        """Get only the stored fetch timestamp string for a slot."""
        result = self.conn.execute(
            "SELECT fetched_at FROM weather_cache WHERE slot_kind = ? AND slot_value = ?",
            [slot.kind.value, slot.value],
        ).fetchone()
        return result[0] if result else None

    def store_cache_row(
        self,
        slot: SlotIdentity,
        payload: str,
        observations: Optional[str],
        observations_available: bool,
        location_display: str,
        fetched_at: str,
    ) -> None:
        """Store a cache row, fully replacing any previous row for the slot.

        Args:
            slot: Slot to write
            payload: Serialized weather payload
            observations: Serialized observations payload, if any
            observations_available: Whether observations were fetched
            location_display: "City, ST" display string
            fetched_at: ISO-8601 fetch initiation time
        """
        self.conn.execute(
            """
            INSERT INTO weather_cache
            (slot_kind, slot_value, payload, observations, observations_available,
             location_display, fetched_at, written_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (slot_kind, slot_value)
            DO UPDATE SET
                payload = EXCLUDED.payload,
                observations = EXCLUDED.observations,
                observations_available = EXCLUDED.observations_available,
                location_display = EXCLUDED.location_display,
                fetched_at = EXCLUDED.fetched_at,
                written_at = EXCLUDED.written_at
            """,
            [
                slot.kind.value,
                slot.value,
                payload,
                observations,
                observations_available,
                location_display,
                fetched_at,
                _utcnow(),
            ],
        )

    def delete_cache_row(self, slot: SlotIdentity) -> None:
        """Remove the cache row for a slot (no-op if absent)."""
        self.conn.execute(
            "DELETE FROM weather_cache WHERE slot_kind = ? AND slot_value = ?",
            [slot.kind.value, slot.value],
        )

    def delete_all_cache_rows(self) -> int:
        """Remove every cache row.

        Returns:
            Number of rows deleted
        """
        count = self.conn.execute("SELECT COUNT(*) FROM weather_cache").fetchone()[0]
        self.conn.execute("DELETE FROM weather_cache")
        logger.info(f"Cleared {count} cached weather records")
        return count

    def list_cache_slots(self) -> list[tuple[SlotIdentity, Optional[str]]]:
        """List every cached slot with its fetch timestamp string."""
        results = self.conn.execute(
            """
            SELECT slot_kind, slot_value, fetched_at
            FROM weather_cache
            ORDER BY slot_kind, slot_value
            """
        ).fetchall()

        return [
            (SlotIdentity(SlotKind(row[0]), row[1]), row[2])
            for row in results
        ]

    # -------------------------------------------------------------------------
    # App State Operations
    # -------------------------------------------------------------------------

    def get_state(self, key: str) -> Optional[str]:
        """Get an app_state value by key."""
        result = self.conn.execute(
            "SELECT value FROM app_state WHERE key = ?",
            [key],
        ).fetchone()
        return result[0] if result else None

    def set_state(self, key: str, value: str) -> None:
        """Set an app_state value, replacing any previous value."""
        self.conn.execute(
            """
            INSERT INTO app_state (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
            """,
            [key, value, _utcnow()],
        )

    def delete_state(self, key: str) -> None:
        """Remove an app_state value (no-op if absent)."""
        self.conn.execute("DELETE FROM app_state WHERE key = ?", [key])

    # -------------------------------------------------------------------------
    # Logging Operations
    # -------------------------------------------------------------------------

    def log_fetch(
        self,
        source: str,
        status: str,
        duration_ms: int,
        slot: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Log an upstream fetch operation."""
        self.conn.execute(
            """
            INSERT INTO fetch_log (source, slot, timestamp, status, duration_ms, error_message)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [source, slot, _utcnow(), status, duration_ms, error_message],
        )

    def get_fetch_log(self, limit: int = 20) -> list[FetchLog]:
        """Get the most recent fetch log entries, newest first."""
        results = self.conn.execute(
            """
            SELECT source, timestamp, status, duration_ms, slot, error_message
            FROM fetch_log
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            [limit],
        ).fetchall()

        return [
            FetchLog(
                source=row[0],
                timestamp=row[1],
                status=row[2],
                duration_ms=row[3] or 0,
                slot=row[4],
                error_message=row[5],
            )
            for row in results
        ]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get cache statistics."""
        cache_count = self.conn.execute(
            "SELECT COUNT(*) FROM weather_cache"
        ).fetchone()[0]

        fetch_count = self.conn.execute(
            "SELECT COUNT(*) FROM fetch_log"
        ).fetchone()[0]

        failed_count = self.conn.execute(
            "SELECT COUNT(*) FROM fetch_log WHERE status = 'error'"
        ).fetchone()[0]

        return {
            "cache_count": cache_count,
            "fetch_count": fetch_count,
            "failed_fetch_count": failed_count,
            "db_path": str(self.db_path),
        }
