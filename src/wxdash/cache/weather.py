"""Durable weather cache.

Wraps ``CacheDatabase`` with payload serialization, a memory tier for
deserialized entries, and the fetch-timestamp provenance rules:

- A write without an explicit timestamp keeps the slot's existing
  ``fetched_at``, so enriching a payload after the fact (for example,
  attaching a tide station found later) never moves the "updated N minutes
  ago" indicator.
- Every write is mirrored to the legacy ``default`` slot.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from wxdash.cache.database import CacheDatabase
from wxdash.cache.identity import location_display_name
from wxdash.cache.memory import MemoryTier
from wxdash.cache.models import CacheEntry, SlotIdentity
from wxdash.errors import StorageCorrupt

logger = logging.getLogger(__name__)

_DATETIME_TAG = "__datetime__"
_DATE_TAG = "__date__"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_object(obj: dict) -> Any:
    if len(obj) == 1:
        if _DATETIME_TAG in obj:
            return datetime.fromisoformat(obj[_DATETIME_TAG])
        if _DATE_TAG in obj:
            return date.fromisoformat(obj[_DATE_TAG])
    return obj


def dumps_payload(payload: Any) -> str:
    """Serialize a payload, tagging datetime values so they round-trip."""
    return json.dumps(payload, default=_encode_value)


def loads_payload(raw: str) -> Any:
    """Inverse of ``dumps_payload``."""
    return json.loads(raw, object_hook=_decode_object)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 string for a fetch timestamp (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(raw: str) -> datetime:
    """Parse a stored fetch timestamp.

    Accepts JavaScript ``toISOString()`` output ("...Z") from older caches.

    Raises:
        ValueError: If the string is not an ISO-8601 timestamp
    """
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# -----------------------------------------------------------------------------
# Timestamp provenance
# -----------------------------------------------------------------------------


@dataclass
class TimestampResolution:
    """Which fallback source supplied a fetch timestamp."""

    source: str  # 'existing-slot', 'default-slot', 'last-known-fetch', 'now'
    value: datetime

    @property
    def is_last_resort(self) -> bool:
        return self.source == "now"


class WeatherCache:
    """Durable tier of the weather cache.

    Example:
        >>> db = CacheDatabase()
        >>> cache = WeatherCache(db)
        >>> slot = SlotIdentity.for_uid("loc_45.5200_-122.6800")
        >>> cache.save(slot, payload, observations, fetched_at=started)
        >>> cache.load(slot).fetched_at == started
        True
    """

    def __init__(
        self,
        db: CacheDatabase,
        memory: Optional[MemoryTier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the weather cache.

        Args:
            db: CacheDatabase instance for persistence
            memory: Memory tier for deserialized entries (created if omitted)
            clock: Source of "now" for the last-resort timestamp
        """
        self.db = db
        self.memory = memory if memory is not None else MemoryTier()
        self._clock = clock
        # Most recent fetch initiation time seen by this process
        self.last_known_fetch: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load(self, slot: SlotIdentity) -> Optional[CacheEntry]:
        """Load a cached entry.

        Returns:
            CacheEntry, or None if the slot is empty, lacks a location string
            or timestamp, or holds a corrupt record (which is cleared)
        """
        row = self.db.get_cache_row(slot)
        if row is None:
            logger.debug(f"Cache MISS for {slot}")
            return None

        payload_raw, observations_raw, available, location_display, fetched_raw = row
        if payload_raw is None or location_display is None or not fetched_raw:
            logger.debug(f"Cache MISS for {slot} (incomplete record)")
            return None

        cached = self.memory.get(slot, fetched_raw)
        if cached is not None:
            logger.debug(f"Cache HIT for {slot} (memory)")
            return cached

        try:
            entry = self._deserialize(
                payload_raw, observations_raw, available, location_display, fetched_raw
            )
        except StorageCorrupt as e:
            logger.warning(f"Corrupt cache record for {slot}, clearing: {e}")
            self.clear(slot)
            return None

        self.memory.put(slot, fetched_raw, entry)
        logger.debug(f"Cache HIT for {slot} (fetched_at={fetched_raw})")
        return entry

    def _deserialize(
        self,
        payload_raw: str,
        observations_raw: Optional[str],
        available: bool,
        location_display: str,
        fetched_raw: str,
    ) -> CacheEntry:
        try:
            weather = loads_payload(payload_raw)
            observations = (
                loads_payload(observations_raw) if observations_raw is not None else None
            )
            fetched_at = parse_timestamp(fetched_raw)
        except (ValueError, TypeError) as e:
            raise StorageCorrupt(str(e)) from e

        if not isinstance(weather, dict):
            raise StorageCorrupt(f"payload is {type(weather).__name__}, expected object")

        return CacheEntry(
            weather=weather,
            fetched_at=fetched_at,
            observations=observations,
            observations_available=bool(available),
            location_display=location_display,
        )

    def get_fetched_at(self, slot: SlotIdentity) -> Optional[datetime]:
        """Stored fetch timestamp for a slot, or None if absent or unreadable."""
        raw = self.db.get_fetched_at(slot)
        if not raw:
            return None
        try:
            return parse_timestamp(raw)
        except ValueError:
            logger.warning(f"Unreadable fetched_at for {slot}: {raw!r}")
            return None

    def slots(self) -> list[tuple[SlotIdentity, Optional[datetime]]]:
        """Every cached slot with its fetch timestamp."""
        result = []
        for slot, raw in self.db.list_cache_slots():
            try:
                fetched_at = parse_timestamp(raw) if raw else None
            except ValueError:
                fetched_at = None
            result.append((slot, fetched_at))
        return result

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def resolve_fetched_at(self, slot: SlotIdentity) -> TimestampResolution:
        """Find the timestamp a write without one should carry.

        Sources are consulted in order: the slot's own timestamp, the
        default slot's, the last fetch this process started, and finally
        the current time (logged as an error).
        """
        sources: list[tuple[str, Callable[[], Optional[datetime]]]] = [
            ("existing-slot", lambda: self.get_fetched_at(slot)),
            ("default-slot", lambda: self.get_fetched_at(SlotIdentity.default())),
            ("last-known-fetch", lambda: self.last_known_fetch),
        ]
        for name, source in sources:
            value = source()
            if value is not None:
                logger.debug(f"fetched_at for {slot} from {name}: {value.isoformat()}")
                return TimestampResolution(name, value)

        now = self._clock()
        logger.error(
            f"No fetch timestamp available for {slot}; "
            f"falling back to current time {now.isoformat()}"
        )
        return TimestampResolution("now", now)

    def save(
        self,
        slot: SlotIdentity,
        weather: dict,
        observations: Optional[dict] = None,
        fetched_at: Optional[datetime] = None,
        observations_available: Optional[bool] = None,
    ) -> datetime:
        """Write a weather payload to a slot and mirror it to the default slot.

        Args:
            slot: Slot to write
            weather: Weather payload (should carry a "location" mapping)
            observations: Station observations payload, if any
            fetched_at: When the upstream fetch started. Omit to keep the
                slot's existing timestamp.
            observations_available: Defaults to ``observations is not None``

        Returns:
            The fetched_at value actually written
        """
        if fetched_at is None:
            fetched_at = self.resolve_fetched_at(slot).value
        else:
            self.last_known_fetch = fetched_at

        if observations_available is None:
            observations_available = observations is not None

        self._write(slot, weather, observations, observations_available, fetched_at)
        if not slot.is_default:
            self._write(
                SlotIdentity.default(), weather, observations,
                observations_available, fetched_at,
            )

        logger.info(f"Cached weather for {slot} (fetched_at={fetched_at.isoformat()})")
        return fetched_at

    def _write(
        self,
        slot: SlotIdentity,
        weather: dict,
        observations: Optional[dict],
        observations_available: bool,
        fetched_at: datetime,
    ) -> None:
        self.db.store_cache_row(
            slot=slot,
            payload=dumps_payload(weather),
            observations=dumps_payload(observations) if observations is not None else None,
            observations_available=observations_available,
            location_display=location_display_name(weather.get("location")),
            fetched_at=format_timestamp(fetched_at),
        )
        # Same fetched_at can carry new content (enrichment), so drop old entries
        self.memory.purge(slot)

    def copy(self, source: SlotIdentity, target: SlotIdentity) -> bool:
        """Copy a slot's contents, keeping its fetched_at. Not mirrored to default.

        Returns:
            True if the source existed and was copied
        """
        entry = self.load(source)
        if entry is None:
            return False

        self._write(
            target,
            entry.weather,
            entry.observations,
            entry.observations_available,
            entry.fetched_at,
        )
        logger.info(f"Copied cached weather {source} -> {target}")
        return True

    def clear(self, slot: SlotIdentity) -> None:
        """Remove a slot and its memory-tier entries."""
        self.db.delete_cache_row(slot)
        purged = self.memory.purge(slot)
        logger.info(f"Cleared cache slot {slot} ({purged} memory entries)")

    def clear_all(self) -> int:
        """Remove every slot.

        Returns:
            Number of durable rows removed
        """
        self.memory.clear()
        return self.db.delete_all_cache_rows()
