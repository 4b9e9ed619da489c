"""Data models for the cache layer."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from wxdash.utils.geo import is_coordinate


@dataclass(frozen=True)
class Location:
    """A geocoded or device-detected place.

    Attributes:
        lat: Latitude in degrees (None if unknown)
        lon: Longitude in degrees (None if unknown)
        city: City name as returned by the geocoder
        state: State code, or "US" when the geocoder could not tell
        time_zone: IANA timezone from the NWS points lookup
        elevation_feet: Elevation of the forecast grid cell
        radar_station: Nearest NEXRAD station identifier
    """

    lat: Optional[float] = None
    lon: Optional[float] = None
    city: str = ""
    state: str = ""
    time_zone: Optional[str] = None
    elevation_feet: Optional[int] = None
    radar_station: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        """Whether both coordinates are finite numbers."""
        return is_coordinate(self.lat) and is_coordinate(self.lon)

    def to_dict(self) -> dict:
        """Return as dictionary."""
        return {
            "lat": self.lat,
            "lon": self.lon,
            "city": self.city,
            "state": self.state,
            "time_zone": self.time_zone,
            "elevation_feet": self.elevation_feet,
            "radar_station": self.radar_station,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        """Create Location from a dictionary.

        Accepts the camelCase keys found in payloads cached before the
        snake_case layout (timeZone, elevationFeet, radarStation).
        """
        return cls(
            lat=_to_float(d.get("lat")),
            lon=_to_float(d.get("lon")),
            city=d.get("city") or "",
            state=d.get("state") or "",
            time_zone=d.get("time_zone", d.get("timeZone")),
            elevation_feet=d.get("elevation_feet", d.get("elevationFeet")),
            radar_station=d.get("radar_station", d.get("radarStation")),
        )


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SlotKind(str, Enum):
    """Kinds of durable cache slot."""

    UID = "uid"
    KEY = "key"
    DEFAULT = "default"


@dataclass(frozen=True)
class SlotIdentity:
    """Address of one durable cache slot.

    Use the constructors ``for_uid``, ``for_key`` and ``default`` rather
    than building instances directly.
    """

    kind: SlotKind
    value: str = ""

    @classmethod
    def for_uid(cls, uid: str) -> "SlotIdentity":
        if not uid:
            raise ValueError("UID slot requires a non-empty uid")
        return cls(SlotKind.UID, uid)

    @classmethod
    def for_key(cls, key: str) -> "SlotIdentity":
        if not key:
            raise ValueError("Key slot requires a non-empty key")
        return cls(SlotKind.KEY, key)

    @classmethod
    def default(cls) -> "SlotIdentity":
        return cls(SlotKind.DEFAULT, "")

    @property
    def is_default(self) -> bool:
        return self.kind is SlotKind.DEFAULT

    @property
    def storage_key(self) -> str:
        """Flat rendering used for log lines and memory-tier keys."""
        if self.kind is SlotKind.UID:
            return f"uid_{self.value}"
        if self.kind is SlotKind.KEY:
            return self.value
        return "default"

    def __str__(self) -> str:
        return self.storage_key


@dataclass
class Favorite:
    """A location the user pinned to the dashboard.

    ``uid`` joins the favorite to its cache slot. ``key`` is kept only so
    payloads cached before UIDs existed can be migrated.
    """

    uid: Optional[str]
    key: Optional[str]
    name: str
    location: Location
    search_query: str = ""
    custom_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.custom_name or self.name

    @property
    def slot(self) -> SlotIdentity:
        if not self.uid:
            raise ValueError(f"Favorite {self.name!r} has no uid")
        return SlotIdentity.for_uid(self.uid)

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "key": self.key,
            "name": self.name,
            "custom_name": self.custom_name,
            "location": self.location.to_dict(),
            "search_query": self.search_query,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Favorite":
        return cls(
            uid=d.get("uid") or None,
            key=d.get("key") or None,
            name=d.get("name") or "",
            location=Location.from_dict(d.get("location") or {}),
            search_query=d.get("search_query", d.get("searchQuery")) or "",
            custom_name=d.get("custom_name", d.get("customName")) or None,
        )


@dataclass
class CacheEntry:
    """A cached weather payload.

    ``fetched_at`` is when the upstream fetch was initiated, not when the
    entry was written.
    """

    weather: dict
    fetched_at: datetime
    observations: Optional[dict] = None
    observations_available: bool = False
    location_display: str = ""


class PlaceKind(str, Enum):
    """How the user asked for a place."""

    SEARCH = "search"
    HERE = "here"
    FAVORITE = "favorite"


HERE_SENTINEL = "here"


@dataclass(frozen=True)
class PlaceDescriptor:
    """What the user asked to see: search text, "here", or a favorite."""

    kind: PlaceKind
    value: str = ""

    @classmethod
    def search(cls, text: str) -> "PlaceDescriptor":
        """Build a descriptor from raw search-box text."""
        text = (text or "").strip()
        if text.lower() == HERE_SENTINEL:
            return cls.here()
        return cls(PlaceKind.SEARCH, text)

    @classmethod
    def here(cls) -> "PlaceDescriptor":
        return cls(PlaceKind.HERE, "")

    @classmethod
    def favorite(cls, uid: str) -> "PlaceDescriptor":
        return cls(PlaceKind.FAVORITE, uid)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "value": self.value}

    @classmethod
    def from_dict(cls, d: dict) -> "PlaceDescriptor":
        return cls(PlaceKind(d["kind"]), d.get("value") or "")


@dataclass
class FetchLog:
    """Log entry for an upstream fetch."""

    source: str  # 'nws', 'geocode', 'ip'
    timestamp: datetime
    status: str  # 'success', 'error'
    duration_ms: int
    slot: Optional[str] = None
    error_message: Optional[str] = None
