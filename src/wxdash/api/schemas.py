"""Pydantic schemas for API request/response validation.

Defines all data models used by the dashboard API.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class LocationInfo(BaseModel):
    """Location details.

    Attributes:
        lat: Latitude
        lon: Longitude
        city: City name
        state: Two-letter state code ("US" if unknown)
        display_name: "City, ST" display string
    """

    lat: Optional[float] = Field(default=None, description="Latitude")
    lon: Optional[float] = Field(default=None, description="Longitude")
    city: str = Field(default="", description="City name")
    state: str = Field(default="", description="State code")
    display_name: str = Field(default="", description="Display name")
    time_zone: Optional[str] = Field(default=None, description="IANA time zone")
    elevation_feet: Optional[int] = Field(default=None, description="Elevation in feet")
    radar_station: Optional[str] = Field(default=None, description="NEXRAD radar station")


class WeatherResponse(BaseModel):
    """Weather shown for a place.

    Attributes:
        slot: Cache slot the data belongs to
        weather: Weather payload (forecast, hourly, alerts, location)
        last_fetched_at: When the data was fetched upstream
        last_updated: Human-readable age ("5 minutes ago")
        freshness: Fresh, Aging, Stale or Unknown
        refreshing: Whether a background refresh is running
        error: Message from a failed fetch when cached data is shown instead
    """

    place_kind: Optional[str] = Field(default=None, description="search, here or favorite")
    query: str = Field(default="", description="Search text or favorite uid")
    slot: Optional[str] = Field(default=None, description="Cache slot")
    location: Optional[LocationInfo] = Field(default=None, description="Location details")
    weather: Optional[dict[str, Any]] = Field(default=None, description="Weather payload")
    observations: Optional[dict[str, Any]] = Field(
        default=None,
        description="Station observations payload",
    )
    observations_available: bool = Field(default=False)
    last_fetched_at: Optional[datetime] = Field(
        default=None,
        description="When the data was fetched upstream",
    )
    last_updated: Optional[str] = Field(default=None, description="Human-readable data age")
    freshness: str = Field(default="Unknown", description="Data freshness")
    loading: bool = Field(default=False)
    refreshing: bool = Field(default=False)
    error: Optional[str] = Field(default=None)
    source: str = Field(default="none", description="cache, network or none")


class FavoriteInfo(BaseModel):
    """A saved favorite."""

    uid: Optional[str] = Field(default=None, description="Stable location identifier")
    key: Optional[str] = Field(default=None, description="Legacy City,ST key")
    name: str = Field(..., description="Name")
    custom_name: Optional[str] = Field(default=None, description="User display name override")
    display_name: str = Field(..., description="Name shown in the dashboard")
    search_query: str = Field(default="", description="Original search text")
    location: LocationInfo


class FavoriteCreate(BaseModel):
    """Request to save a place as a favorite.

    Attributes:
        query: Search text (or "here") for the place
        custom_name: Optional display name override
    """

    query: str = Field(..., min_length=1, description="Search text or 'here'")
    custom_name: Optional[str] = Field(default=None, description="Display name override")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"query": "Portland, OR", "custom_name": "Home"}
            ]
        }
    }


class FavoriteRename(BaseModel):
    """Request to rename a favorite. Empty or null restores the original name."""

    custom_name: Optional[str] = Field(default=None, description="New display name")


class AutoUpdateSetting(BaseModel):
    """Auto-update preference."""

    enabled: bool = Field(..., description="Whether stale data refreshes automatically")


class FavoriteStatus(BaseModel):
    """Cache freshness for one favorite."""

    name: str
    uid: Optional[str] = None
    key: Optional[str] = None
    fetched_at: Optional[datetime] = None
    age: Optional[str] = None
    freshness: str = "Unknown"


class SlotStatus(BaseModel):
    """One durable cache slot."""

    slot: str
    kind: str
    fetched_at: Optional[datetime] = None


class CacheStatusResponse(BaseModel):
    """Cache statistics."""

    db_path: str
    total_favorites: int = 0
    fresh_favorites: int = 0
    cache_count: int = 0
    fetch_count: int = 0
    failed_fetch_count: int = 0
    favorites: list[FavoriteStatus] = Field(default_factory=list)
    slots: list[SlotStatus] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response.

    Attributes:
        status: Service status ('healthy' or 'unhealthy')
        version: API version
        favorites: Number of saved favorites
        migration_notice: Message to show if favorites had to be reset
    """

    status: str = Field(
        default="healthy",
        description="Service status",
    )
    version: str = Field(
        default="1.0.0",
        description="API version",
    )
    favorites: int = Field(
        default=0,
        description="Number of saved favorites",
    )
    migration_notice: Optional[str] = Field(
        default=None,
        description="Notice from the startup favorites migration",
    )


class ErrorResponse(BaseModel):
    """Error response schema.

    Attributes:
        error: Error type/code
        message: Human-readable error message
        detail: Additional error details
    """

    error: str = Field(
        ...,
        description="Error type",
    )
    message: str = Field(
        ...,
        description="Error message",
    )
    detail: Optional[str] = Field(
        default=None,
        description="Additional details",
    )
