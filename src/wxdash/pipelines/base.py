"""Base classes for the upstream fetch boundary."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from wxdash.cache.models import Location


@dataclass
class FetchedWeather:
    """Result of one upstream weather fetch.

    Attributes:
        location: Location enriched by the forecast office lookup
            (time zone, elevation, radar station)
        weather: Weather payload; carries the location under "location"
        observations: Recent station observations, or None if unavailable
    """

    location: Location
    weather: dict
    observations: Optional[dict] = None


class WeatherFetcher(ABC):
    """Abstract boundary to the upstream weather services.

    Every method is a coroutine and every failure surfaces as
    ``wxdash.errors.FetchFailed``.
    """

    @abstractmethod
    async def geocode(self, text: str) -> Location:
        """Resolve free-form search text to a location."""
        pass

    @abstractmethod
    async def detect_location(self) -> Location:
        """Detect the device's current location."""
        pass

    @abstractmethod
    async def fetch_weather(self, location: Location) -> FetchedWeather:
        """Fetch forecast, hourly forecast, alerts and observations."""
        pass

    async def find_tide_station(self, location: Location) -> Optional[dict]:
        """Find the nearest tide station, if the fetcher supports it."""
        return None

    async def fetch_tide_predictions(
        self, station_id: str, time_zone: Optional[str] = None
    ) -> Optional[dict]:
        """Last and next high/low tide at a station, if the fetcher supports it."""
        return None

    def close(self) -> None:
        """Release any held resources."""
        pass
