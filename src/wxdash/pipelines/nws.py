"""National Weather Service fetcher.

Forecasts come from the NWS API: a ``/points`` lookup resolves coordinates
to a forecast office grid, then the daily and hourly forecasts are fetched
concurrently. Alerts and station observations are optional; if either call
fails the payload simply omits it.

Blocking ``requests`` calls run in worker threads so the event loop stays
responsive.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests

from wxdash.cache.models import Location
from wxdash.config import NWS_BASE_URL, USER_AGENT
from wxdash.errors import FetchFailed
from wxdash.pipelines.base import FetchedWeather, WeatherFetcher
from wxdash.pipelines.geocode import detect_location_by_ip, geocode
from wxdash.pipelines.http import fetch_json_optional, fetch_json_with_retry
from wxdash.pipelines.tides import fetch_tide_predictions, fetch_tide_station

logger = logging.getLogger(__name__)

METERS_TO_FEET = 3.28084

# Observation history to collect, and a page limit for the paginated feed
OBSERVATION_WINDOW = timedelta(days=7)
OBSERVATION_MAX_PAGES = 50


def meters_to_feet(meters: Optional[float]) -> int:
    """Convert an NWS elevation in meters to whole feet (missing -> 0)."""
    return round((meters or 0) * METERS_TO_FEET)


class NWSFetcher(WeatherFetcher):
    """Weather fetcher backed by the NWS API, Nominatim and NOAA CO-OPS.

    Example:
        >>> fetcher = NWSFetcher()
        >>> location = await fetcher.geocode("Portland, OR")
        >>> result = await fetcher.fetch_weather(location)
        >>> result.location.time_zone
        'America/Los_Angeles'
    """

    def __init__(self, session: Optional[requests.Session] = None):
        """Initialize the fetcher.

        Args:
            session: requests session to reuse (created if omitted)
        """
        self.session = session or requests.Session()
        self.headers = {
            "Accept": "application/geo+json",
            "User-Agent": USER_AGENT,
        }

    def close(self) -> None:
        self.session.close()

    # -------------------------------------------------------------------------
    # Location
    # -------------------------------------------------------------------------

    async def geocode(self, text: str) -> Location:
        return await asyncio.to_thread(geocode, self.session, text)

    async def detect_location(self) -> Location:
        return await asyncio.to_thread(detect_location_by_ip, self.session)

    async def find_tide_station(self, location: Location) -> Optional[dict]:
        if not location.has_coordinates:
            return None
        return await asyncio.to_thread(
            fetch_tide_station, self.session, location.lat, location.lon
        )

    async def fetch_tide_predictions(
        self, station_id: str, time_zone: Optional[str] = None
    ) -> Optional[dict]:
        return await asyncio.to_thread(
            fetch_tide_predictions, self.session, station_id, time_zone
        )

    # -------------------------------------------------------------------------
    # Weather
    # -------------------------------------------------------------------------

    def _get(self, url: str, params: Optional[dict] = None) -> dict:
        return fetch_json_with_retry(
            self.session, url, params=params, headers=self.headers, source="nws"
        )

    def _get_alerts(self, lat: float, lon: float) -> list:
        data = fetch_json_optional(
            self.session,
            f"{NWS_BASE_URL}/alerts/active",
            params={"point": f"{lat},{lon}"},
            headers=self.headers,
        )
        return (data or {}).get("features") or []

    def _get_observations(self, stations_url: Optional[str]) -> Optional[dict]:
        """Collect the last week of observations from the nearest station."""
        if not stations_url:
            return None

        stations = fetch_json_optional(self.session, stations_url, headers=self.headers)
        features = (stations or {}).get("features") or []
        if not features:
            logger.debug("No observation stations found")
            return None

        station_id = (features[0].get("properties") or {}).get("stationIdentifier")
        if not station_id:
            return None

        end = datetime.now(timezone.utc)
        start = end - OBSERVATION_WINDOW
        url = f"{NWS_BASE_URL}/stations/{station_id}/observations"
        params = {
            "start": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "end": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

        collected = []
        pages = 0
        while url and pages < OBSERVATION_MAX_PAGES:
            pages += 1
            data = fetch_json_optional(self.session, url, params=params, headers=self.headers)
            if data is None:
                break
            collected.extend(data.get("features") or [])
            # The next-page link carries its own query string
            url = (data.get("pagination") or {}).get("next")
            params = None

        if not collected:
            return None

        logger.debug(f"Collected {len(collected)} observations from {station_id} in {pages} page(s)")
        return {"type": "FeatureCollection", "station": station_id, "features": collected}

    async def fetch_weather(self, location: Location) -> FetchedWeather:
        """Fetch the full weather payload for a location.

        Raises:
            FetchFailed: If the location has no coordinates or a required
                NWS call fails
        """
        if not location.has_coordinates:
            raise FetchFailed("Location has no coordinates", source="nws")

        lat = round(location.lat, 4)
        lon = round(location.lon, 4)

        points = await asyncio.to_thread(self._get, f"{NWS_BASE_URL}/points/{lat},{lon}")
        props = points.get("properties") or {}
        forecast_url = props.get("forecast")
        hourly_url = props.get("forecastHourly")
        if not forecast_url or not hourly_url:
            raise FetchFailed(f"NWS has no forecast grid for ({lat}, {lon})", source="nws")

        forecast, hourly, alerts = await asyncio.gather(
            asyncio.to_thread(self._get, forecast_url),
            asyncio.to_thread(self._get, hourly_url),
            asyncio.to_thread(self._get_alerts, lat, lon),
        )
        observations = await asyncio.to_thread(
            self._get_observations, props.get("observationStations")
        )

        elevation = ((forecast.get("properties") or {}).get("elevation") or {}).get("value")
        enriched = dataclasses.replace(
            location,
            time_zone=props.get("timeZone"),
            elevation_feet=meters_to_feet(elevation),
            radar_station=props.get("radarStation"),
        )

        weather = {
            "location": enriched.to_dict(),
            "office": props.get("cwa"),
            "grid": {"x": props.get("gridX"), "y": props.get("gridY")},
            "forecast": forecast,
            "hourly": hourly,
            "alerts": alerts,
        }
        logger.info(
            f"Fetched NWS weather for {enriched.city or (lat, lon)} "
            f"(office={props.get('cwa')}, alerts={len(alerts)})"
        )
        return FetchedWeather(location=enriched, weather=weather, observations=observations)
