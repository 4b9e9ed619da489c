"""Upstream fetchers for wxdash.

Pipelines:
- base: WeatherFetcher boundary the cache orchestrator talks to
- nws: National Weather Service forecasts, alerts and observations
- geocode: Nominatim search and IP-based location detection
- tides: NOAA CO-OPS tide station lookup and predictions
"""

from .base import FetchedWeather, WeatherFetcher
from .http import fetch_json_with_retry
from .nws import NWSFetcher

__all__ = [
    "FetchedWeather",
    "WeatherFetcher",
    "NWSFetcher",
    "fetch_json_with_retry",
]
