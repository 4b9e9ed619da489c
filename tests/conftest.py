"""Shared pytest fixtures for wxdash tests.

Test Tiers:
- unit: Fast tests with fixtures, no network (default)
- integration: Tests with recorded API responses
- live: Real API tests, slow, requires network

Run live tests with: pytest -m live --run-live
"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from wxdash.cache.database import CacheDatabase
from wxdash.cache.favorites import FavoritesStore
from wxdash.cache.identity import compute_uid
from wxdash.cache.models import Location
from wxdash.cache.weather import WeatherCache
from wxdash.errors import FetchFailed
from wxdash.pipelines.base import FetchedWeather, WeatherFetcher


def pytest_addoption(parser):
    """Add command line options for test configuration."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run live API tests (slow, requires network)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests using fixtures")
    config.addinivalue_line("markers", "integration: tests with recorded API responses")
    config.addinivalue_line("markers", "live: real API tests (slow, requires network)")


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is specified."""
    if config.getoption("--run-live"):
        # --run-live given: don't skip live tests
        return

    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


NOW = datetime(2024, 11, 5, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for orchestrator and cache tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_weather(location: Location, version: int = 1) -> dict:
    """A small NWS-shaped weather payload."""
    return {
        "location": location.to_dict(),
        "office": "PQR",
        "grid": {"x": 112, "y": 103},
        "forecast": {
            "properties": {
                "periods": [
                    {"name": "Tonight", "temperature": 40 + version, "shortForecast": "Rain"},
                    {"name": "Wednesday", "temperature": 52 + version, "shortForecast": "Cloudy"},
                ]
            }
        },
        "hourly": {"properties": {"periods": [{"temperature": 45 + version}]}},
        "alerts": [],
        "version": version,
    }


class FakeFetcher(WeatherFetcher):
    """In-memory fetch boundary that records every call.

    Attributes:
        places: Search text -> Location answers for ``geocode``
        here: Location answered by ``detect_location`` (None fails)
        fail_weather: Make ``fetch_weather`` raise FetchFailed
        fail_geocode: Make ``geocode`` raise FetchFailed
        gates: uid -> asyncio.Event that ``fetch_weather`` waits on
        tide_station: Answer for ``find_tide_station``
        tide_data: Answer for ``fetch_tide_predictions``
    """

    def __init__(self, places: Optional[dict] = None, here: Optional[Location] = None):
        self.places = dict(places or {})
        self.here = here
        self.fail_weather = False
        self.fail_geocode = False
        self.gates: dict[str, asyncio.Event] = {}
        self.tide_station: Optional[dict] = None
        self.tide_data: Optional[dict] = None
        self.tide_calls: list[tuple[str, Optional[str]]] = []

        self.geocode_calls: list[str] = []
        self.detect_calls = 0
        self.weather_calls: list[Location] = []
        self.closed = False

    async def geocode(self, text: str) -> Location:
        self.geocode_calls.append(text)
        if self.fail_geocode:
            raise FetchFailed("Geocoder unavailable", source="geocode")
        if text not in self.places:
            raise FetchFailed(f"No geocoding results found for '{text}'", source="geocode")
        return self.places[text]

    async def detect_location(self) -> Location:
        self.detect_calls += 1
        if self.here is None:
            raise FetchFailed("All IP geolocation services failed", source="ip")
        return self.here

    async def fetch_weather(self, location: Location) -> FetchedWeather:
        self.weather_calls.append(location)
        version = len(self.weather_calls)
        gate = self.gates.get(compute_uid(location))
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.fail_weather:
            raise FetchFailed("NWS unavailable", source="nws")
        return FetchedWeather(
            location=location,
            weather=make_weather(location, version),
            observations={"type": "FeatureCollection", "features": []},
        )

    async def find_tide_station(self, location: Location) -> Optional[dict]:
        return self.tide_station

    async def fetch_tide_predictions(
        self, station_id: str, time_zone: Optional[str] = None
    ) -> Optional[dict]:
        self.tide_calls.append((station_id, time_zone))
        return self.tide_data

    def close(self) -> None:
        self.closed = True


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def temp_db_path():
    """Create a temporary database path for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.duckdb"


@pytest.fixture
def db(temp_db_path):
    """Create a CacheDatabase with temp database."""
    database = CacheDatabase(temp_db_path)
    yield database
    database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(db, clock) -> WeatherCache:
    return WeatherCache(db, clock=clock)


@pytest.fixture
def favorites(db, cache) -> FavoritesStore:
    return FavoritesStore(db, cache)


@pytest.fixture
def portland() -> Location:
    return Location(lat=45.52, lon=-122.68, city="Portland", state="OR")


@pytest.fixture
def portland_us() -> Location:
    """Portland as an older geocoder reported it, with a placeholder state."""
    return Location(lat=45.52, lon=-122.68, city="Portland", state="US")


@pytest.fixture
def seattle() -> Location:
    return Location(lat=47.61, lon=-122.33, city="Seattle", state="WA")


@pytest.fixture
def fake_fetcher(portland, seattle) -> FakeFetcher:
    return FakeFetcher(
        places={"Portland, OR": portland, "Seattle, WA": seattle},
        here=portland,
    )


@pytest.fixture
def weather_factory():
    """Build NWS-shaped weather payloads."""
    return make_weather
