"""Configuration for the weather dashboard.

Settings are plain module constants. The database path and the HTTP
User-Agent can be overridden from the environment.
"""

import os
from pathlib import Path

# Project root is 3 levels up from this file (src/wxdash/config.py)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# DuckDB cache file
DEFAULT_DB_PATH = Path(
    os.environ.get("WXDASH_DB_PATH", PROJECT_ROOT / "data" / "cache" / "wxdash.duckdb")
)

# NWS requires a descriptive User-Agent
USER_AGENT = os.environ.get("WXDASH_USER_AGENT", "wxdash/1.0 (personal dashboard)")

# Upstream endpoints
NWS_BASE_URL = "https://api.weather.gov"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
NOAA_STATIONS_URL = "https://api.tidesandcurrents.noaa.gov/mdapi/prod/webapi/stations.json"
NOAA_PRODUCTS_URL = "https://api.tidesandcurrents.noaa.gov/mdapi/prod/webapi/stations/{station_id}/products.json"
NOAA_DATAGETTER_URL = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
IP_LOCATION_SERVICES = [
    ("ipapi.co", "https://ipapi.co/json/"),
    ("ip-api.com", "https://ip-api.com/json/"),
    ("ip-api.com (HTTP)", "http://ip-api.com/json/"),
]

# HTTP behaviour
REQUEST_TIMEOUT = 30  # seconds
MAX_FETCH_ATTEMPTS = 10
RETRY_BASE_DELAY = 1.0  # seconds
RETRY_MAX_DELAY = 512.0  # seconds

# Tide stations further than this are ignored
TIDE_STATION_MAX_MILES = 100.0

# HTTP API
API_VERSION = "1.0.0"
