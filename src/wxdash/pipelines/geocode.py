"""Geocoding and device-location detection.

Search text is resolved with OpenStreetMap Nominatim, restricted to the
United States. The device location comes from IP geolocation services,
tried in order until one answers.
"""

import logging
import re
from typing import Optional

import requests

from wxdash.cache.models import Location
from wxdash.config import IP_LOCATION_SERVICES, NOMINATIM_URL, USER_AGENT
from wxdash.errors import FetchFailed
from wxdash.pipelines.http import fetch_json_optional, fetch_json_with_retry

logger = logging.getLogger(__name__)

US_STATES = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE",
    "Florida": "FL", "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID",
    "Illinois": "IL", "Indiana": "IN", "Iowa": "IA", "Kansas": "KS",
    "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN",
    "Mississippi": "MS", "Missouri": "MO", "Montana": "MT", "Nebraska": "NE",
    "Nevada": "NV", "New Hampshire": "NH", "New Jersey": "NJ",
    "New Mexico": "NM", "New York": "NY", "North Carolina": "NC",
    "North Dakota": "ND", "Ohio": "OH", "Oklahoma": "OK", "Oregon": "OR",
    "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT",
    "Vermont": "VT", "Virginia": "VA", "Washington": "WA",
    "West Virginia": "WV", "Wisconsin": "WI", "Wyoming": "WY",
    "District of Columbia": "DC",
}

# Placeholder state when the geocoder could not tell
UNKNOWN_STATE = "US"

_POSTCODE_CITY = re.compile(r"^\d{5}, [^,]+,\s*([^,]+),")
_POSTCODE_STATE = re.compile(r", ([A-Z]{2}), United States$")
_DISPLAY_STATE = re.compile(r", ([A-Z]{2})(?:,|$)")


def state_code(name: Optional[str]) -> Optional[str]:
    """Two-letter code for a full US state name, or None."""
    if not name:
        return None
    return US_STATES.get(name.strip())


def _state_from_display_name(display_name: str, suffix: str) -> Optional[str]:
    # Longest names first so "West Virginia" wins over "Virginia"
    for name in sorted(US_STATES, key=len, reverse=True):
        if f", {name}{suffix}" in display_name:
            return US_STATES[name]
    return None


def build_search_query(text: str) -> str:
    """Nominatim query text; bare names get a ",US" suffix."""
    text = text.strip()
    return text if "," in text else f"{text},US"


def parse_nominatim_result(result: dict) -> Location:
    """Convert one Nominatim search result to a Location.

    The state is taken from, in order: the display name of a postcode
    result, ``address.state_code``, ``address.state`` mapped to its code,
    a ", ST" pattern in the display name, or a full state name in the
    display name. Falls back to "US".

    Raises:
        FetchFailed: If the result has no usable coordinates
    """
    try:
        lat = float(result["lat"])
        lon = float(result["lon"])
    except (KeyError, TypeError, ValueError) as e:
        raise FetchFailed(f"Geocoding result has no coordinates: {e}", source="geocode") from e

    city = result.get("name") or ""
    state = UNKNOWN_STATE
    display_name = result.get("display_name") or ""

    if result.get("type") == "postcode":
        match = _POSTCODE_CITY.match(display_name)
        if match:
            city = match.group(1).strip()
        match = _POSTCODE_STATE.search(display_name)
        if match:
            state = match.group(1)
        else:
            state = _state_from_display_name(display_name, ", United States") or state
    else:
        address = result.get("address") or {}
        code = address.get("state_code")
        if code and len(code) == 2:
            state = code.upper()
        else:
            state = state_code(address.get("state")) or state

        if state == UNKNOWN_STATE:
            match = _DISPLAY_STATE.search(display_name)
            if match:
                state = match.group(1)
            else:
                state = _state_from_display_name(display_name, ",") or state

    return Location(lat=lat, lon=lon, city=city, state=state)


def geocode(session: requests.Session, text: str) -> Location:
    """Geocode search text with Nominatim.

    Raises:
        FetchFailed: If the request fails or nothing matches
    """
    params = {
        "q": build_search_query(text),
        "format": "json",
        "limit": 1,
        "countrycodes": "us",
        "addressdetails": 1,
    }
    results = fetch_json_with_retry(
        session,
        NOMINATIM_URL,
        params=params,
        headers={"User-Agent": USER_AGENT},
        source="geocode",
        max_attempts=3,
    )
    if not results:
        raise FetchFailed(f"No geocoding results found for '{text}'", source="geocode")

    location = parse_nominatim_result(results[0])
    logger.info(f"Geocoded '{text}' -> {location.city}, {location.state} "
                f"({location.lat:.4f}, {location.lon:.4f})")
    return location


def parse_ip_result(service: str, data: dict) -> Optional[Location]:
    """Convert an IP geolocation response to a Location, or None if unusable."""
    if service.startswith("ipapi.co"):
        lat, lon = data.get("latitude"), data.get("longitude")
        state = data.get("region_code") or state_code(data.get("region")) or data.get("region")
    else:
        if data.get("status") != "success":
            logger.debug(f"{service} reported failure: {data.get('message')}")
            return None
        lat, lon = data.get("lat"), data.get("lon")
        state = data.get("region") or state_code(data.get("regionName")) or data.get("regionName")

    location = Location.from_dict(
        {"lat": lat, "lon": lon, "city": data.get("city") or "", "state": state or UNKNOWN_STATE}
    )
    return location if location.has_coordinates else None


def detect_location_by_ip(session: requests.Session) -> Location:
    """Detect the current location from the public IP address.

    Raises:
        FetchFailed: If every service fails
    """
    for name, url in IP_LOCATION_SERVICES:
        logger.debug(f"Trying {name}: {url}")
        data = fetch_json_optional(session, url, headers={"Accept": "application/json"})
        if not isinstance(data, dict):
            continue

        location = parse_ip_result(name, data)
        if location is not None:
            logger.info(f"Detected location via {name}: {location.city}, {location.state}")
            return location

    raise FetchFailed("All IP geolocation services failed", source="ip")
