"""Stable identities for locations.

A location's UID is anchored to its coordinates whenever they are known, so
it does not change when the geocoder reports the state differently (for
example "US" one day and "OR" the next). The older "City,ST" key is kept only
to find payloads cached before UIDs existed.
"""

import re
from typing import Optional, Union

from wxdash.cache.models import Location

# 4 decimal places is ~11 m at the equator
UID_PRECISION = 4

_CITY_STRIP = re.compile(r"[^a-z0-9 ]")
_STATE_STRIP = re.compile(r"[^A-Z0-9]")
_WHITESPACE = re.compile(r"\s+")
_SEARCH_CITY_STATE = re.compile(r"^\s*([^,]+?)\s*,\s*([A-Za-z]{2})\s*$")

LocationLike = Union[Location, dict]


def _as_location(location: Optional[LocationLike]) -> Optional[Location]:
    if location is None:
        return None
    if isinstance(location, Location):
        return location
    return Location.from_dict(location)


def _format_coordinate(value: float) -> str:
    # Adding 0.0 turns -0.0 into 0.0 so both hemispheres of zero agree
    return f"{round(value, UID_PRECISION) + 0.0:.{UID_PRECISION}f}"


def normalize_city(city: Optional[str]) -> str:
    """Lower-case a city name and keep only letters, digits and single spaces."""
    cleaned = _CITY_STRIP.sub("", (city or "").lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def normalize_state(state: Optional[str]) -> str:
    """Upper-case a state field and keep only letters and digits."""
    return _STATE_STRIP.sub("", (state or "").upper())


def compute_uid(location: Optional[LocationLike]) -> Optional[str]:
    """Derive the stable unique identifier for a location.

    Coordinates take precedence whenever both are finite:

        >>> compute_uid(Location(lat=45.52, lon=-122.68, city="Portland", state="US"))
        'loc_45.5200_-122.6800'

    Without coordinates the normalised city and state are used instead.

    Returns:
        UID string, or None if neither coordinates nor city+state are present
    """
    loc = _as_location(location)
    if loc is None:
        return None

    if loc.has_coordinates:
        return f"loc_{_format_coordinate(loc.lat)}_{_format_coordinate(loc.lon)}"

    city = normalize_city(loc.city)
    state = normalize_state(loc.state)
    if not city or not state:
        return None
    return f"loc_{city}_{state}"


def compute_key(location: Optional[LocationLike]) -> Optional[str]:
    """Derive the legacy "City,ST" key for a location.

    Returns:
        Key string, or None if city or state is missing after normalisation
    """
    loc = _as_location(location)
    if loc is None:
        return None

    words = _WHITESPACE.split((loc.city or "").strip())
    city = " ".join(w[:1].upper() + w[1:] for w in words if w)
    state = (loc.state or "").strip().upper()
    if not city or not state:
        return None
    return f"{city},{state}"


def format_location_display_name(city: Optional[str], state: Optional[str]) -> str:
    """Format "City, ST", dropping a placeholder "US" state."""
    if not city:
        return ""
    if not state or state.upper() == "US":
        return city
    return f"{city}, {state}"


def location_display_name(location: Optional[LocationLike]) -> str:
    """Display string for a location (empty when the city is unknown)."""
    loc = _as_location(location)
    if loc is None:
        return ""
    return format_location_display_name(loc.city, loc.state)


def key_from_search_text(text: Optional[str]) -> Optional[str]:
    """Parse "City, ST" search text into a location key without geocoding.

    Returns:
        Key string, or None if the text is not in "City, ST" form
    """
    match = _SEARCH_CITY_STATE.match(text or "")
    if match is None:
        return None
    return compute_key(Location(city=match.group(1), state=match.group(2)))


def same_place(a: Optional[LocationLike], b: Optional[LocationLike]) -> bool:
    """Whether two locations resolve to the same UID."""
    uid_a = compute_uid(a)
    return uid_a is not None and uid_a == compute_uid(b)
