"""NOAA CO-OPS tide station lookup and high/low tide predictions."""

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

from wxdash.config import (
    NOAA_DATAGETTER_URL,
    NOAA_PRODUCTS_URL,
    NOAA_STATIONS_URL,
    TIDE_STATION_MAX_MILES,
)
from wxdash.pipelines.http import fetch_json_optional
from wxdash.utils.geo import Point

logger = logging.getLogger(__name__)

_WATER_LEVEL = re.compile(r"water level", re.IGNORECASE)

# NOAA prediction timestamps, in station local time
PREDICTION_TIME_FORMAT = "%Y-%m-%d %H:%M"


def find_nearest_station(
    stations: Iterable[dict],
    lat: float,
    lon: float,
    max_miles: float = TIDE_STATION_MAX_MILES,
) -> Optional[dict]:
    """Pick the closest station within ``max_miles`` of a point.

    Args:
        stations: Station records from the NOAA stations.json listing
        lat, lon: Point to search around

    Returns:
        Dict with station_id, name, lat, lon and distance_miles, or None
        if no station is close enough
    """
    origin = Point(lat, lon)
    best = None
    best_distance = None

    for station in stations:
        try:
            point = Point(float(station["lat"]), float(station["lng"]))
        except (KeyError, TypeError, ValueError):
            continue

        distance = origin.miles_to(point)
        if distance <= max_miles and (best_distance is None or distance < best_distance):
            best, best_distance = (station, point), distance

    if best is None:
        logger.debug(f"No tide station within {max_miles} miles of ({lat}, {lon})")
        return None

    station, point = best
    return {
        "station_id": str(station.get("id")),
        "name": station.get("name") or "",
        "lat": point.lat,
        "lon": point.lon,
        "distance_miles": round(best_distance, 2),
    }


def supports_water_levels(products: Optional[dict]) -> bool:
    """Whether a station's products listing includes water level data."""
    if not products or not isinstance(products.get("products"), list):
        return False
    return any(_WATER_LEVEL.search(p.get("name") or "") for p in products["products"])


def fetch_tide_station(session: requests.Session, lat: float, lon: float) -> Optional[dict]:
    """Find the nearest NOAA tide station to a point.

    Returns:
        Station dict (see ``find_nearest_station``) with a
        ``supports_water_levels`` flag, or None
    """
    listing = fetch_json_optional(session, NOAA_STATIONS_URL, headers={"Accept": "application/json"})
    if not listing or not listing.get("stations"):
        return None

    station = find_nearest_station(listing["stations"], lat, lon)
    if station is None:
        return None

    products = fetch_json_optional(
        session,
        NOAA_PRODUCTS_URL.format(station_id=station["station_id"]),
        headers={"Accept": "application/json"},
    )
    station["supports_water_levels"] = supports_water_levels(products)
    logger.info(
        f"Nearest tide station: {station['name']} ({station['station_id']}) "
        f"at {station['distance_miles']:.2f} miles"
    )
    return station


def parse_prediction(prediction: dict) -> Optional[dict]:
    """Parse one hi/lo prediction record.

    NOAA answers ``{"t": "2024-11-05 06:12", "v": "7.81", "type": "H"}``
    with times in the station's local time.

    Returns:
        Dict with time (naive datetime), height (feet) and type ('H' or
        'L'), or None if the record is malformed
    """
    try:
        time = datetime.strptime(prediction["t"], PREDICTION_TIME_FORMAT)
        height = float(prediction["v"])
    except (KeyError, TypeError, ValueError):
        return None
    return {"time": time, "height": height, "type": prediction.get("type") or ""}


def last_and_next_tide(
    predictions: Iterable[dict], now: datetime
) -> tuple[Optional[dict], Optional[dict]]:
    """Find the latest tide at or before ``now`` and the earliest one after it."""
    last = None
    upcoming = None
    for prediction in predictions:
        tide = parse_prediction(prediction)
        if tide is None:
            continue
        if tide["time"] <= now:
            if last is None or tide["time"] > last["time"]:
                last = tide
        elif upcoming is None or tide["time"] < upcoming["time"]:
            upcoming = tide
    return last, upcoming


def station_now(time_zone: Optional[str] = None) -> datetime:
    """Current wall-clock time at a station, naive to compare with predictions."""
    if time_zone:
        try:
            return datetime.now(ZoneInfo(time_zone)).replace(tzinfo=None)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(f"Unknown time zone {time_zone!r}, using local time: {e}")
    return datetime.now()


def fetch_predictions_for_date(
    session: requests.Session, station_id: str, date: str
) -> Optional[list]:
    """Fetch hi/lo predictions for one day ("today" or YYYYMMDD)."""
    data = fetch_json_optional(
        session,
        NOAA_DATAGETTER_URL,
        params={
            "product": "predictions",
            "datum": "mllw",
            "station": station_id,
            "date": date,
            "interval": "hilo",
            "format": "json",
            "units": "english",
            "time_zone": "lst_ldt",
        },
        headers={"Accept": "application/json"},
    )
    if not data or not data.get("predictions"):
        logger.debug(f"No tide predictions for station {station_id} on {date}")
        return None
    return data["predictions"]


def _tide_record(tide: Optional[dict]) -> Optional[dict]:
    if tide is None:
        return None
    return {
        "time": tide["time"].isoformat(timespec="minutes"),
        "height": tide["height"],
        "type": tide["type"],
    }


def fetch_tide_predictions(
    session: requests.Session,
    station_id: str,
    time_zone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """Fetch the last and next high/low tide at a station.

    Today's predictions are tried first. Tomorrow's fill in a missing next
    tide and yesterday's a missing last tide.

    Args:
        session: HTTP session
        station_id: NOAA CO-OPS station id
        time_zone: IANA time zone of the station
        now: Station local time (defaults to the current time there)

    Returns:
        Dict with last_tide and next_tide (either may be None), or None if
        no tide could be determined
    """
    if now is None:
        now = station_now(time_zone)

    today = fetch_predictions_for_date(session, station_id, "today")
    if not today:
        return None

    last, upcoming = last_and_next_tide(today, now)

    if upcoming is None:
        tomorrow = (now + timedelta(days=1)).strftime("%Y%m%d")
        predictions = fetch_predictions_for_date(session, station_id, tomorrow)
        if predictions:
            _, upcoming = last_and_next_tide(predictions, now)

    if last is None:
        yesterday = (now - timedelta(days=1)).strftime("%Y%m%d")
        predictions = fetch_predictions_for_date(session, station_id, yesterday)
        if predictions:
            last, _ = last_and_next_tide(predictions, now)

    if last is None and upcoming is None:
        logger.info(f"Could not determine any tide for station {station_id}")
        return None

    return {"last_tide": _tide_record(last), "next_tide": _tide_record(upcoming)}
