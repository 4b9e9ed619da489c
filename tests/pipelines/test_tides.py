"""Tests for tide station lookup and tide predictions."""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from wxdash.pipelines.tides import (
    fetch_tide_predictions,
    fetch_tide_station,
    find_nearest_station,
    last_and_next_tide,
    parse_prediction,
    supports_water_levels,
)

STATIONS = [
    {"id": 9439040, "name": "Astoria", "lat": 46.2073, "lng": -123.7683},
    {"id": 9440083, "name": "Vancouver", "lat": 45.6311, "lng": -122.6964},
    {"id": 9447130, "name": "Seattle", "lat": 47.6026, "lng": -122.3393},
    {"id": 1, "name": "Broken", "lat": None, "lng": "x"},
]


class TestFindNearestStation:
    """Tests for find_nearest_station."""

    def test_picks_closest(self):
        station = find_nearest_station(STATIONS, 45.52, -122.68)

        assert station["station_id"] == "9440083"
        assert station["name"] == "Vancouver"
        assert station["distance_miles"] == pytest.approx(7.7, abs=0.3)

    def test_none_within_range(self):
        assert find_nearest_station(STATIONS, 39.74, -104.99) is None

    def test_custom_range(self):
        assert find_nearest_station(STATIONS, 45.52, -122.68, max_miles=1.0) is None

    def test_skips_malformed(self):
        assert find_nearest_station([STATIONS[3]], 45.52, -122.68) is None


class TestWaterLevels:
    def test_supported(self):
        products = {"products": [{"name": "Tide Predictions"}, {"name": "Water Levels"}]}
        assert supports_water_levels(products) is True

    def test_unsupported(self):
        assert supports_water_levels({"products": [{"name": "Meteorological"}]}) is False
        assert supports_water_levels(None) is False
        assert supports_water_levels({"products": "nope"}) is False


class TestFetchTideStation:
    def test_fetch(self):
        answers = [{"stations": STATIONS}, {"products": [{"name": "Water Levels"}]}]
        with patch("wxdash.pipelines.tides.fetch_json_optional", side_effect=answers) as fetch:
            station = fetch_tide_station(MagicMock(), 45.52, -122.68)

        assert station["station_id"] == "9440083"
        assert station["supports_water_levels"] is True
        assert "9440083" in fetch.call_args_list[1].args[1]

    def test_listing_unavailable(self):
        with patch("wxdash.pipelines.tides.fetch_json_optional", return_value=None):
            assert fetch_tide_station(MagicMock(), 45.52, -122.68) is None


TODAY = [
    {"t": "2024-11-05 00:41", "v": "2.105", "type": "L"},
    {"t": "2024-11-05 06:12", "v": "7.812", "type": "H"},
    {"t": "2024-11-05 12:40", "v": "0.402", "type": "L"},
    {"t": "2024-11-05 18:55", "v": "8.990", "type": "H"},
]


class TestParsePrediction:
    def test_parse(self):
        tide = parse_prediction(TODAY[1])

        assert tide["time"] == datetime(2024, 11, 5, 6, 12)
        assert tide["height"] == pytest.approx(7.812)
        assert tide["type"] == "H"

    @pytest.mark.parametrize("record", [{}, {"t": "soon", "v": "1.0"}, {"t": "2024-11-05 06:12", "v": None}])
    def test_malformed(self, record):
        assert parse_prediction(record) is None


class TestLastAndNextTide:
    def test_between_tides(self):
        last, upcoming = last_and_next_tide(TODAY, datetime(2024, 11, 5, 9, 0))

        assert last["time"] == datetime(2024, 11, 5, 6, 12)
        assert upcoming["time"] == datetime(2024, 11, 5, 12, 40)

    def test_exact_time_counts_as_last(self):
        last, upcoming = last_and_next_tide(TODAY, datetime(2024, 11, 5, 12, 40))

        assert last["type"] == "L"
        assert upcoming["type"] == "H"

    def test_after_last_tide(self):
        last, upcoming = last_and_next_tide(TODAY, datetime(2024, 11, 5, 23, 0))

        assert last["time"] == datetime(2024, 11, 5, 18, 55)
        assert upcoming is None


class TestFetchTidePredictions:
    """Tests for fetch_tide_predictions with the datagetter mocked."""

    def test_today_only(self):
        with patch("wxdash.pipelines.tides.fetch_json_optional",
                   return_value={"predictions": TODAY}) as fetch:
            data = fetch_tide_predictions(MagicMock(), "9439040", now=datetime(2024, 11, 5, 9, 0))

        assert data["last_tide"] == {"time": "2024-11-05T06:12", "height": 7.812, "type": "H"}
        assert data["next_tide"]["time"] == "2024-11-05T12:40"
        assert fetch.call_count == 1
        params = fetch.call_args.kwargs["params"]
        assert params["product"] == "predictions"
        assert params["interval"] == "hilo"
        assert params["station"] == "9439040"
        assert params["date"] == "today"

    def test_next_tide_from_tomorrow(self):
        tomorrow = [{"t": "2024-11-06 01:20", "v": "1.9", "type": "L"}]
        answers = [{"predictions": TODAY}, {"predictions": tomorrow}]
        with patch("wxdash.pipelines.tides.fetch_json_optional", side_effect=answers) as fetch:
            data = fetch_tide_predictions(MagicMock(), "9439040", now=datetime(2024, 11, 5, 23, 0))

        assert data["next_tide"]["time"] == "2024-11-06T01:20"
        assert fetch.call_args.kwargs["params"]["date"] == "20241106"

    def test_last_tide_from_yesterday(self):
        yesterday = [{"t": "2024-11-04 19:30", "v": "8.4", "type": "H"}]
        answers = [{"predictions": TODAY}, {"predictions": yesterday}]
        with patch("wxdash.pipelines.tides.fetch_json_optional", side_effect=answers) as fetch:
            data = fetch_tide_predictions(MagicMock(), "9439040", now=datetime(2024, 11, 5, 0, 10))

        assert data["last_tide"]["time"] == "2024-11-04T19:30"
        assert data["next_tide"]["time"] == "2024-11-05T00:41"
        assert fetch.call_args.kwargs["params"]["date"] == "20241104"

    def test_no_predictions(self):
        with patch("wxdash.pipelines.tides.fetch_json_optional", return_value={"error": {}}):
            assert fetch_tide_predictions(MagicMock(), "9439040", now=datetime(2024, 11, 5)) is None

    def test_unavailable(self):
        with patch("wxdash.pipelines.tides.fetch_json_optional", return_value=None):
            assert fetch_tide_predictions(MagicMock(), "9439040", time_zone="America/Los_Angeles") is None
