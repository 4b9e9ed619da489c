"""Tests for location identity."""

import math

import pytest

from wxdash.cache.identity import (
    compute_key,
    compute_uid,
    format_location_display_name,
    key_from_search_text,
    location_display_name,
    normalize_city,
    normalize_state,
    same_place,
)
from wxdash.cache.models import Location


class TestComputeUid:
    """Tests for compute_uid."""

    def test_coordinates_take_precedence(self):
        """UID is built from coordinates rounded to 4 decimals."""
        loc = Location(lat=45.52, lon=-122.68, city="Portland", state="OR")
        assert compute_uid(loc) == "loc_45.5200_-122.6800"

    def test_state_change_keeps_uid(self):
        """Geocoder reporting "US" then "OR" yields the same UID."""
        before = Location(lat=45.52, lon=-122.68, city="Portland", state="US")
        after = Location(lat=45.52, lon=-122.68, city="Portland", state="OR")
        assert compute_uid(before) == compute_uid(after)

    def test_rounding(self):
        """Coordinates equal after rounding share a UID."""
        a = Location(lat=45.520001, lon=-122.680004)
        b = Location(lat=45.519999, lon=-122.679996)
        assert compute_uid(a) == compute_uid(b)

    def test_negative_zero(self):
        """-0.0 and 0.0 give the same UID."""
        assert compute_uid(Location(lat=-0.0, lon=-0.0)) == compute_uid(Location(lat=0.0, lon=0.0))
        assert compute_uid(Location(lat=-0.0, lon=0.0)) == "loc_0.0000_0.0000"

    def test_city_state_fallback(self):
        """Without coordinates the normalized city and state are used."""
        loc = Location(city="St. Louis", state="mo")
        assert compute_uid(loc) == "loc_st louis_MO"

    def test_non_finite_coordinates_ignored(self):
        """NaN or infinite coordinates fall back to city and state."""
        loc = Location(lat=math.nan, lon=-122.68, city="Portland", state="OR")
        assert compute_uid(loc) == "loc_portland_OR"
        loc = Location(lat=45.0, lon=math.inf, city="Portland", state="OR")
        assert compute_uid(loc) == "loc_portland_OR"

    def test_missing_everything(self):
        """No coordinates and no city/state gives None."""
        assert compute_uid(Location()) is None
        assert compute_uid(Location(city="Portland")) is None
        assert compute_uid(Location(city="!!!", state="OR")) is None
        assert compute_uid(None) is None

    def test_accepts_dict(self):
        """Dict locations are accepted, including string coordinates."""
        assert compute_uid({"lat": "45.52", "lon": "-122.68"}) == "loc_45.5200_-122.6800"

    def test_deterministic(self):
        """Same input always yields same UID."""
        loc = Location(lat=47.6062, lon=-122.3321, city="Seattle", state="WA")
        assert compute_uid(loc) == compute_uid(loc)


class TestComputeKey:
    """Tests for compute_key."""

    def test_title_cases_city(self):
        """City words are capitalized and state upper-cased."""
        loc = Location(city="salt lake city", state="ut")
        assert compute_key(loc) == "Salt Lake City,UT"

    def test_keeps_placeholder_state(self):
        """A "US" state is part of the key."""
        loc = Location(lat=45.52, lon=-122.68, city="Portland", state="US")
        assert compute_key(loc) == "Portland,US"

    def test_missing_parts(self):
        """Missing city or state gives None."""
        assert compute_key(Location(city="Portland")) is None
        assert compute_key(Location(state="OR")) is None
        assert compute_key(Location(city="   ", state="OR")) is None
        assert compute_key(None) is None


class TestNormalization:
    """Tests for city and state normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("Portland", "portland"),
        ("  St.  Louis ", "st louis"),
        ("Coeur d'Alene", "coeur dalene"),
        (None, ""),
    ])
    def test_normalize_city(self, raw, expected):
        """City names are lower-cased and stripped of punctuation."""
        assert normalize_city(raw) == expected

    def test_normalize_state(self):
        """State codes are upper-cased and stripped of punctuation."""
        assert normalize_state(" o.r ") == "OR"
        assert normalize_state(None) == ""


class TestDisplayName:
    """Tests for display name formatting."""

    def test_city_and_state(self):
        assert format_location_display_name("Portland", "OR") == "Portland, OR"

    def test_placeholder_state_dropped(self):
        """A "US" state is not shown."""
        assert format_location_display_name("Portland", "US") == "Portland"
        assert format_location_display_name("Portland", "") == "Portland"

    def test_missing_city(self):
        assert format_location_display_name("", "OR") == ""

    def test_location_display_name(self, portland):
        assert location_display_name(portland) == "Portland, OR"
        assert location_display_name(portland.to_dict()) == "Portland, OR"
        assert location_display_name(None) == ""


class TestSearchText:
    """Tests for parsing search text."""

    def test_city_state(self):
        assert key_from_search_text("portland, or") == "Portland,OR"
        assert key_from_search_text("  New York ,NY ") == "New York,NY"

    def test_not_city_state(self):
        """Free text, zip codes and full state names do not parse."""
        assert key_from_search_text("Portland") is None
        assert key_from_search_text("97201") is None
        assert key_from_search_text("Portland, Oregon") is None
        assert key_from_search_text(None) is None


class TestSamePlace:
    """Tests for same_place."""

    def test_same_coordinates(self, portland, portland_us):
        assert same_place(portland, portland_us) is True

    def test_different_places(self, portland, seattle):
        assert same_place(portland, seattle) is False

    def test_unidentifiable(self):
        """Two locations without identity are not the same place."""
        assert same_place(Location(), Location()) is False
