"""Tests for background refresh.

Tests use real database operations with pre-populated cache data.
The upstream boundary is the in-memory FakeFetcher from conftest.
"""

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from wxdash.cache.favorites import FAVORITES_KEY
from wxdash.cache.models import SlotIdentity
from wxdash.cache.orchestrator import RefreshOrchestrator
from wxdash.cache.refresh import (
    RefreshResult,
    build_cache_status,
    get_cache_status,
    main,
    print_status,
    refresh_favorites,
    refresh_favorites_async,
)


def _now():
    return datetime.now(timezone.utc)


@pytest.fixture
def live_orchestrator(fake_fetcher, cache, favorites):
    """Orchestrator on the real clock, since refresh ages are measured against now."""
    return RefreshOrchestrator(fake_fetcher, cache, favorites)


class TestRefreshResult:
    """Tests for RefreshResult dataclass."""

    def test_success_rate_all_success(self):
        """success_rate returns 100 when all succeed."""
        result = RefreshResult(
            total=10, success=10, failed=0, skipped=0, duration_ms=1000
        )
        assert result.success_rate == 100.0

    def test_success_rate_partial(self):
        """success_rate calculates correctly for partial success."""
        result = RefreshResult(
            total=10, success=5, failed=3, skipped=2, duration_ms=1000
        )
        assert result.success_rate == 50.0

    def test_success_rate_empty(self):
        """success_rate returns 0 for empty run."""
        result = RefreshResult(
            total=0, success=0, failed=0, skipped=0, duration_ms=0
        )
        assert result.success_rate == 0.0

    def test_str_representation(self):
        """__str__ returns readable summary."""
        result = RefreshResult(
            total=5, success=3, failed=1, skipped=1, duration_ms=5000
        )
        string = str(result)

        assert "3/5" in string
        assert "1 failed" in string
        assert "1 skipped" in string
        assert "5000ms" in string


class TestRefreshFavorites:
    """Tests for refreshing favorites."""

    def test_refresh_skips_fresh_cache(self, live_orchestrator, favorites, cache,
                                       fake_fetcher, portland, weather_factory):
        """Favorites with fresh cached data are skipped."""
        fav = favorites.add(portland, name="Portland, OR")
        cache.save(fav.slot, weather_factory(portland), fetched_at=_now())

        result = asyncio.run(refresh_favorites_async(live_orchestrator))

        assert result.skipped == 1
        assert result.success == 0
        assert fake_fetcher.weather_calls == []

    def test_refresh_stale_and_missing(self, live_orchestrator, favorites, cache,
                                       fake_fetcher, portland, seattle, weather_factory):
        """Stale and never-fetched favorites are refreshed."""
        fav = favorites.add(portland, name="Portland, OR")
        favorites.add(seattle, name="Seattle, WA")
        cache.save(fav.slot, weather_factory(portland), fetched_at=_now() - timedelta(hours=1))

        result = asyncio.run(refresh_favorites_async(live_orchestrator))

        assert result.total == 2
        assert result.success == 2
        assert len(fake_fetcher.weather_calls) == 2
        assert _now() - cache.get_fetched_at(fav.slot) < timedelta(minutes=1)

    def test_refresh_force_ignores_cache(self, live_orchestrator, favorites, cache,
                                         fake_fetcher, portland, weather_factory):
        fav = favorites.add(portland, name="Portland, OR")
        cache.save(fav.slot, weather_factory(portland), fetched_at=_now())

        result = asyncio.run(refresh_favorites_async(live_orchestrator, force=True))

        assert result.success == 1
        assert result.skipped == 0

    def test_refresh_counts_failures(self, live_orchestrator, favorites, fake_fetcher,
                                     portland, seattle):
        favorites.add(portland, name="Portland, OR")
        favorites.add(seattle, name="Seattle, WA")
        fake_fetcher.fail_weather = True

        result = asyncio.run(refresh_favorites_async(live_orchestrator))

        assert result.failed == 2
        assert result.success == 0

    def test_refresh_does_not_change_shown_state(self, live_orchestrator, favorites, portland):
        favorites.add(portland, name="Portland, OR")
        asyncio.run(refresh_favorites_async(live_orchestrator))
        assert live_orchestrator.state.weather is None

    def test_refresh_favorites_migrates_first(self, db, fake_fetcher, portland):
        """Legacy favorites get a UID before they are refreshed."""
        db.set_state(FAVORITES_KEY, json.dumps([
            {"key": "Portland,OR", "name": "Portland, OR", "location": portland.to_dict()}
        ]))

        result = refresh_favorites(db, fake_fetcher)

        assert result.success == 1
        assert db.get_cache_row(SlotIdentity.for_uid("loc_45.5200_-122.6800")) is not None


class TestCacheStatus:
    """Tests for cache status reporting."""

    def test_status_empty(self, db):
        status = build_cache_status(db)

        assert status["total_favorites"] == 0
        assert status["cache_count"] == 0
        assert status["slots"] == []
        assert status["recent_fetches"] == []

    def test_status_with_favorites(self, db, favorites, cache, portland, seattle,
                                   weather_factory):
        now = _now()
        fav = favorites.add(portland, name="Portland, OR", custom_name="Home")
        favorites.add(seattle, name="Seattle, WA")
        cache.save(fav.slot, weather_factory(portland), fetched_at=now - timedelta(minutes=3))
        db.log_fetch(source="nws", status="error", duration_ms=10, error_message="HTTP 500")

        status = build_cache_status(db, now=now)

        assert status["total_favorites"] == 2
        assert status["fresh_favorites"] == 1
        assert status["failed_fetch_count"] == 1
        home, other = status["favorites"]
        assert home["name"] == "Home"
        assert home["age"] == "3 minutes ago"
        assert home["freshness"] == "Fresh"
        assert other["fetched_at"] is None
        assert other["freshness"] == "Unknown"
        kinds = sorted(s["kind"] for s in status["slots"])
        assert kinds == ["default", "uid"]

    def test_get_cache_status_by_path(self, temp_db_path):
        status = get_cache_status(temp_db_path)
        assert status["db_path"] == str(temp_db_path)

    def test_print_status(self, db, favorites, portland, capsys):
        favorites.add(portland, name="Portland, OR")
        db.log_fetch(source="nws", status="success", duration_ms=42)

        print_status(build_cache_status(db))

        out = capsys.readouterr().out
        assert "Portland, OR" in out
        assert "never" in out
        assert "42ms" in out


class TestMain:
    """Tests for the command line entry point."""

    def test_status_flag(self, temp_db_path, capsys):
        with patch.object(sys, "argv", ["wxdash-refresh", "--status", "--db", str(temp_db_path)]):
            assert main() == 0
        assert "Weather Dashboard Cache Status" in capsys.readouterr().out

    def test_refresh_uses_nws_fetcher(self, temp_db_path, fake_fetcher):
        with patch.object(sys, "argv", ["wxdash-refresh", "--db", str(temp_db_path), "-q"]), \
                patch("wxdash.pipelines.nws.NWSFetcher", return_value=fake_fetcher):
            assert main() == 0
        assert fake_fetcher.closed is True
