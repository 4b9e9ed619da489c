"""Background refresh for cache pre-warming.

Refreshes cached weather for every favorite whose data is stale, so the
dashboard opens on fresh data. Run from cron:

    # Every 10 minutes
    */10 * * * * python -m wxdash.cache.refresh

Usage:
    python -m wxdash.cache.refresh           # Refresh stale favorites
    python -m wxdash.cache.refresh --force   # Refresh every favorite
    python -m wxdash.cache.refresh --status  # Show cache status
"""

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from wxdash.cache.database import CacheDatabase
from wxdash.cache.favorites import FavoritesStore
from wxdash.cache.orchestrator import RefreshOrchestrator
from wxdash.cache.staleness import get_freshness, is_stale, time_ago
from wxdash.cache.weather import WeatherCache
from wxdash.config import DEFAULT_DB_PATH
from wxdash.errors import DashboardError

if TYPE_CHECKING:
    from wxdash.pipelines.base import WeatherFetcher

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Result of a refresh operation."""

    total: int
    success: int
    failed: int
    skipped: int
    duration_ms: int

    @property
    def success_rate(self) -> float:
        """Percentage of successful refreshes."""
        if self.total == 0:
            return 0.0
        return (self.success / self.total) * 100

    def __str__(self) -> str:
        return (
            f"Refresh complete: {self.success}/{self.total} successful, "
            f"{self.failed} failed, {self.skipped} skipped "
            f"({self.duration_ms}ms)"
        )


async def refresh_favorites_async(
    orchestrator: RefreshOrchestrator,
    force: bool = False,
) -> RefreshResult:
    """Refresh cached weather for every favorite.

    Args:
        orchestrator: Orchestrator whose cache and favorites to refresh
        force: Refresh even if the cached data is fresh

    Returns:
        RefreshResult with counts of successful/failed refreshes
    """
    favorites = orchestrator.favorites.list()
    start_time = time.time()

    total = len(favorites)
    success = 0
    failed = 0
    skipped = 0

    logger.info(f"Starting weather refresh for {total} favorites...")

    for i, fav in enumerate(favorites, 1):
        if not fav.uid:
            logger.warning(f"[{i}/{total}] {fav.display_name}: no uid, run migration first")
            failed += 1
            continue

        fetched_at = orchestrator.cache.get_fetched_at(fav.slot)
        if not force and not is_stale(fetched_at):
            logger.debug(f"[{i}/{total}] {fav.display_name}: cache fresh (fetched_at={fetched_at})")
            skipped += 1
            continue

        logger.info(f"[{i}/{total}] {fav.display_name}: fetching weather...")
        try:
            outcome = await orchestrator.fetch_slot(fav.slot, fav.location)
        except DashboardError as e:
            logger.error(f"[{i}/{total}] {fav.display_name}: failed - {e}")
            failed += 1
            continue

        logger.info(f"[{i}/{total}] {fav.display_name}: cached (fetched_at={outcome.entry.fetched_at})")
        success += 1

    await orchestrator.wait_for_refreshes()
    duration_ms = int((time.time() - start_time) * 1000)

    result = RefreshResult(
        total=total,
        success=success,
        failed=failed,
        skipped=skipped,
        duration_ms=duration_ms,
    )

    logger.info(str(result))
    return result


def refresh_favorites(
    db: CacheDatabase,
    fetcher: "WeatherFetcher",
    force: bool = False,
) -> RefreshResult:
    """Migrate favorites if needed, then refresh their cached weather.

    Args:
        db: CacheDatabase instance
        fetcher: Upstream fetch boundary
        force: Refresh even if the cached data is fresh

    Returns:
        RefreshResult with counts
    """
    cache = WeatherCache(db)
    favorites = FavoritesStore(db, cache)

    migration = favorites.migrate()
    if not migration.success:
        logger.warning(migration.notice)

    orchestrator = RefreshOrchestrator(fetcher, cache, favorites)
    return asyncio.run(refresh_favorites_async(orchestrator, force=force))


def build_cache_status(db: CacheDatabase, now: Optional[datetime] = None) -> dict:
    """Summarize an open cache database.

    Args:
        db: CacheDatabase instance
        now: Reference time for ages (defaults to current UTC time)

    Returns:
        Dict with cache statistics and per-favorite status
    """
    now = now or datetime.now(timezone.utc)
    stats = db.get_stats()
    cache = WeatherCache(db)
    favorites = FavoritesStore(db, cache)

    favorite_status = []
    for fav in favorites.list():
        fetched_at = cache.get_fetched_at(fav.slot) if fav.uid else None
        freshness = get_freshness(fetched_at, now)
        favorite_status.append({
            "name": fav.display_name,
            "uid": fav.uid,
            "key": fav.key,
            "fetched_at": fetched_at,
            "age": time_ago(fetched_at, now) if fetched_at else None,
            "freshness": freshness,
        })

    fresh_count = sum(1 for s in favorite_status if s["freshness"] in ("Fresh", "Aging"))

    return {
        "db_path": str(db.db_path),
        "total_favorites": len(favorite_status),
        "fresh_favorites": fresh_count,
        "cache_count": stats["cache_count"],
        "fetch_count": stats["fetch_count"],
        "failed_fetch_count": stats["failed_fetch_count"],
        "slots": [
            {"slot": str(slot), "kind": slot.kind.value, "fetched_at": fetched_at}
            for slot, fetched_at in cache.slots()
        ],
        "favorites": favorite_status,
        "recent_fetches": db.get_fetch_log(limit=10),
    }


def get_cache_status(db_path: Optional[Path] = None) -> dict:
    """Get current cache status.

    Args:
        db_path: Path to DuckDB file. Uses default if not specified.

    Returns:
        Dict with cache statistics and per-favorite status
    """
    db = CacheDatabase(db_path or DEFAULT_DB_PATH)

    try:
        return build_cache_status(db)
    finally:
        db.close()


def print_status(status: dict) -> None:
    """Print cache status in human-readable format."""
    print()
    print("=" * 60)
    print("Weather Dashboard Cache Status")
    print("=" * 60)
    print(f"Database: {status['db_path']}")
    print(f"Favorites: {status['total_favorites']}")
    print()
    print(f"Favorites with fresh data: {status['fresh_favorites']}/{status['total_favorites']}")
    print(f"Total cached slots: {status['cache_count']}")
    print(f"Upstream fetches logged: {status['fetch_count']} ({status['failed_fetch_count']} failed)")

    print()
    print("Favorite Status:")
    print("-" * 60)

    for fav in status["favorites"]:
        age = fav["age"] or "never"
        print(f"  {fav['name']:<25} {fav['freshness']:<8} {age}")

    if status["recent_fetches"]:
        print()
        print("Recent Fetches:")
        print("-" * 60)
        for entry in status["recent_fetches"]:
            error = f" - {entry.error_message}" if entry.error_message else ""
            print(
                f"  {entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.source:<8} "
                f"{entry.status:<8} {entry.duration_ms}ms{error}"
            )

    print("=" * 60)


def main():
    """CLI entry point for background refresh."""
    parser = argparse.ArgumentParser(
        description="Refresh cached weather for all favorites",
        epilog="""
Examples:
  python -m wxdash.cache.refresh          # Refresh stale favorites
  python -m wxdash.cache.refresh --force  # Refresh all favorites
  python -m wxdash.cache.refresh --status # Show status

Cron setup (every 10 minutes):
  */10 * * * * cd /path/to/wxdash && python -m wxdash.cache.refresh >> /var/log/wxdash-refresh.log 2>&1
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Force refresh even if cache is fresh",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show current cache status",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help=f"Database path (default: {DEFAULT_DB_PATH})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress output except errors",
    )

    args = parser.parse_args()

    # Configure logging
    if args.quiet:
        level = logging.ERROR
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Handle status command
    if args.status:
        status = get_cache_status(args.db)
        print_status(status)
        return 0

    # Imported here: wxdash.pipelines itself imports from wxdash.cache
    from wxdash.pipelines.nws import NWSFetcher

    db = CacheDatabase(args.db or DEFAULT_DB_PATH)
    fetcher = NWSFetcher()

    try:
        result = refresh_favorites(db, fetcher, force=args.force)
        return 1 if result.failed > 0 else 0

    except DashboardError as e:
        logger.error(f"Refresh failed: {e}")
        return 1

    finally:
        fetcher.close()
        db.close()


if __name__ == "__main__":
    sys.exit(main())
