"""Weather caching layer for wxdash.

Provides stable location identities, a two-tier (memory + DuckDB) weather
cache, favorites, and the orchestrator that decides when to serve cached
data and when to fetch.

Background refresh of favorites can be run via:
    python -m wxdash.cache.refresh

Or scheduled via cron:
    */10 * * * * python -m wxdash.cache.refresh
"""

from wxdash.cache.database import CacheDatabase
from wxdash.cache.favorites import FavoritesStore, MigrationResult
from wxdash.cache.identity import (
    compute_key,
    compute_uid,
    format_location_display_name,
    key_from_search_text,
)
from wxdash.cache.memory import MemoryTier
from wxdash.cache.models import (
    CacheEntry,
    Favorite,
    Location,
    PlaceDescriptor,
    PlaceKind,
    SlotIdentity,
    SlotKind,
)
from wxdash.cache.orchestrator import (
    DashboardState,
    FetchOutcome,
    RefreshOrchestrator,
    apply_refresh_result,
)
from wxdash.cache.refresh import (
    RefreshResult,
    build_cache_status,
    get_cache_status,
    refresh_favorites,
)
from wxdash.cache.staleness import (
    STALE_THRESHOLD,
    get_freshness,
    is_stale,
    should_refresh_preemptively,
    time_ago,
)
from wxdash.cache.weather import WeatherCache

__all__ = [
    "CacheDatabase",
    "CacheEntry",
    "DashboardState",
    "Favorite",
    "FavoritesStore",
    "FetchOutcome",
    "Location",
    "MemoryTier",
    "MigrationResult",
    "PlaceDescriptor",
    "PlaceKind",
    "RefreshOrchestrator",
    "RefreshResult",
    "STALE_THRESHOLD",
    "SlotIdentity",
    "SlotKind",
    "WeatherCache",
    "apply_refresh_result",
    "build_cache_status",
    "compute_key",
    "compute_uid",
    "format_location_display_name",
    "get_cache_status",
    "get_freshness",
    "is_stale",
    "key_from_search_text",
    "refresh_favorites",
    "should_refresh_preemptively",
    "time_ago",
]
