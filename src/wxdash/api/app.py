"""FastAPI application for the weather dashboard.

Provides REST API endpoints for:
- Weather for a search, the current location, or a favorite
- Favorites management
- Manual refresh and the auto-update preference
- Cache status and health checks

Example:
    >>> from wxdash.api import create_app
    >>> app = create_app()
    >>> # Run with: uvicorn wxdash.api.app:app --reload
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wxdash.api.schemas import (
    AutoUpdateSetting,
    CacheStatusResponse,
    ErrorResponse,
    FavoriteCreate,
    FavoriteInfo,
    FavoriteRename,
    HealthResponse,
    LocationInfo,
    WeatherResponse,
)
from wxdash.cache.database import CacheDatabase
from wxdash.cache.favorites import FavoritesStore, MigrationResult
from wxdash.cache.identity import location_display_name
from wxdash.cache.models import Favorite, Location, PlaceDescriptor, PlaceKind
from wxdash.cache.orchestrator import DashboardState, RefreshOrchestrator
from wxdash.cache.refresh import build_cache_status
from wxdash.cache.staleness import get_freshness, time_ago
from wxdash.cache.weather import WeatherCache
from wxdash.config import API_VERSION
from wxdash.errors import FetchFailed, InvalidLocation
from wxdash.pipelines.base import WeatherFetcher
from wxdash.pipelines.nws import NWSFetcher

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Location could not be identified"},
    502: {"model": ErrorResponse, "description": "Upstream fetch failed, nothing cached"},
}


class DashboardContext:
    """Cache, favorites and orchestrator shared by all requests.

    Opened lazily so importing the app does not touch the database.

    Attributes:
        db_path: Path to the DuckDB file (None for the default)
        migration: Result of the startup favorites migration
    """

    def __init__(self, db_path: Optional[Path] = None, fetcher: Optional[WeatherFetcher] = None):
        self.db_path = db_path
        self._fetcher = fetcher
        self.db: Optional[CacheDatabase] = None
        self.cache: Optional[WeatherCache] = None
        self.favorites: Optional[FavoritesStore] = None
        self._orchestrator: Optional[RefreshOrchestrator] = None
        self.migration: Optional[MigrationResult] = None

    def is_open(self) -> bool:
        return self._orchestrator is not None

    def open(self) -> None:
        """Open the database and run the favorites migration."""
        if self.is_open():
            return

        self.db = CacheDatabase(self.db_path)
        self.cache = WeatherCache(self.db)
        self.favorites = FavoritesStore(self.db, self.cache)
        self.migration = self.favorites.migrate()
        if not self.migration.success:
            logger.warning(f"Favorites reset during migration: {self.migration.error}")

        fetcher = self._fetcher or NWSFetcher()
        self._orchestrator = RefreshOrchestrator(fetcher, self.cache, self.favorites)
        logger.info(f"Dashboard context opened ({self.db.db_path})")

    @property
    def orchestrator(self) -> RefreshOrchestrator:
        self.open()
        return self._orchestrator

    def close(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.fetcher.close()
            self._orchestrator = None
        if self.db is not None:
            self.db.close()
            self.db = None


def location_info(location: Optional[Location]) -> Optional[LocationInfo]:
    if location is None:
        return None
    return LocationInfo(
        lat=location.lat,
        lon=location.lon,
        city=location.city,
        state=location.state,
        display_name=location_display_name(location),
        time_zone=location.time_zone,
        elevation_feet=location.elevation_feet,
        radar_station=location.radar_station,
    )


def weather_response(state: DashboardState) -> WeatherResponse:
    """Convert a dashboard state to its API representation."""
    freshness = get_freshness(state.last_fetched_at)
    return WeatherResponse(
        place_kind=state.place.kind.value if state.place else None,
        query=state.place.value if state.place else "",
        slot=str(state.slot) if state.slot else None,
        location=location_info(state.location),
        weather=state.weather,
        observations=state.observations,
        observations_available=state.observations_available,
        last_fetched_at=state.last_fetched_at,
        last_updated=time_ago(state.last_fetched_at) if state.last_fetched_at else None,
        freshness=freshness,
        loading=state.loading,
        refreshing=state.refreshing,
        error=state.error,
        source=state.source,
    )


def favorite_info(fav: Favorite) -> FavoriteInfo:
    return FavoriteInfo(
        uid=fav.uid,
        key=fav.key,
        name=fav.name,
        custom_name=fav.custom_name,
        display_name=fav.display_name,
        search_query=fav.search_query,
        location=location_info(fav.location),
    )


def create_app(
    db_path: Optional[Path] = None,
    fetcher: Optional[WeatherFetcher] = None,
    auto_refresh: bool = True,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        db_path: Optional path to the DuckDB cache file
        fetcher: Upstream fetch boundary (defaults to NWSFetcher)
        auto_refresh: Whether to run the auto-update loop while serving

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Weather Dashboard API",
        description="Cached NWS weather for searched places, the current location and favorites",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    context = DashboardContext(db_path, fetcher)
    app.state.context = context
    background: dict[str, asyncio.Task] = {}

    @app.on_event("startup")
    async def startup_event():
        """Open the cache and start the auto-update loop."""
        context.open()
        if auto_refresh:
            background["auto_refresh"] = asyncio.create_task(
                context.orchestrator.run_auto_refresh()
            )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background work and close the cache."""
        task = background.pop("auto_refresh", None)
        if task is not None:
            task.cancel()
        if context.is_open():
            await context.orchestrator.wait_for_refreshes()
        context.close()

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with custom response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
            ).model_dump(),
        )

    @app.exception_handler(InvalidLocation)
    async def invalid_location_handler(request: Request, exc: InvalidLocation):
        """Ask the user for clearer input."""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_LOCATION", message=str(exc)).model_dump(),
        )

    @app.exception_handler(FetchFailed)
    async def fetch_failed_handler(request: Request, exc: FetchFailed):
        """Upstream failed and nothing was cached to fall back on."""
        return JSONResponse(
            status_code=502,
            content=ErrorResponse(
                error="FETCH_FAILED",
                message=str(exc),
                detail=exc.source,
            ).model_dump(),
        )

    @app.get("/", tags=["info"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Weather Dashboard API",
            "version": API_VERSION,
            "docs": "/docs",
        }

    @app.get("/health", response_model=HealthResponse, tags=["info"])
    async def health_check():
        """Health check endpoint."""
        orchestrator = context.orchestrator
        return HealthResponse(
            status="healthy",
            version=API_VERSION,
            favorites=len(orchestrator.favorites.list()),
            migration_notice=context.migration.notice if context.migration else None,
        )

    @app.get(
        "/weather",
        response_model=WeatherResponse,
        responses=_ERROR_RESPONSES,
        tags=["weather"],
    )
    async def get_weather(q: str = Query(..., min_length=1, description="Search text or 'here'")):
        """Weather for search text, or for the current location with q=here.

        Cached data is returned immediately; stale data is refreshed in the
        background and reported with refreshing=true.
        """
        state = await context.orchestrator.resolve(PlaceDescriptor.search(q))
        return weather_response(state)

    @app.get(
        "/weather/favorites/{uid}",
        response_model=WeatherResponse,
        responses={404: {"model": ErrorResponse, "description": "Unknown favorite"}, **_ERROR_RESPONSES},
        tags=["weather"],
    )
    async def get_favorite_weather(uid: str):
        """Weather for a saved favorite."""
        orchestrator = context.orchestrator
        if orchestrator.favorites.find_by_uid(uid) is None:
            raise HTTPException(status_code=404, detail=f"Favorite not found: {uid}")
        state = await orchestrator.resolve(PlaceDescriptor.favorite(uid))
        return weather_response(state)

    @app.get("/weather/current", response_model=WeatherResponse, tags=["weather"])
    async def get_current_state():
        """What the dashboard is showing now, without any I/O."""
        return weather_response(context.orchestrator.state)

    @app.post(
        "/refresh",
        response_model=WeatherResponse,
        responses=_ERROR_RESPONSES,
        tags=["weather"],
    )
    async def refresh():
        """Refresh the shown place now, regardless of data age.

        With nothing shown yet, restores the last viewed place.
        """
        state = await context.orchestrator.refresh()
        return weather_response(state)

    @app.get("/favorites", response_model=list[FavoriteInfo], tags=["favorites"])
    async def list_favorites():
        """List saved favorites in order."""
        return [favorite_info(f) for f in context.orchestrator.favorites.list()]

    @app.post(
        "/favorites",
        response_model=FavoriteInfo,
        status_code=201,
        responses=_ERROR_RESPONSES,
        tags=["favorites"],
    )
    async def add_favorite(request: FavoriteCreate):
        """Save a place as a favorite.

        The place is resolved first, so the favorite starts out with the
        weather already cached for it.
        """
        orchestrator = context.orchestrator
        place = PlaceDescriptor.search(request.query)
        state = await orchestrator.resolve(place)
        if state.location is None:
            raise InvalidLocation(f"Could not locate '{request.query}'")

        name = location_display_name(state.location) or request.query
        search_query = request.query if place.kind is PlaceKind.SEARCH else name
        fav = orchestrator.favorites.add(
            state.location,
            name=name,
            search_query=search_query,
            custom_name=request.custom_name,
        )

        cache = orchestrator.cache
        if state.slot is not None and state.slot != fav.slot and cache.get_fetched_at(fav.slot) is None:
            cache.copy(state.slot, fav.slot)
        return favorite_info(fav)

    @app.patch(
        "/favorites/{identifier}",
        response_model=FavoriteInfo,
        responses={404: {"model": ErrorResponse, "description": "Unknown favorite"}},
        tags=["favorites"],
    )
    async def rename_favorite(identifier: str, request: FavoriteRename):
        """Set or clear a favorite's display name."""
        fav = context.orchestrator.favorites.rename(identifier, request.custom_name)
        if fav is None:
            raise HTTPException(status_code=404, detail=f"Favorite not found: {identifier}")
        return favorite_info(fav)

    @app.delete(
        "/favorites/{identifier}",
        responses={404: {"model": ErrorResponse, "description": "Unknown favorite"}},
        tags=["favorites"],
    )
    async def remove_favorite(identifier: str):
        """Remove a favorite and its cached weather."""
        if not context.orchestrator.favorites.remove(identifier):
            raise HTTPException(status_code=404, detail=f"Favorite not found: {identifier}")
        return {"removed": identifier}

    @app.get("/settings/auto-update", response_model=AutoUpdateSetting, tags=["settings"])
    async def get_auto_update():
        """Whether stale data refreshes automatically."""
        return AutoUpdateSetting(enabled=context.orchestrator.auto_update_enabled)

    @app.put("/settings/auto-update", response_model=AutoUpdateSetting, tags=["settings"])
    async def set_auto_update(setting: AutoUpdateSetting):
        """Turn automatic refresh of stale data on or off."""
        orchestrator = context.orchestrator
        orchestrator.set_auto_update(setting.enabled)
        return AutoUpdateSetting(enabled=orchestrator.auto_update_enabled)

    @app.get("/cache/status", response_model=CacheStatusResponse, tags=["info"])
    async def cache_status():
        """Cache statistics and per-favorite freshness."""
        orchestrator = context.orchestrator
        return CacheStatusResponse(**build_cache_status(orchestrator.db))

    return app


# Default app instance for uvicorn
app = create_app()
