"""Dashboard API for wxdash.

This module provides:

- create_app: Factory function to create FastAPI application
- WeatherResponse: Weather shown for a place
- FavoriteInfo: A saved favorite

Note: FastAPI-dependent exports (create_app, DashboardContext) are
lazy-loaded to allow importing schemas without FastAPI installed.
"""

# Schemas can be imported directly (only depend on pydantic)
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


# Lazy imports for FastAPI-dependent components
def __getattr__(name):
    """Lazy load FastAPI-dependent components."""
    if name in ("create_app", "DashboardContext"):
        from wxdash.api.app import DashboardContext, create_app
        if name == "create_app":
            return create_app
        elif name == "DashboardContext":
            return DashboardContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "create_app",
    "DashboardContext",
    "AutoUpdateSetting",
    "CacheStatusResponse",
    "ErrorResponse",
    "FavoriteCreate",
    "FavoriteInfo",
    "FavoriteRename",
    "HealthResponse",
    "LocationInfo",
    "WeatherResponse",
]
