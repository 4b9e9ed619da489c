"""Error taxonomy for the weather dashboard.

Identity and cache errors are handled close to where they occur (serve stale
data, or treat the record as empty). Fetch errors reach the caller only when
there is no cached data to fall back on.
"""

from typing import Optional


class DashboardError(Exception):
    """Base class for all dashboard errors."""


class InvalidLocation(DashboardError):
    """No stable identity can be derived for a location.

    The caller should prompt the user for clearer input.
    """


class FetchFailed(DashboardError):
    """An upstream network or API call failed.

    Attributes:
        source: Which upstream failed ('geocode', 'nws', 'ip', ...)
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class MigrationFailed(DashboardError):
    """A legacy favorite could not be repaired during migration."""

    def __init__(self, message: str, favorite_name: Optional[str] = None):
        super().__init__(message)
        self.favorite_name = favorite_name


class StorageCorrupt(DashboardError):
    """A durable record could not be deserialized."""
