"""Favorite locations, persisted in the cache database.

Usage:
    from wxdash.cache.favorites import FavoritesStore

    store = FavoritesStore(db, cache)
    result = store.migrate()  # once at startup
    store.add(location, name="Portland, OR", search_query="Portland, OR")
    for fav in store.list():
        print(fav.display_name, fav.uid)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from wxdash.cache.database import CacheDatabase
from wxdash.cache.identity import (
    compute_key,
    compute_uid,
    key_from_search_text,
    same_place,
)
from wxdash.cache.models import Favorite, Location, SlotIdentity
from wxdash.cache.weather import WeatherCache
from wxdash.errors import InvalidLocation, MigrationFailed, StorageCorrupt

logger = logging.getLogger(__name__)

# app_state key holding the favorites list
FAVORITES_KEY = "favorites"

MIGRATION_FAILED_NOTICE = (
    "Your saved favorites could not be upgraded and have been reset. "
    "Please add them again."
)


# Pure functions for testing (no database dependency)
def parse_favorites_json(raw: Optional[str]) -> list[Favorite]:
    """Parse favorites from the stored JSON string.

    Args:
        raw: JSON string from app_state, or None.

    Returns:
        List of favorites. Empty list if nothing is stored.

    Raises:
        StorageCorrupt: If the record is not a JSON list of objects
    """
    if not raw:
        return []
    try:
        result = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageCorrupt(f"favorites record is not JSON: {e}") from e

    if not isinstance(result, list) or not all(isinstance(d, dict) for d in result):
        raise StorageCorrupt("favorites record is not a list of objects")
    return [Favorite.from_dict(d) for d in result]


def serialize_favorites(favs: list[Favorite]) -> str:
    """Serialize favorites list to JSON string."""
    return json.dumps([f.to_dict() for f in favs])


def _normalize_query(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def _collapse_by_uid(favs: list[Favorite]) -> list[Favorite]:
    """Drop later favorites that share a UID with an earlier one.

    The first occurrence keeps its position and takes a custom name from a
    dropped duplicate when it has none of its own.
    """
    kept: dict[str, Favorite] = {}
    for fav in favs:
        first = kept.get(fav.uid)
        if first is None:
            kept[fav.uid] = fav
            continue
        logger.warning(f"Merging duplicate favorite {fav.display_name!r} into {first.uid}")
        if not first.custom_name and fav.custom_name:
            first.custom_name = fav.custom_name
    return list(kept.values())


@dataclass
class MigrationResult:
    """Outcome of a favorites migration pass."""

    repaired: int = 0
    merged: int = 0
    copied_slots: list[tuple[SlotIdentity, SlotIdentity]] = field(default_factory=list)
    discarded: int = 0
    error: Optional[MigrationFailed] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def notice(self) -> Optional[str]:
        """Message to show the user, if any."""
        return MIGRATION_FAILED_NOTICE if self.error is not None else None


class FavoritesStore:
    """Ordered, persisted set of favorite locations.

    Favorites are addressed by UID or legacy "City,ST" key. Removing a
    favorite also removes its cached weather.
    """

    def __init__(self, db: CacheDatabase, cache: WeatherCache):
        self.db = db
        self.cache = cache

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def list(self) -> list[Favorite]:
        """All favorites in insertion order.

        A corrupt stored record is cleared and read as an empty list.
        """
        try:
            return parse_favorites_json(self.db.get_state(FAVORITES_KEY))
        except StorageCorrupt as e:
            logger.warning(f"Discarding corrupt favorites record: {e}")
            self.db.delete_state(FAVORITES_KEY)
            return []

    def _save(self, favs: list[Favorite]) -> None:
        self.db.set_state(FAVORITES_KEY, serialize_favorites(favs))

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_by_uid(self, uid: Optional[str]) -> Optional[Favorite]:
        if not uid:
            return None
        return next((f for f in self.list() if f.uid == uid), None)

    def find_by_key(self, key: Optional[str]) -> Optional[Favorite]:
        if not key:
            return None
        return next((f for f in self.list() if f.key == key), None)

    def find(self, identifier: str) -> Optional[Favorite]:
        """Find a favorite by UID, falling back to legacy key."""
        return self.find_by_uid(identifier) or self.find_by_key(identifier)

    def find_by_search(self, text: str) -> Optional[Favorite]:
        """Find the favorite a search string refers to.

        Matches the favorite's original search text (case and whitespace
        insensitive) or its "City,ST" key.
        """
        query = _normalize_query(text)
        if not query:
            return None
        key = key_from_search_text(text)
        for fav in self.list():
            if _normalize_query(fav.search_query) == query:
                return fav
            if fav.key and (fav.key == key or fav.key.lower() == query):
                return fav
        return None

    def find_by_location(self, location: Union[Location, dict, None]) -> Optional[Favorite]:
        """Find the favorite at the same place as a location, then by key."""
        for fav in self.list():
            if same_place(fav.location, location):
                return fav
        return self.find_by_key(compute_key(location))

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add(
        self,
        location: Union[Location, dict],
        name: str,
        search_query: str = "",
        custom_name: Optional[str] = None,
    ) -> Favorite:
        """Add a favorite, or update the custom name of an existing one.

        Args:
            location: Geocoded location of the favorite
            name: Display name
            search_query: Text the user originally searched for
            custom_name: Optional display name override

        Returns:
            The stored favorite

        Raises:
            InvalidLocation: If no UID or key can be derived from the location
        """
        if isinstance(location, dict):
            location = Location.from_dict(location)

        uid = compute_uid(location)
        key = compute_key(location)
        if uid is None or key is None:
            raise InvalidLocation(f"Cannot add favorite {name!r}: location has no identity")

        favs = self.list()
        for fav in favs:
            if fav.uid == uid:
                if custom_name is not None:
                    fav.custom_name = custom_name or None
                    self._save(favs)
                logger.debug(f"Favorite {uid} already present")
                return fav

        fav = Favorite(
            uid=uid,
            key=key,
            name=name,
            location=location,
            search_query=search_query,
            custom_name=custom_name or None,
        )
        favs.append(fav)
        self._save(favs)
        logger.info(f"Added favorite {fav.display_name} ({uid})")
        return fav

    def remove(self, identifier: str) -> bool:
        """Remove a favorite by UID or key, along with its cached weather.

        Returns:
            True if a favorite was removed
        """
        favs = self.list()
        target = next((f for f in favs if f.uid == identifier), None)
        if target is None:
            target = next((f for f in favs if f.key == identifier), None)
        if target is None:
            return False

        favs.remove(target)
        self._save(favs)
        if target.uid:
            self.cache.clear(target.slot)
        logger.info(f"Removed favorite {target.display_name} ({target.uid})")
        return True

    def rename(self, identifier: str, new_name: Optional[str]) -> Optional[Favorite]:
        """Set a favorite's custom name. An empty name restores the original.

        Returns:
            The updated favorite, or None if no favorite matched
        """
        favs = self.list()
        target = next((f for f in favs if f.uid == identifier), None)
        if target is None:
            target = next((f for f in favs if f.key == identifier), None)
        if target is None:
            return None

        target.custom_name = (new_name or "").strip() or None
        self._save(favs)
        return target

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    def _repair(self, fav: Favorite) -> Favorite:
        """Compute a repaired copy of a favorite that lacks a UID.

        The location embedded in the favorite's legacy cached payload is
        preferred over the favorite's own, which may carry a placeholder
        state.

        Raises:
            MigrationFailed: If no UID and key can be derived
        """
        location = fav.location
        if fav.key:
            entry = self.cache.load(SlotIdentity.for_key(fav.key))
            cached_location = entry.weather.get("location") if entry else None
            if isinstance(cached_location, dict) and compute_uid(cached_location):
                location = Location.from_dict(cached_location)

        uid = compute_uid(location)
        key = compute_key(location)
        if uid is None or key is None:
            raise MigrationFailed(
                f"Favorite {fav.display_name!r} has no usable location",
                favorite_name=fav.display_name,
            )

        return Favorite(
            uid=uid,
            key=key,
            name=fav.name,
            location=location,
            search_query=fav.search_query,
            custom_name=fav.custom_name,
        )

    def migrate(self) -> MigrationResult:
        """Give every stored favorite a UID.

        All-or-nothing: if any favorite cannot be repaired, every favorite is
        discarded and the result carries the error and a user notice. Cached
        weather under a repaired favorite's old key is copied (not moved) to
        its new UID slot when that slot is still empty.
        """
        favs = self.list()
        result = MigrationResult()
        if all(f.uid for f in favs):
            return result

        repaired: list[tuple[Favorite, Favorite]] = []
        try:
            for fav in favs:
                if fav.uid:
                    repaired.append((fav, fav))
                else:
                    repaired.append((fav, self._repair(fav)))
        except MigrationFailed as e:
            logger.error(f"Favorites migration failed, discarding {len(favs)} favorites: {e}")
            self.db.delete_state(FAVORITES_KEY)
            result.discarded = len(favs)
            result.error = e
            return result

        for old, new in repaired:
            if old is new:
                continue
            result.repaired += 1
            if old.key:
                source = SlotIdentity.for_key(old.key)
                target = new.slot
                if self.cache.get_fetched_at(target) is None and self.cache.copy(source, target):
                    result.copied_slots.append((source, target))

        merged = _collapse_by_uid([new for _, new in repaired])
        result.merged = len(repaired) - len(merged)
        self._save(merged)
        logger.info(
            f"Favorites migration repaired {result.repaired} favorites, "
            f"merged {result.merged} duplicates, "
            f"copied {len(result.copied_slots)} cache slots"
        )
        return result
