"""Refresh orchestration for the dashboard.

``RefreshOrchestrator.resolve`` turns what the user asked for (search text,
"here", or a favorite) into a ``DashboardState``. Rules, first match wins:

1. Already displaying this slot and it is not stale: return it, no I/O.
2. A durable entry exists and is not stale: show it. If it is older than
   the pre-emptive threshold, refresh in the background.
3. A durable entry exists but is stale: show it with ``refreshing=True``
   and refresh in the background.
4. Nothing cached: publish a loading state and wait for the fetch.

Every fetch result is written to its slot, but it only reaches the live view
if the view still shows the slot the fetch was issued for
(``apply_refresh_result``). At most one fetch per slot is in flight; a second
request for the same slot joins the first.

"Here" is never served from the durable cache, since the detected
coordinates can move between lookups. Rule 1 still applies to the
coordinate-keyed slot the detection resolves to.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from wxdash.cache.favorites import FavoritesStore
from wxdash.cache.identity import (
    compute_key,
    compute_uid,
    key_from_search_text,
    location_display_name,
)
from wxdash.cache.models import (
    CacheEntry,
    Location,
    PlaceDescriptor,
    PlaceKind,
    SlotIdentity,
)
from wxdash.cache.staleness import (
    AUTO_REFRESH_CHECK_INTERVAL,
    is_stale,
    should_refresh_preemptively,
)
from wxdash.cache.weather import WeatherCache, utcnow
from wxdash.errors import FetchFailed, InvalidLocation

if TYPE_CHECKING:
    from wxdash.pipelines.base import FetchedWeather, WeatherFetcher

logger = logging.getLogger(__name__)

# app_state keys
LAST_VIEWED_KEY = "last_viewed"
AUTO_UPDATE_KEY = "auto_update"
GEOCODE_MEMO_PREFIX = "geocode:"

AUTO_UPDATE_DEFAULT = True


@dataclass(frozen=True)
class DashboardState:
    """Snapshot of what the dashboard is showing.

    Attributes:
        place: What the user asked for
        slot: Cache slot the shown data belongs to
        location: Location of the shown data
        weather: Weather payload, None while nothing is shown
        observations: Station observations payload
        observations_available: Whether observations were fetched
        last_fetched_at: When the shown data was fetched upstream
        loading: A fetch is in flight and there is nothing to show yet
        refreshing: Shown data is being refreshed in the background
        error: Message from the last failed fetch for this place
        source: Where the shown data came from ('cache', 'network', 'none')
    """

    place: Optional[PlaceDescriptor] = None
    slot: Optional[SlotIdentity] = None
    location: Optional[Location] = None
    weather: Optional[dict] = None
    observations: Optional[dict] = None
    observations_available: bool = False
    last_fetched_at: Optional[datetime] = None
    loading: bool = False
    refreshing: bool = False
    error: Optional[str] = None
    source: str = "none"

    @property
    def has_data(self) -> bool:
        return self.weather is not None

    @property
    def location_display(self) -> str:
        return location_display_name(self.location)


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one fetch, tagged with the slot it was issued for."""

    slot: SlotIdentity
    location: Optional[Location] = None
    entry: Optional[CacheEntry] = None
    error: Optional[str] = None


def state_from_entry(
    place: Optional[PlaceDescriptor],
    slot: SlotIdentity,
    entry: CacheEntry,
    location: Optional[Location] = None,
    **changes,
) -> DashboardState:
    """Build a state that shows a cached entry."""
    if location is None and isinstance(entry.weather.get("location"), dict):
        location = Location.from_dict(entry.weather["location"])
    state = DashboardState(
        place=place,
        slot=slot,
        location=location,
        weather=entry.weather,
        observations=entry.observations,
        observations_available=entry.observations_available,
        last_fetched_at=entry.fetched_at,
        source="cache",
    )
    return replace(state, **changes) if changes else state


def apply_refresh_result(state: DashboardState, outcome: FetchOutcome) -> DashboardState:
    """Apply a fetch outcome to a state.

    The outcome is discarded (``state`` returned unchanged) unless the state
    still shows the slot the fetch was issued for. A failed fetch keeps the
    shown data and timestamp and only clears the in-flight flags.
    """
    if state.slot != outcome.slot:
        return state

    if outcome.entry is None:
        return replace(state, loading=False, refreshing=False)

    return state_from_entry(
        state.place,
        outcome.slot,
        outcome.entry,
        location=outcome.location,
        source="network",
    )


@dataclass
class _Target:
    """A place resolved to a slot.

    ``location`` is None when the place could only be matched offline, in
    which case nothing can be fetched and ``error`` says why.
    """

    slot: SlotIdentity
    location: Optional[Location]
    error: Optional[FetchFailed] = None


class RefreshOrchestrator:
    """Resolves places to dashboard states and keeps them fresh.

    Example:
        >>> orchestrator = RefreshOrchestrator(NWSFetcher(), cache, favorites)
        >>> state = await orchestrator.resolve(PlaceDescriptor.search("Portland, OR"))
        >>> state.last_fetched_at
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """

    def __init__(
        self,
        fetcher: "WeatherFetcher",
        cache: WeatherCache,
        favorites: FavoritesStore,
        clock: Callable[[], datetime] = utcnow,
        on_change: Optional[Callable[[DashboardState], None]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            fetcher: Upstream fetch boundary
            cache: Durable weather cache
            favorites: Favorites store sharing the cache's database
            clock: Source of "now" (injected by tests)
            on_change: Called with every newly published state
        """
        self.fetcher = fetcher
        self.cache = cache
        self.favorites = favorites
        self.db = cache.db
        self.on_change = on_change
        self._clock = clock

        self.state = DashboardState()
        self._inflight: dict[SlotIdentity, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # State publication
    # -------------------------------------------------------------------------

    def _publish(self, state: DashboardState) -> DashboardState:
        if state is self.state:
            return state
        self.state = state
        if self.on_change is not None:
            self.on_change(state)
        return state

    def _log_fetch(
        self,
        source: str,
        status: str,
        started: float,
        slot: Optional[SlotIdentity] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.db.log_fetch(
            source=source,
            status=status,
            duration_ms=int((time.time() - started) * 1000),
            slot=str(slot) if slot is not None else None,
            error_message=error_message,
        )

    # -------------------------------------------------------------------------
    # Persisted preferences
    # -------------------------------------------------------------------------

    @property
    def auto_update_enabled(self) -> bool:
        value = self.db.get_state(AUTO_UPDATE_KEY)
        if value is None:
            return AUTO_UPDATE_DEFAULT
        return value == "true"

    def set_auto_update(self, enabled: bool) -> None:
        self.db.set_state(AUTO_UPDATE_KEY, "true" if enabled else "false")
        logger.info(f"Auto-update {'enabled' if enabled else 'disabled'}")

    def _remember_last_viewed(self, place: PlaceDescriptor) -> None:
        self.db.set_state(LAST_VIEWED_KEY, json.dumps(place.to_dict()))

    def last_viewed(self) -> PlaceDescriptor:
        """The last place resolved, defaulting to "here"."""
        raw = self.db.get_state(LAST_VIEWED_KEY)
        if not raw:
            return PlaceDescriptor.here()
        try:
            return PlaceDescriptor.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable last viewed place {raw!r}: {e}")
            return PlaceDescriptor.here()

    def _get_geocode_memo(self, text: str) -> Optional[Location]:
        raw = self.db.get_state(GEOCODE_MEMO_PREFIX + text.lower())
        if not raw:
            return None
        try:
            return Location.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable geocode memo for '{text}': {e}")
            return None

    def _set_geocode_memo(self, text: str, location: Location) -> None:
        self.db.set_state(GEOCODE_MEMO_PREFIX + text.lower(), json.dumps(location.to_dict()))

    # -------------------------------------------------------------------------
    # Place resolution
    # -------------------------------------------------------------------------

    def slot_for_location(self, location: Location) -> SlotIdentity:
        """Slot a geocoded location is cached under.

        Favorites own UID slots; other places use their "City,ST" key, or
        their UID when no key can be derived.

        Raises:
            InvalidLocation: If no identity can be derived
        """
        favorite = self.favorites.find_by_location(location)
        if favorite is not None:
            return favorite.slot

        key = compute_key(location)
        if key is not None:
            return SlotIdentity.for_key(key)

        uid = compute_uid(location)
        if uid is not None:
            return SlotIdentity.for_uid(uid)

        raise InvalidLocation(f"Cannot identify location {location_display_name(location)!r}")

    async def _resolve_search(self, text: str) -> _Target:
        if not text:
            raise InvalidLocation("Empty search")

        favorite = self.favorites.find_by_search(text)
        if favorite is not None:
            return _Target(favorite.slot, favorite.location)

        location = self._get_geocode_memo(text)
        if location is None:
            started = time.time()
            try:
                location = await self.fetcher.geocode(text)
            except FetchFailed as e:
                self._log_fetch("geocode", "error", started, error_message=str(e))
                key = key_from_search_text(text)
                if key is None:
                    raise
                logger.warning(f"Geocoding '{text}' failed, trying cached {key}: {e}")
                return _Target(SlotIdentity.for_key(key), None, error=e)

            self._log_fetch("geocode", "success", started)
            self._set_geocode_memo(text, location)

        return _Target(self.slot_for_location(location), location)

    def _resolve_favorite(self, uid: str) -> _Target:
        favorite = self.favorites.find_by_uid(uid)
        if favorite is None:
            raise InvalidLocation(f"Unknown favorite {uid!r}")
        return _Target(favorite.slot, favorite.location)

    async def _detect_here(self) -> _Target:
        started = time.time()
        try:
            location = await self.fetcher.detect_location()
        except FetchFailed as e:
            self._log_fetch("ip", "error", started, error_message=str(e))
            raise
        self._log_fetch("ip", "success", started)

        uid = compute_uid(location)
        if uid is None:
            raise InvalidLocation("Detected location has no coordinates")
        return _Target(SlotIdentity.for_uid(uid), location)

    # -------------------------------------------------------------------------
    # Resolve
    # -------------------------------------------------------------------------

    async def resolve(
        self,
        place: PlaceDescriptor,
        state: Optional[DashboardState] = None,
        force: bool = False,
    ) -> DashboardState:
        """Resolve a place to the state the dashboard should show.

        Args:
            place: What the user asked for
            state: State currently shown (defaults to the last published one)
            force: Treat any cached data as stale

        Returns:
            The state to show

        Raises:
            InvalidLocation: If the place cannot be identified
            FetchFailed: If fetching failed and nothing is cached for the place
        """
        current = state if state is not None else self.state

        if place.kind is PlaceKind.HERE:
            target = await self._detect_here()
        elif place.kind is PlaceKind.FAVORITE:
            target = self._resolve_favorite(place.value)
        else:
            target = await self._resolve_search(place.value)
        self._remember_last_viewed(place)

        now = self._clock()

        # Rule 1
        if (
            not force
            and current.slot == target.slot
            and current.has_data
            and not is_stale(current.last_fetched_at, now)
        ):
            logger.debug(f"Already showing fresh data for {target.slot}")
            if current.place != place:
                return self._publish(replace(current, place=place))
            return current

        entry = None if place.kind is PlaceKind.HERE else self.cache.load(target.slot)

        if entry is not None and target.location is None:
            # Matched offline only; nothing to refresh with
            return self._publish(
                state_from_entry(place, target.slot, entry, error=str(target.error))
            )

        # Rules 2 and 3
        if entry is not None:
            stale = force or is_stale(entry.fetched_at, now)
            shown = self._publish(
                state_from_entry(place, target.slot, entry, refreshing=stale)
            )
            if stale:
                logger.info(f"Serving stale {target.slot}, refreshing in background")
                self._schedule_refresh(target.slot, target.location)
            elif should_refresh_preemptively(entry.fetched_at, now):
                logger.info(f"Serving {target.slot}, refreshing pre-emptively")
                self._schedule_refresh(target.slot, target.location)
            return shown

        if target.location is None:
            raise target.error

        # Rule 4
        loading = self._publish(
            DashboardState(place=place, slot=target.slot, location=target.location, loading=True)
        )
        try:
            outcome = await self._start_fetch(target.slot, target.location)
        except FetchFailed as e:
            fallback = self.cache.load(target.slot) if place.kind is PlaceKind.HERE else None
            if fallback is not None:
                shown = state_from_entry(place, target.slot, fallback, error=str(e))
                if self.state.slot == target.slot:
                    self._publish(shown)
                return shown
            if self.state.slot == target.slot:
                self._publish(replace(loading, loading=False, error=str(e)))
            raise

        self._publish(apply_refresh_result(self.state, outcome))
        return apply_refresh_result(loading, outcome)

    async def refresh(self) -> DashboardState:
        """Refresh the current place now, regardless of data age.

        Waits for the refresh to finish. A failed refresh keeps the shown
        data and sets ``error``.
        """
        place = self.state.place
        if place is None:
            return await self.restore()

        state = await self.resolve(place, force=True)
        task = self._inflight.get(state.slot) if state.slot is not None else None
        if task is None:
            return self.state

        try:
            await task
        except FetchFailed as e:
            if self.state.slot == state.slot:
                return self._publish(replace(self.state, refreshing=False, error=str(e)))
        await self.wait_for_refreshes()
        return self.state

    async def restore(self) -> DashboardState:
        """Resolve the last viewed place (or "here" on first launch)."""
        place = self.last_viewed()
        logger.info(f"Restoring last viewed place: {place.kind.value} {place.value!r}")
        try:
            return await self.resolve(place)
        except InvalidLocation as e:
            if place.kind is PlaceKind.HERE:
                raise
            logger.warning(f"Last viewed place is gone ({e}), showing current location")
            self.db.delete_state(LAST_VIEWED_KEY)
            return await self.resolve(PlaceDescriptor.here())

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def _start_fetch(self, slot: SlotIdentity, location: Location) -> asyncio.Task:
        """Start a fetch for a slot, or join the one already in flight."""
        task = self._inflight.get(slot)
        if task is not None and not task.done():
            logger.debug(f"Joining in-flight fetch for {slot}")
            return task

        task = asyncio.create_task(self._fetch_and_store(slot, location))
        self._inflight[slot] = task
        task.add_done_callback(lambda t: self._forget_fetch(slot, t))
        return task

    async def fetch_slot(self, slot: SlotIdentity, location: Location) -> FetchOutcome:
        """Fetch and cache a slot without touching the shown state.

        Raises:
            FetchFailed: If the upstream fetch fails
        """
        return await self._start_fetch(slot, location)

    def _forget_fetch(self, slot: SlotIdentity, task: asyncio.Task) -> None:
        if self._inflight.get(slot) is task:
            del self._inflight[slot]

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _fetch_and_store(self, slot: SlotIdentity, location: Location) -> FetchOutcome:
        # fetched_at is when the fetch started, not when it finished
        fetched_at = self._clock()
        started = time.time()
        try:
            result = await self.fetcher.fetch_weather(location)
        except FetchFailed as e:
            logger.error(f"Weather fetch for {slot} failed: {e}")
            self._log_fetch("nws", "error", started, slot, str(e))
            raise
        self._log_fetch("nws", "success", started, slot)

        observations_available = result.observations is not None
        self.cache.save(
            slot,
            result.weather,
            result.observations,
            fetched_at=fetched_at,
            observations_available=observations_available,
        )
        entry = CacheEntry(
            weather=result.weather,
            fetched_at=fetched_at,
            observations=result.observations,
            observations_available=observations_available,
            location_display=location_display_name(result.location),
        )
        self._track(self._enrich(slot, result, fetched_at))
        return FetchOutcome(slot=slot, location=result.location, entry=entry)

    def _schedule_refresh(self, slot: SlotIdentity, location: Location) -> None:
        task = self._start_fetch(slot, location)
        self._track(self._apply_when_done(slot, task))

    async def _apply_when_done(self, slot: SlotIdentity, task: asyncio.Task) -> None:
        try:
            outcome = await task
        except FetchFailed as e:
            logger.warning(f"Background refresh of {slot} failed, keeping shown data: {e}")
            outcome = FetchOutcome(slot=slot, error=str(e))
        self._publish(apply_refresh_result(self.state, outcome))

    async def _enrich(self, slot: SlotIdentity, result: "FetchedWeather", fetched_at: datetime) -> None:
        """Attach a nearby tide station and its tides without moving the fetch timestamp."""
        try:
            station = await self.fetcher.find_tide_station(result.location)
        except FetchFailed as e:
            logger.warning(f"Tide station lookup for {slot} failed: {e}")
            return
        if not station:
            return

        try:
            tide_data = await self.fetcher.fetch_tide_predictions(
                station["station_id"], result.location.time_zone
            )
        except FetchFailed as e:
            logger.warning(f"Tide predictions for station {station['station_id']} failed: {e}")
            tide_data = None
        station = {**station, "tide_data": tide_data}

        if self.cache.get_fetched_at(slot) != fetched_at:
            logger.debug(f"Skipping tide enrichment for {slot}: slot was refreshed since")
            return

        weather = {**result.weather, "tide_station": station}
        self.cache.save(
            slot,
            weather,
            result.observations,
            observations_available=result.observations is not None,
        )
        if self.state.slot == slot and self.state.last_fetched_at == fetched_at:
            self._publish(replace(self.state, weather=weather))

    async def wait_for_refreshes(self) -> None:
        """Wait until no fetch, background refresh or enrichment is running."""
        while True:
            pending = {t for t in self._background | set(self._inflight.values()) if not t.done()}
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Auto-update
    # -------------------------------------------------------------------------

    async def auto_refresh_tick(self) -> bool:
        """Re-resolve the current place if auto-update is on and data is stale.

        Returns:
            True if a refresh was started
        """
        if not self.auto_update_enabled or self.state.place is None:
            return False
        if self.state.loading or self.state.refreshing:
            return False
        if not is_stale(self.state.last_fetched_at, self._clock()):
            return False

        logger.info(f"Auto-update: refreshing {self.state.slot}")
        try:
            await self.resolve(self.state.place)
        except FetchFailed as e:
            logger.warning(f"Auto-update failed: {e}")
        return True

    async def run_auto_refresh(self, interval: Optional[float] = None) -> None:
        """Call ``auto_refresh_tick`` forever, every ``interval`` seconds."""
        if interval is None:
            interval = AUTO_REFRESH_CHECK_INTERVAL.total_seconds()
        while True:
            await asyncio.sleep(interval)
            await self.auto_refresh_tick()
