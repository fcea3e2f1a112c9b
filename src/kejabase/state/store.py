"""Observable in-memory application state store.

This is the only component allowed to mutate :class:`AppState`. Every
mutation goes through :meth:`StateStore.update_state`, which notifies all
subscribers and persists the durable subset.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from kejabase.backend.base import Backend, Document
from kejabase.events import STATE_CHANGED, EventBus
from kejabase.exceptions import AuthenticationError, BackendError, KejabaseError
from kejabase.models.booking import BookingRequest
from kejabase.models.listing import Listing, ListingType
from kejabase.models.state import AppState, DurableState, ListingFilters
from kejabase.models.user import Role, UserIdentity
from kejabase.state.filters import filter_listings
from kejabase.state.persistence import DurableStorage

_logger = logging.getLogger(__name__)

StateListener = Callable[[AppState], None]

# Listing collections in fetch order, with the type tag each one carries.
_LISTING_SOURCES: tuple[tuple[str, ListingType], ...] = (
    ("houses", ListingType.HOUSE),
    ("bnbs", ListingType.BNB),
)


def _field_names() -> dict[str, str]:
    """Map every accepted update key (field name or camelCase alias) to its field name."""
    names: dict[str, str] = {}
    for name, info in AppState.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


_UPDATE_KEYS = _field_names()


def _error_message(exc: BaseException, fallback: str) -> str:
    if isinstance(exc, BackendError):
        return exc.user_message
    return str(exc) or fallback


def _to_listing(doc: Document, listing_type: ListingType) -> Listing | None:
    """Build a listing tagged with *listing_type*; malformed documents give ``None``."""
    try:
        return Listing.model_validate({**doc.data, "id": doc.id, "type": listing_type.value})
    except ValidationError as exc:
        _logger.warning(
            "Skipping malformed %s listing %s: %d validation error(s)", listing_type.value, doc.id, exc.error_count()
        )
        _logger.debug("Validation details for %s", doc.id, exc_info=True)
        return None


class StateStore:
    """Single source of truth for mutable application state.

    Usage::

        store = StateStore(storage=JsonFileStorage("~/.kejabase/state.json"))
        unsubscribe = store.subscribe(lambda state: print(len(state.listings)))
        store.set_backend(backend)
        await store.initialize_state()
    """

    def __init__(
        self,
        *,
        backend: Backend | None = None,
        storage: DurableStorage | None = None,
        storage_key: str = "appState",
        events: EventBus | None = None,
    ) -> None:
        self._state = AppState()
        self._listeners: list[StateListener] = []
        self._backend = backend
        self._storage = storage
        self._storage_key = storage_key
        self._events = events
        self._init_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()
        self._sync_tasks: set[asyncio.Task[None]] = set()
        self.restore()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def backend(self) -> Backend | None:
        return self._backend

    def set_backend(self, backend: Backend) -> StateStore:
        self._backend = backend
        return self

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self) -> AppState:
        """Return a deep copy of the current state."""
        return self._state.model_copy(deep=True)

    def is_favorite(self, listing_id: str) -> bool:
        return listing_id in self._state.favorites

    def favorite_listings(self) -> list[Listing]:
        """Favorited listings that are currently loaded, in favorites order."""
        by_id = {listing.id: listing for listing in self._state.listings}
        return [by_id[fav] for fav in self._state.favorites if fav in by_id]

    def apply_filters(self, filters: ListingFilters | Mapping[str, Any] | None = None) -> list[Listing]:
        """Filter the loaded listings.

        Uses the filters held in state unless *filters* is given. The
        listings in state are never modified.
        """
        if filters is None:
            spec = self._state.filters
        elif isinstance(filters, ListingFilters):
            spec = filters
        else:
            spec = ListingFilters.model_validate(filters)
        return filter_listings(self._state.listings, spec)

    # ------------------------------------------------------------------
    # Mutation + notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; it receives the full state after every update."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update_state(self, partial: Mapping[str, Any] | None = None, /, **fields: Any) -> None:
        """Shallow-merge *partial* (and keyword *fields*) into the state.

        Each key replaces the whole field; nested values such as ``filters``
        are not deep-merged. Subscribers are notified even when nothing
        changed, then the durable subset is persisted.

        Raises
        ------
        ValueError
            For unknown keys or values that fail validation. The state is left
            untouched in that case.
        """
        updates: dict[str, Any] = {}
        for key, value in {**(partial or {}), **fields}.items():
            name = _UPDATE_KEYS.get(key)
            if name is None:
                raise ValueError(f"Unknown state field: {key!r}")
            updates[name] = value

        current = {name: getattr(self._state, name) for name in AppState.model_fields}
        self._state = AppState.model_validate({**current, **updates})

        self._notify()
        self._persist()

    def reset_filters(self) -> None:
        self.update_state(filters=ListingFilters())

    def _notify(self) -> None:
        snapshot = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.warning("State listener %r failed", listener, exc_info=True)
        if self._events is not None:
            self._events.emit(STATE_CHANGED, snapshot)

    # ------------------------------------------------------------------
    # Durable subset
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self._storage is None:
            return
        blob = DurableState.from_state(self._state).model_dump_json(by_alias=True)
        try:
            self._storage.set_item(self._storage_key, blob)
        except Exception:
            _logger.warning("Failed to persist durable state", exc_info=True)

    def restore(self) -> bool:
        """Load the durable subset from storage without notifying.

        The restored identity is provisional: the next successful
        :meth:`initialize_state` replaces it with the backend's view.
        """
        if self._storage is None:
            return False
        try:
            blob = self._storage.get_item(self._storage_key)
        except Exception:
            _logger.warning("Failed to read durable state", exc_info=True)
            return False
        if not blob:
            return False
        try:
            durable = DurableState.model_validate_json(blob)
        except ValidationError:
            _logger.warning("Discarding malformed durable state under %r", self._storage_key)
            return False

        current = {name: getattr(self._state, name) for name in AppState.model_fields}
        current.update(
            current_user=durable.current_user,
            role=durable.role,
            favorites=durable.favorites,
        )
        self._state = AppState.model_validate(current)
        _logger.debug("Restored durable state (user=%s, favorites=%d)", durable.current_user, len(durable.favorites))
        return True

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def toggle_favorite(self, listing_id: str) -> asyncio.Task[None] | None:
        """Add *listing_id* to favorites, or remove it if already present.

        The local toggle is applied immediately. When a user is signed in the
        whole favorites set is then synced to the backend in a background
        task, which is returned. A failed sync is reported through
        ``error`` and does not undo the toggle.
        """
        favorites = list(self._state.favorites)
        if listing_id in favorites:
            favorites.remove(listing_id)
        else:
            favorites.append(listing_id)
        self.update_state(favorites=favorites)

        user = self._state.current_user
        if user is None or self._backend is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.warning("No running event loop, favorites of %s not synced", user.uid)
            return None
        task = loop.create_task(self._sync_favorites(user.uid))
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)
        return task

    async def _sync_favorites(self, uid: str) -> None:
        async with self._sync_lock:
            backend = self._backend
            if backend is None:
                return
            desired = list(self._state.favorites)
            try:
                collection = backend.collections["favorites"]
                existing = await collection.where("userId", uid).get()
                stored: set[str] = set()
                for doc in existing:
                    listing_id = doc.data.get("listingId")
                    if listing_id in desired and listing_id not in stored:
                        stored.add(listing_id)
                    else:
                        await collection.delete(doc.id)
                for listing_id in desired:
                    if listing_id not in stored:
                        await collection.add(
                            {
                                "userId": uid,
                                "listingId": listing_id,
                                "createdAt": backend.server_timestamp(),
                            }
                        )
            except Exception as exc:
                _logger.warning("Failed to save favorites for %s", uid, exc_info=True)
                self.update_state(error=_error_message(exc, "Error saving favorites"))
                return
            _logger.debug("Synced %d favorites for %s", len(desired), uid)

    async def flush(self) -> None:
        """Wait for pending favorites syncs to finish."""
        if self._sync_tasks:
            await asyncio.gather(*self._sync_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Single listing and bookings
    # ------------------------------------------------------------------

    async def fetch_listing_by_id(self, listing_id: str) -> Listing | None:
        """Look *listing_id* up in houses, then bnbs.

        Returns ``None`` when no backend is wired, the listing does not exist
        or the lookup fails.
        """
        backend = self._backend
        if backend is None:
            return None
        try:
            for collection_name, listing_type in _LISTING_SOURCES:
                doc = await backend.collections[collection_name].get(listing_id)
                if doc is not None:
                    return _to_listing(doc, listing_type)
        except BackendError:
            _logger.warning("Failed to fetch listing %s", listing_id, exc_info=True)
        return None

    async def create_booking(self, booking: BookingRequest) -> str:
        """Store *booking* as a pending booking of the signed-in user.

        Returns the new booking id.

        Raises
        ------
        AuthenticationError
            When nobody is signed in.
        KejabaseError
            When no backend is wired.
        BackendError
            When the backend rejects the write.
        """
        user = self._state.current_user
        if user is None:
            raise AuthenticationError("Please login to make a booking.", code="unauthenticated")
        backend = self._backend
        if backend is None:
            raise KejabaseError("Backend services not wired yet")
        data = {**booking.to_document(user.uid), "createdAt": backend.server_timestamp()}
        booking_id = await backend.collections["bookings"].add(data)
        _logger.info("Booking %s created for listing %s", booking_id, booking.listing_id)
        return booking_id

    # ------------------------------------------------------------------
    # Backend refresh
    # ------------------------------------------------------------------

    async def initialize_state(self) -> bool:
        """Refresh identity, role, listings and favorites from the backend.

        Everything is committed in a single update. On any failure the error
        is recorded and listings/favorites are reset to empty instead of
        being partially applied. Overlapping calls run one after another.

        Returns ``True`` when the refresh succeeded.
        """
        backend = self._backend
        if backend is None or not getattr(backend, "collections", None):
            _logger.warning("Backend services not wired yet, skipping state initialization")
            return False

        async with self._init_lock:
            try:
                user = backend.auth.current_user
                role = await self._fetch_role(backend, user)
                listings: list[Listing] = []
                for collection_name, listing_type in _LISTING_SOURCES:
                    listings.extend(await self._fetch_listings(backend, collection_name, listing_type, user))
                favorites = await self._fetch_favorites(backend, user)
            except Exception as exc:
                _logger.warning("Error initializing state", exc_info=True)
                self.update_state(
                    error=_error_message(exc, "Error loading listings"),
                    listings=[],
                    favorites=[],
                )
                return False

            self.update_state(
                current_user=user,
                role=role,
                listings=listings,
                favorites=favorites,
                error=None,
            )
            _logger.info("State initialized: %d listings, %d favorites", len(listings), len(favorites))
            return True

    @staticmethod
    async def _fetch_role(backend: Backend, user: UserIdentity | None) -> str:
        if user is None:
            return Role.GUEST.value
        doc = await backend.collections["users"].get(user.uid)
        role = doc.data.get("role") if doc is not None else None
        return str(role) if role else Role.GUEST.value

    @staticmethod
    async def _fetch_listings(
        backend: Backend,
        collection_name: str,
        listing_type: ListingType,
        user: UserIdentity | None,
    ) -> list[Listing]:
        collection = backend.collections[collection_name]
        docs: list[Document]
        if user is None:
            docs = await collection.where("public", True).get()
        else:
            docs = await collection.get_all()
        listings: list[Listing] = []
        for doc in docs:
            listing = _to_listing(doc, listing_type)
            if listing is not None:
                listings.append(listing)
        return listings

    @staticmethod
    async def _fetch_favorites(backend: Backend, user: UserIdentity | None) -> list[str]:
        if user is None:
            return []
        docs = await backend.collections["favorites"].where("userId", user.uid).get()
        favorites: list[str] = []
        for doc in docs:
            listing_id = doc.data.get("listingId")
            if isinstance(listing_id, str) and listing_id:
                favorites.append(listing_id)
        return favorites
