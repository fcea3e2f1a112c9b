from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime

import pytest

from kejabase.backend.memory import MemoryBackend
from kejabase.events import STATE_CHANGED, EventBus
from kejabase.exceptions import AuthenticationError, BackendError
from kejabase.models.booking import BookingRequest
from kejabase.models.listing import Listing
from kejabase.models.state import AppState, ListingFilters
from kejabase.models.user import UserIdentity
from kejabase.state.persistence import MemoryStorage
from kejabase.state.store import StateStore


def _listings() -> list[Listing]:
    return [
        Listing(id="h1", type="house", price=500, location="Nairobi"),
        Listing(id="b1", type="bnb", price=80, location="Mombasa", amenities=["wifi"]),
    ]


def _seeded_backend() -> MemoryBackend:
    backend = MemoryBackend()
    backend.collections["houses"].seed(
        [
            {"id": "h1", "title": "Family house", "location": "Nairobi", "price": 500, "public": True},
            {"id": "h2", "title": "Private villa", "location": "Karen", "price": 900, "public": False},
        ]
    )
    backend.collections["bnbs"].seed(
        [{"id": "b1", "title": "Beach bnb", "location": "Mombasa", "price": 80, "amenities": ["wifi"], "public": True}]
    )
    backend.collections["users"].seed([{"id": "u1", "role": "hunter", "email": "a@example.com"}])
    backend.collections["favorites"].seed([{"userId": "u1", "listingId": "b1"}, {"userId": "u2", "listingId": "h1"}])
    return backend


def _sign_in(backend: MemoryBackend, uid: str = "u1") -> UserIdentity:
    user = backend.auth.add_account("a@example.com", "secret1", uid=uid)
    backend.auth.set_current_user(user)
    return user


# ------------------------------------------------------------------
# update_state / subscribe
# ------------------------------------------------------------------


def test_update_state_notifies_even_without_changes() -> None:
    store = StateStore()
    seen: list[AppState] = []
    store.subscribe(seen.append)

    store.update_state(error=None)
    store.update_state(error=None)

    assert len(seen) == 2


def test_listeners_run_in_order_and_failures_are_isolated() -> None:
    store = StateStore()
    calls: list[str] = []

    def _first(_state: AppState) -> None:
        calls.append("first")
        raise RuntimeError("boom")

    store.subscribe(_first)
    store.subscribe(lambda _state: calls.append("second"))

    store.update_state(role="hunter")

    assert calls == ["first", "second"]
    assert store.get_state().role == "hunter"


def test_all_listeners_observe_the_same_snapshot() -> None:
    store = StateStore()
    snapshots: list[AppState] = []
    store.subscribe(snapshots.append)
    store.subscribe(snapshots.append)

    store.update_state({"listings": _listings()})

    assert snapshots[0] is snapshots[1]
    assert [listing.id for listing in snapshots[0].listings] == ["h1", "b1"]


def test_unsubscribe_stops_notifications() -> None:
    store = StateStore()
    seen: list[AppState] = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    store.update_state(role="admin")

    assert seen == []


def test_state_changes_are_broadcast_on_the_event_bus() -> None:
    events = EventBus()
    received: list[str] = []
    events.subscribe(STATE_CHANGED, lambda name, _payload: received.append(name))
    store = StateStore(events=events)

    store.update_state(role="bnb")

    assert received == [STATE_CHANGED]


def test_update_is_a_shallow_merge() -> None:
    store = StateStore()
    store.update_state(filters={"location": "Nairobi", "type": "house"})
    store.update_state(filters={"type": "bnb"})

    assert store.get_state().filters == ListingFilters(type="bnb")


def test_update_accepts_camel_case_keys() -> None:
    store = StateStore()
    store.update_state({"currentUser": {"uid": "u1"}})
    assert store.get_state().current_user == UserIdentity(uid="u1")


def test_unknown_field_is_rejected_without_side_effects() -> None:
    store = StateStore()
    seen: list[AppState] = []
    store.subscribe(seen.append)

    with pytest.raises(ValueError, match="Unknown state field"):
        store.update_state(role="admin", colour="blue")

    assert seen == []
    assert store.get_state().role is None


def test_get_state_returns_a_copy() -> None:
    store = StateStore()
    store.update_state(favorites=["a"])
    snapshot = store.get_state()
    snapshot.favorites.append("b")
    assert store.get_state().favorites == ["a"]


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------


def test_apply_filters_uses_state_filters_and_never_mutates_listings() -> None:
    store = StateStore()
    store.update_state(listings=_listings(), filters={"type": "bnb"})

    assert [listing.id for listing in store.apply_filters()] == ["b1"]
    assert [listing.id for listing in store.apply_filters({"location": "nairobi"})] == ["h1"]
    assert len(store.get_state().listings) == 2


def test_reset_filters_restores_defaults_and_notifies() -> None:
    store = StateStore()
    store.update_state(listings=_listings(), filters={"type": "bnb", "amenities": ["wifi"]})
    seen: list[AppState] = []
    store.subscribe(seen.append)

    store.reset_filters()

    assert len(seen) == 1
    assert store.get_state().filters == ListingFilters()
    assert store.apply_filters() == store.get_state().listings


# ------------------------------------------------------------------
# Favorites
# ------------------------------------------------------------------


def test_toggle_favorite_is_self_inverse() -> None:
    store = StateStore()
    store.update_state(favorites=["x", "y"])

    assert store.toggle_favorite("z") is None
    assert store.get_state().favorites == ["x", "y", "z"]
    store.toggle_favorite("z")
    assert store.get_state().favorites == ["x", "y"]

    store.toggle_favorite("x")
    store.toggle_favorite("x")
    assert sorted(store.get_state().favorites) == ["x", "y"]


@pytest.mark.asyncio
async def test_toggle_favorite_syncs_to_backend_when_signed_in() -> None:
    backend = _seeded_backend()
    user = _sign_in(backend)
    store = StateStore(backend=backend)
    store.update_state(current_user=user, favorites=["b1"])

    task = store.toggle_favorite("h1")
    assert task is not None
    await task

    docs = await backend.collections["favorites"].where("userId", "u1").get()
    assert sorted(doc.data["listingId"] for doc in docs) == ["b1", "h1"]
    assert all(doc.data.get("createdAt") is not None for doc in docs if doc.data["listingId"] == "h1")

    await store.toggle_favorite("b1")  # type: ignore[misc]
    docs = await backend.collections["favorites"].where("userId", "u1").get()
    assert [doc.data["listingId"] for doc in docs] == ["h1"]
    # Other users' favorites are untouched.
    assert len(await backend.collections["favorites"].where("userId", "u2").get()) == 1


@pytest.mark.asyncio
async def test_favorite_sync_failure_keeps_local_toggle_and_sets_error() -> None:
    backend = _seeded_backend()
    user = _sign_in(backend)
    store = StateStore(backend=backend)
    store.update_state(current_user=user)
    backend.collections["favorites"].failure = BackendError("denied", code="permission-denied")

    task = store.toggle_favorite("h1")
    assert task is not None
    await task

    state = store.get_state()
    assert state.favorites == ["h1"]
    assert state.error == "You don't have permission to perform this action."


# ------------------------------------------------------------------
# Durable subset
# ------------------------------------------------------------------


def test_durable_subset_survives_a_reload() -> None:
    storage = MemoryStorage()
    store = StateStore(storage=storage)
    store.update_state(
        current_user=UserIdentity(uid="u1", email="a@example.com"),
        role="provider",
        favorites=["h1", "b1"],
        listings=_listings(),
        error="stale",
    )

    reloaded = StateStore(storage=storage)
    state = reloaded.get_state()

    assert state.favorites == ["h1", "b1"]
    assert state.current_user == UserIdentity(uid="u1", email="a@example.com")
    assert state.role == "provider"
    assert state.listings == []
    assert state.error is None


def test_persisted_blob_uses_camel_case_projection() -> None:
    storage = MemoryStorage()
    store = StateStore(storage=storage, storage_key="custom")
    store.update_state(favorites=["h1"], current_user={"uid": "u1"})

    blob = json.loads(storage.get_item("custom") or "{}")
    assert set(blob) == {"currentUser", "role", "favorites"}
    assert blob["currentUser"]["uid"] == "u1"


def test_malformed_durable_blob_is_ignored() -> None:
    storage = MemoryStorage({"appState": "{not json"})
    store = StateStore(storage=storage)
    assert store.get_state() == AppState()


def test_storage_write_failure_does_not_break_updates() -> None:
    class _BrokenStorage(MemoryStorage):
        def set_item(self, key: str, value: str) -> None:
            raise OSError("disk full")

    store = StateStore(storage=_BrokenStorage())
    store.update_state(favorites=["h1"])
    assert store.get_state().favorites == ["h1"]


# ------------------------------------------------------------------
# initialize_state
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_initialize_state_signed_in_loads_everything() -> None:
    backend = _seeded_backend()
    user = _sign_in(backend)
    store = StateStore(backend=backend)

    assert await store.initialize_state() is True

    state = store.get_state()
    assert state.current_user == user
    assert state.role == "hunter"
    assert [(listing.id, listing.type) for listing in state.listings] == [
        ("h1", "house"),
        ("h2", "house"),
        ("b1", "bnb"),
    ]
    assert state.favorites == ["b1"]
    assert state.error is None


@pytest.mark.asyncio
async def test_initialize_state_signed_out_sees_public_listings_as_guest() -> None:
    backend = _seeded_backend()
    store = StateStore(backend=backend, storage=MemoryStorage())
    store.update_state(current_user={"uid": "cached"}, favorites=["h2"])

    assert await store.initialize_state() is True

    state = store.get_state()
    assert state.current_user is None
    assert state.role == "guest"
    assert [listing.id for listing in state.listings] == ["h1", "b1"]
    assert state.favorites == []


@pytest.mark.asyncio
async def test_initialize_state_failure_resets_collections() -> None:
    backend = _seeded_backend()
    store = StateStore(backend=backend)
    store.update_state(listings=_listings(), favorites=["h1"])
    backend.collections["bnbs"].failure = BackendError("offline", code="unavailable")

    assert await store.initialize_state() is False

    state = store.get_state()
    assert state.error == "offline"
    assert state.listings == []
    assert state.favorites == []


@pytest.mark.asyncio
async def test_initialize_state_without_backend_is_skipped() -> None:
    store = StateStore()
    assert await store.initialize_state() is False
    assert store.get_state() == AppState()


@pytest.mark.asyncio
async def test_overlapping_initializations_run_one_after_another() -> None:
    backend = _seeded_backend()
    store = StateStore(backend=backend)
    active = 0
    peak = 0
    original = backend.collections["houses"].where

    class _SlowQuery:
        def __init__(self, inner: object) -> None:
            self._inner = inner

        async def get(self) -> list[object]:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await self._inner.get()  # type: ignore[attr-defined]

    backend.collections["houses"].where = lambda path, value: _SlowQuery(original(path, value))  # type: ignore[method-assign]

    results = await asyncio.gather(store.initialize_state(), store.initialize_state())

    assert results == [True, True]
    assert peak == 1


@pytest.mark.asyncio
async def test_signed_in_user_without_role_falls_back_to_guest() -> None:
    backend = _seeded_backend()
    _sign_in(backend, uid="no-doc")
    store = StateStore(backend=backend)

    assert await store.initialize_state() is True
    assert store.get_state().role == "guest"

    backend.collections["users"].seed([{"id": "no-doc", "email": "a@example.com"}])
    await store.initialize_state()
    assert store.get_state().role == "guest"


@pytest.mark.asyncio
async def test_malformed_listing_is_skipped_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    backend = _seeded_backend()
    backend.collections["houses"].seed([{"id": "h3", "title": "Bad price", "price": "KES 900", "public": True}])
    store = StateStore(backend=backend)

    with caplog.at_level(logging.WARNING, logger="kejabase.state.store"):
        assert await store.initialize_state() is True

    state = store.get_state()
    assert [listing.id for listing in state.listings] == ["h1", "b1"]
    assert state.error is None
    assert "h3" in caplog.text


# ------------------------------------------------------------------
# Single listing and bookings
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_listing_by_id_checks_houses_then_bnbs() -> None:
    backend = _seeded_backend()
    backend.collections["bnbs"].seed([{"id": "h1", "title": "Shadowed bnb"}])
    store = StateStore(backend=backend)

    house = await store.fetch_listing_by_id("h1")
    bnb = await store.fetch_listing_by_id("b1")

    assert house is not None and (house.type, house.title) == ("house", "Family house")
    assert bnb is not None and bnb.type == "bnb"
    assert await store.fetch_listing_by_id("missing") is None


@pytest.mark.asyncio
async def test_fetch_listing_by_id_returns_none_on_failure_or_without_backend() -> None:
    assert await StateStore().fetch_listing_by_id("h1") is None

    backend = _seeded_backend()
    backend.collections["houses"].failure = BackendError("offline", code="unavailable")
    assert await StateStore(backend=backend).fetch_listing_by_id("h1") is None


@pytest.mark.asyncio
async def test_create_booking_stores_a_pending_booking() -> None:
    backend = _seeded_backend()
    user = _sign_in(backend)
    store = StateStore(backend=backend)
    store.update_state(current_user=user)
    request = BookingRequest(
        listing_id="b1",
        listing_type="bnb",
        start_date=date(2025, 1, 10),
        end_date=date(2025, 1, 12),
        guests=2,
    )

    booking_id = await store.create_booking(request)

    doc = await backend.collections["bookings"].get(booking_id)
    assert doc is not None
    assert doc.data["userId"] == "u1"
    assert doc.data["status"] == "pending"
    assert doc.data["listingType"] == "bnb"
    assert (doc.data["startDate"], doc.data["endDate"], doc.data["guests"]) == ("2025-01-10", "2025-01-12", 2)
    assert isinstance(doc.data["createdAt"], datetime)


@pytest.mark.asyncio
async def test_create_booking_requires_sign_in() -> None:
    backend = _seeded_backend()
    store = StateStore(backend=backend)
    request = BookingRequest(listing_id="b1", listing_type="bnb", start_date=date(2025, 1, 10), end_date=date(2025, 1, 10))

    with pytest.raises(AuthenticationError, match="Please login"):
        await store.create_booking(request)

    assert await backend.collections["bookings"].get_all() == []
