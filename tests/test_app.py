from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from kejabase.app import KejabaseApp
from kejabase.backend.memory import MemoryBackend
from kejabase.config import KejabaseConfig
from kejabase.events import ALL_SERVICES_READY
from kejabase.exceptions import ServiceTimeoutError
from kejabase.presenter import ListingsView
from kejabase.state.persistence import MemoryStorage

_FAST = KejabaseConfig(
    monitor_interval=0.01,
    monitor_timeout=2.0,
    wait_poll_interval=0.01,
    backend_wait_timeout=1.0,
    auth_wait_timeout=1.0,
    all_wait_timeout=1.0,
    sequence_delay=0.0,
)


def _backend(*, ready: bool = True) -> MemoryBackend:
    backend = MemoryBackend(ready=ready)
    backend.collections["houses"].seed([{"id": "h1", "title": "House", "location": "Nairobi", "price": 500, "public": True}])
    backend.collections["bnbs"].seed([{"id": "b1", "title": "Bnb", "location": "Mombasa", "price": 80, "public": True}])
    backend.collections["users"].seed([{"id": "u1", "role": "hunter"}])
    backend.collections["favorites"].seed([{"userId": "u1", "listingId": "h1"}])
    backend.auth.add_account("a@example.com", "secret1", uid="u1")
    return backend


async def _eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.asyncio
async def test_app_reaches_all_ready_and_loads_listings() -> None:
    views: list[ListingsView] = []
    ready_events: list[str] = []
    app = KejabaseApp(_FAST, backend=_backend(), sink=views.append)
    app.events.subscribe(ALL_SERVICES_READY, lambda name, _payload: ready_events.append(name))

    async with app:
        await app.wait_until_ready(1.0)
        await _eventually(lambda: len(app.store.get_state().listings) == 2)

        assert app.coordinator.get_status().pending() == []
        assert ready_events == [ALL_SERVICES_READY]
        assert app.presenter.state_store is app.store
        assert app.store.get_state().role == "guest"
        assert views[-1].total == 2
        assert [card.listing.id for card in views[-1].cards] == ["h1", "b1"]


@pytest.mark.asyncio
async def test_sign_in_triggers_a_state_refresh() -> None:
    async with KejabaseApp(_FAST, backend=_backend()) as app:
        await app.wait_until_ready(1.0)
        await app.auth.sign_in("a@example.com", "secret1")
        await _eventually(lambda: app.store.get_state().favorites == ["h1"])

        assert app.store.get_state().role == "hunter"
        assert app.store.is_favorite("h1")


def test_durable_state_is_available_before_start() -> None:
    storage = MemoryStorage({"appState": '{"currentUser": {"uid": "u1"}, "role": "hunter", "favorites": ["b1"]}'})

    app = KejabaseApp(_FAST, backend=_backend(), storage=storage)

    state = app.store.get_state()
    assert state.current_user is not None and state.current_user.uid == "u1"
    assert state.favorites == ["b1"]
    assert state.listings == []


@pytest.mark.asyncio
async def test_late_backend_is_picked_up_by_the_monitor() -> None:
    backend = _backend(ready=False)
    async with KejabaseApp(_FAST, backend=backend) as app:
        assert not app.coordinator.all_ready

        await asyncio.sleep(0.05)
        backend.ready = True
        await app.wait_until_ready(1.0)

        assert app.store.backend is backend
        assert app.auth.is_backend_ready()


@pytest.mark.asyncio
async def test_wait_until_ready_times_out_when_backend_never_arrives() -> None:
    async with KejabaseApp(_FAST, backend=_backend(ready=False)) as app:
        with pytest.raises(ServiceTimeoutError):
            await app.wait_until_ready(0.05)
        assert app.coordinator.get_status().pending() == ["backend", "state", "auth", "ui"]


@pytest.mark.asyncio
async def test_without_project_the_memory_backend_is_used() -> None:
    async with KejabaseApp(_FAST) as app:
        await app.wait_until_ready(1.0)
        assert isinstance(app.backend, MemoryBackend)
        assert await app.refresh() is True


@pytest.mark.asyncio
async def test_zero_timeout_is_not_replaced_by_the_default() -> None:
    async with KejabaseApp(_FAST, backend=_backend(ready=False)) as app:
        with pytest.raises(ServiceTimeoutError) as exc_info:
            await app.wait_until_ready(0)
        assert exc_info.value.timeout == 0
