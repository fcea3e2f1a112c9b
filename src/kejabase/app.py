"""Composition root.

Builds one instance of every service, registers them with the readiness
coordinator and wires them together as they become ready.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import aiohttp

from kejabase.auth import AuthService
from kejabase.backend.base import Backend
from kejabase.backend.memory import MemoryBackend
from kejabase.backend.rest import RestBackend
from kejabase.config import KejabaseConfig
from kejabase.events import EventBus, service_ready_event
from kejabase.models.user import UserIdentity
from kejabase.presenter import ListingsPresenter, ListingsSink
from kejabase.readiness.coordinator import ReadinessCoordinator, ServiceReadyEvent
from kejabase.readiness.predicates import ServiceName
from kejabase.state.persistence import DurableStorage, JsonFileStorage, MemoryStorage
from kejabase.state.store import StateStore

_logger = logging.getLogger(__name__)


class KejabaseApp:
    """Application bootstrap.

    Usage::

        async with KejabaseApp(KejabaseConfig.from_env(), sink=print) as app:
            await app.wait_until_ready()
            app.store.update_state(filters={"type": "bnb"})

    The state store is created (and its durable subset restored) in the
    constructor, before any backend round trip, so a provisional view is
    available immediately.
    """

    def __init__(
        self,
        config: KejabaseConfig | None = None,
        *,
        backend: Backend | None = None,
        storage: DurableStorage | None = None,
        sink: ListingsSink | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config or KejabaseConfig()
        self._backend_override = backend
        self._external_session = http_session is not None
        self._http_session = http_session
        if storage is None:
            storage = JsonFileStorage(self.config.storage_path) if self.config.storage_path else MemoryStorage()
        self.events = EventBus()
        self.store = StateStore(storage=storage, storage_key=self.config.storage_key, events=self.events)
        self.auth = AuthService()
        self.presenter = ListingsPresenter(sink)
        self.coordinator = ReadinessCoordinator.from_config(self.config, events=self.events)
        self.backend: Backend | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> KejabaseApp:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def _create_backend(self) -> Backend:
        if self._backend_override is not None:
            return self._backend_override
        if self.config.uses_remote_backend:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            return RestBackend(self.config, self._http_session)
        _logger.warning("No project configured, using the in-memory backend")
        return MemoryBackend()

    async def start(self) -> None:
        """Register every service and start both readiness paths."""
        self._unsubscribers.extend(
            [
                self.events.subscribe(service_ready_event(ServiceName.BACKEND), self._on_backend_ready),
                self.events.subscribe(service_ready_event(ServiceName.STATE), self._on_state_ready),
                self.coordinator.on_all_ready(self._on_all_ready),
            ]
        )
        self.coordinator.register_service(ServiceName.STATE, self.store)
        self.coordinator.register_service(ServiceName.AUTH, self.auth)
        self.coordinator.register_service(ServiceName.UI, self.presenter)

        self.backend = self._create_backend()
        self.coordinator.register_service(ServiceName.BACKEND, self.backend)

        self.coordinator.start_monitoring()
        if not self.coordinator.all_ready:
            self._spawn(self._delayed_sequence())

    async def stop(self) -> None:
        self.coordinator.stop_monitoring()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.store.flush()
        self.presenter.detach()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Wait for every service; raises ``ServiceTimeoutError`` on timeout."""
        await self.coordinator.wait_for_all_services(timeout if timeout is not None else self.config.monitor_timeout)

    async def refresh(self) -> bool:
        return await self.store.initialize_state()

    # ------------------------------------------------------------------
    # Event-driven wiring
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _delayed_sequence(self) -> None:
        await asyncio.sleep(self.config.sequence_delay)
        if self.coordinator.all_ready:
            return
        _logger.info("Attempting coordinated initialization")
        if not await self.coordinator.initialize_in_sequence():
            _logger.warning("Coordinated initialization did not complete: %s", self.coordinator.get_status().pending())

    def _on_backend_ready(self, _event: str, payload: ServiceReadyEvent) -> None:
        backend = payload.instance
        self.store.set_backend(backend)
        self.auth.set_backend(backend)
        self.auth.set_state_store(self.store)
        self.coordinator.check_service_readiness(ServiceName.STATE)
        self.coordinator.check_service_readiness(ServiceName.AUTH)

    def _on_state_ready(self, _event: str, payload: ServiceReadyEvent) -> None:
        self.presenter.set_state_store(payload.instance)
        self.coordinator.check_service_readiness(ServiceName.UI)

    def _on_all_ready(self) -> None:
        self._unsubscribers.append(self.auth.watch_auth_state(self._on_auth_state_changed))
        self._spawn(self.store.initialize_state())

    def _on_auth_state_changed(self, user: UserIdentity | None) -> None:
        _logger.debug("Auth state changed: %s", user.uid if user is not None else None)
        self._spawn(self.store.initialize_state())
