"""Readiness coordinator for asynchronously initializing services.

Readiness is a pollable predicate per service (see
:mod:`kejabase.readiness.predicates`). Registrations and explicit wiring
push an immediate evaluation; the background monitor re-evaluates on a fixed
interval as the correctness backstop, so both paths share one predicate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kejabase.config import KejabaseConfig
from kejabase.events import ALL_SERVICES_READY, EventBus, service_ready_event
from kejabase.exceptions import ServiceTimeoutError, UnknownServiceError
from kejabase.models.status import CoordinatorStatus, ServiceStatus
from kejabase.readiness.predicates import ServiceName, evaluate

_logger = logging.getLogger(__name__)

AllReadyCallback = Callable[[], None]


@dataclass(slots=True)
class _ServiceEntry:
    """Registry slot for one tracked service.

    ``ready`` only moves from ``False`` to ``True`` while the same instance
    stays registered. Registering a different instance starts over.
    """

    name: ServiceName
    instance: Any = None
    ready: bool = False


@dataclass(frozen=True, slots=True)
class ServiceReadyEvent:
    """Payload of the ``<name>ServiceReady`` event."""

    name: ServiceName
    instance: Any


def _noop() -> None:
    return None


class ReadinessCoordinator:
    """Decide when the backend, state, auth and UI services are usable.

    Usage::

        coordinator = ReadinessCoordinator.from_config(config, events=bus)
        coordinator.register_service("backend", backend)
        coordinator.register_service("state", store)
        coordinator.on_all_ready(lambda: print("ready"))
        coordinator.start_monitoring()
        ok = await coordinator.initialize_in_sequence()

    Nothing here raises for "not ready yet": that is a normal transient
    state reported as ``False``. Only the bounded waits fail, with
    :class:`~kejabase.exceptions.ServiceTimeoutError`.
    """

    def __init__(
        self,
        *,
        events: EventBus | None = None,
        check_interval: float = 0.2,
        monitor_timeout: float = 15.0,
        poll_interval: float = 0.1,
        backend_timeout: float = 5.0,
        auth_timeout: float = 3.0,
        all_timeout: float = 5.0,
        strict: bool = False,
    ) -> None:
        self._events = events
        self._check_interval = check_interval
        self._monitor_timeout = monitor_timeout
        self._poll_interval = poll_interval
        self._backend_timeout = backend_timeout
        self._auth_timeout = auth_timeout
        self._all_timeout = all_timeout
        self._strict = strict
        self._services: dict[ServiceName, _ServiceEntry] = {name: _ServiceEntry(name) for name in ServiceName}
        self._callbacks: list[AllReadyCallback] = []
        self._all_ready = False
        self._monitor_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: KejabaseConfig, *, events: EventBus | None = None) -> ReadinessCoordinator:
        return cls(
            events=events,
            check_interval=config.monitor_interval,
            monitor_timeout=config.monitor_timeout,
            poll_interval=config.wait_poll_interval,
            backend_timeout=config.backend_wait_timeout,
            auth_timeout=config.auth_wait_timeout,
            all_timeout=config.all_wait_timeout,
            strict=config.strict_services,
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def all_ready(self) -> bool:
        return self._all_ready

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    @staticmethod
    def _resolve(name: str | ServiceName) -> ServiceName | None:
        try:
            return ServiceName(name)
        except ValueError:
            return None

    def get_service(self, name: str | ServiceName) -> Any:
        service = self._resolve(name)
        return self._services[service].instance if service is not None else None

    def is_ready(self, name: str | ServiceName) -> bool:
        service = self._resolve(name)
        return service is not None and self._services[service].ready

    def register_service(self, name: str | ServiceName, instance: Any) -> None:
        """Store *instance* under *name* and evaluate its readiness.

        Unknown names are ignored with a warning, or rejected with
        :class:`UnknownServiceError` when the coordinator is strict.
        Registering the same instance again only re-evaluates it.
        """
        service = self._resolve(name)
        if service is None:
            if self._strict:
                raise UnknownServiceError(str(name))
            _logger.warning("Ignoring registration of unknown service %r", name)
            return

        entry = self._services[service]
        if entry.instance is not instance:
            _logger.debug("Registering service: %s", service)
            entry.instance = instance
            entry.ready = False
        self.check_service_readiness(service)

    # ------------------------------------------------------------------
    # Readiness evaluation
    # ------------------------------------------------------------------

    def check_service_readiness(self, name: str | ServiceName) -> bool:
        """Evaluate one service; on its first success announce it and re-check the aggregate."""
        service = self._resolve(name)
        if service is None:
            return False
        entry = self._services[service]
        if entry.ready:
            return True
        if not evaluate(service, entry.instance):
            return False

        entry.ready = True
        _logger.info("Service %s is now ready", service)
        if self._events is not None:
            self._events.emit(service_ready_event(service.value), ServiceReadyEvent(service, entry.instance))
        self.check_all_ready()
        return True

    def check_all_ready(self) -> bool:
        """Flip ``all_ready`` once every tracked service is ready."""
        if self._all_ready:
            return True
        if not all(entry.ready for entry in self._services.values()):
            return False

        self._all_ready = True
        _logger.info("All services are ready")
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._invoke(callback)
        if self._events is not None:
            self._events.emit(ALL_SERVICES_READY, self.get_status())
        self.stop_monitoring()
        return True

    def _check_all_services(self) -> bool:
        for service in ServiceName:
            self.check_service_readiness(service)
        return self.check_all_ready()

    @staticmethod
    def _invoke(callback: AllReadyCallback) -> None:
        try:
            callback()
        except Exception:
            _logger.warning("All-ready callback %r failed", callback, exc_info=True)

    def on_all_ready(self, callback: AllReadyCallback) -> Callable[[], None]:
        """Run *callback* once, when every service is ready.

        Runs immediately if that already happened. Returns a function that
        removes the callback if it has not fired yet.
        """
        if self._all_ready:
            self._invoke(callback)
            return _noop

        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Background monitor
    # ------------------------------------------------------------------

    def start_monitoring(self) -> asyncio.Task[None] | None:
        """Evaluate every service now, then keep re-evaluating in the background.

        The monitor stops once all services are ready or after the monitor
        timeout. A timeout is not an error: the final status is logged and
        callers carry on with whatever subset is ready.

        Must be called from a running event loop. Returns the monitor task,
        or ``None`` when everything was already ready.
        """
        _logger.info("Starting service monitoring")
        if self._check_all_services():
            return None
        if self._monitor_task is not None and not self._monitor_task.done():
            return self._monitor_task
        self._monitor_task = asyncio.get_running_loop().create_task(self._monitor())
        return self._monitor_task

    async def _monitor(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._monitor_timeout
        try:
            while not self._all_ready:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._log_final_status()
                    return
                await asyncio.sleep(min(self._check_interval, remaining))
                self._check_all_services()
        finally:
            if self._monitor_task is asyncio.current_task():
                self._monitor_task = None

    def _log_final_status(self) -> None:
        _logger.warning("Service monitoring timeout after %gs, stopping checks", self._monitor_timeout)
        for name, status in self.get_status().services.items():
            _logger.warning(
                "  %s: %s (%s)",
                name,
                "ready" if status.ready else "not ready",
                "instance available" if status.has_instance else "no instance",
            )

    def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The monitor exits on its own when it is the caller.
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Bounded waits
    # ------------------------------------------------------------------

    async def _poll_until(self, predicate: Callable[[], bool]) -> None:
        while not predicate():
            await asyncio.sleep(self._poll_interval)

    async def wait_for_service(self, name: str | ServiceName, timeout: float = 10.0) -> None:
        """Wait until *name* is ready, re-evaluating it every poll interval.

        Raises
        ------
        ServiceTimeoutError
            If the service is not ready within *timeout* seconds.
        UnknownServiceError
            If *name* is not a tracked service.
        """
        service = self._resolve(name)
        if service is None:
            raise UnknownServiceError(str(name))
        if self.check_service_readiness(service):
            return
        try:
            await asyncio.wait_for(self._poll_until(lambda: self.check_service_readiness(service)), timeout)
        except TimeoutError as exc:
            raise ServiceTimeoutError(service.value, timeout) from exc

    async def wait_for_all_services(self, timeout: float = 15.0) -> None:
        """Wait until every service is ready.

        Raises
        ------
        ServiceTimeoutError
            With ``service == "all"`` if the deadline passes first.
        """
        if self._check_all_services():
            return
        try:
            await asyncio.wait_for(self._poll_until(self._check_all_services), timeout)
        except TimeoutError as exc:
            raise ServiceTimeoutError("all", timeout) from exc

    # ------------------------------------------------------------------
    # Ordered bring-up
    # ------------------------------------------------------------------

    def _wire(self, target: ServiceName, method: str, value: Any) -> None:
        instance = self._services[target].instance
        if instance is None or value is None:
            return
        setter = getattr(instance, method, None)
        if not callable(setter):
            _logger.debug("Service %s has no %s(), skipping wiring", target, method)
            return
        setter(value)
        self.check_service_readiness(target)

    async def initialize_in_sequence(self) -> bool:
        """Bring the services up in dependency order.

        backend -> (backend into state) -> (backend and state into auth)
        -> auth -> (state into ui) -> all. Each wait is bounded; the first
        failure aborts the sequence and ``False`` is returned. The monitor
        keeps running independently, so this only speeds readiness up.
        """
        _logger.info("Starting coordinated service initialization")
        try:
            await self.wait_for_service(ServiceName.BACKEND, self._backend_timeout)
            _logger.info("Step 1: backend ready")

            backend = self.get_service(ServiceName.BACKEND)
            self._wire(ServiceName.STATE, "set_backend", backend)
            self._wire(ServiceName.AUTH, "set_backend", backend)
            self._wire(ServiceName.AUTH, "set_state_store", self.get_service(ServiceName.STATE))

            await self.wait_for_service(ServiceName.AUTH, self._auth_timeout)
            _logger.info("Step 2: auth ready")

            self._wire(ServiceName.UI, "set_state_store", self.get_service(ServiceName.STATE))

            await self.wait_for_all_services(self._all_timeout)
            _logger.info("Step 3: all services ready")
        except Exception:
            _logger.warning("Service initialization failed", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            all_ready=self._all_ready,
            services={
                name.value: ServiceStatus(ready=entry.ready, has_instance=entry.instance is not None)
                for name, entry in self._services.items()
            },
        )

    def reset(self) -> None:
        """Forget every instance, ready flag and pending callback."""
        self.stop_monitoring()
        for entry in self._services.values():
            entry.instance = None
            entry.ready = False
        self._callbacks.clear()
        self._all_ready = False
