"""Per-service readiness predicates.

Each predicate inspects the capabilities an instance currently exposes and
never raises: an instance that is missing, partially constructed or whose
probe fails is simply not ready yet.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

_logger = logging.getLogger(__name__)


class ServiceName(StrEnum):
    """The closed set of services the coordinator tracks."""

    BACKEND = "backend"
    STATE = "state"
    AUTH = "auth"
    UI = "ui"


def backend_ready(instance: Any) -> bool:
    """Ready flag set, auth handle present and collections exposed."""
    return (
        bool(getattr(instance, "ready", False))
        and getattr(instance, "auth", None) is not None
        and bool(getattr(instance, "collections", None))
    )


def state_ready(instance: Any) -> bool:
    """Exposes ``get_state`` and has been wired with a backend."""
    return callable(getattr(instance, "get_state", None)) and getattr(instance, "backend", None) is not None


def auth_ready(instance: Any) -> bool:
    """Reports that its own backend is ready."""
    probe = getattr(instance, "is_backend_ready", None)
    return callable(probe) and bool(probe())


def ui_ready(instance: Any) -> bool:
    """Exposes ``render_listings`` and has been wired with a state store."""
    return callable(getattr(instance, "render_listings", None)) and getattr(instance, "state_store", None) is not None


READINESS_PREDICATES: dict[ServiceName, Callable[[Any], bool]] = {
    ServiceName.BACKEND: backend_ready,
    ServiceName.STATE: state_ready,
    ServiceName.AUTH: auth_ready,
    ServiceName.UI: ui_ready,
}


def evaluate(name: ServiceName, instance: Any) -> bool:
    if instance is None:
        return False
    try:
        return READINESS_PREDICATES[name](instance)
    except Exception:
        _logger.debug("Readiness probe for %s failed", name, exc_info=True)
        return False
