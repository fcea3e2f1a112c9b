"""Service readiness coordination.

Tracks the backend, state, auth and UI services, decides when each one is
usable and signals once all of them are.
"""

from kejabase.readiness.coordinator import ReadinessCoordinator, ServiceReadyEvent
from kejabase.readiness.predicates import ServiceName

__all__ = ["ReadinessCoordinator", "ServiceName", "ServiceReadyEvent"]
