"""kejabase - service readiness and reactive state core for a listings marketplace."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kejabase")
except PackageNotFoundError:
    __version__ = "0+local"
from kejabase.app import KejabaseApp
from kejabase.auth import AuthService
from kejabase.backend import MemoryBackend, RestBackend
from kejabase.config import KejabaseConfig
from kejabase.events import EventBus
from kejabase.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BackendError,
    BackendTransportError,
    KejabaseConfigError,
    KejabaseError,
    ServiceTimeoutError,
    UnknownServiceError,
)
from kejabase.models import (
    AppState,
    BookingRequest,
    CoordinatorStatus,
    DurableState,
    Listing,
    ListingFilters,
    ListingType,
    Role,
    ServiceStatus,
    UserIdentity,
)
from kejabase.presenter import ListingCard, ListingsPresenter, ListingsView
from kejabase.readiness import ReadinessCoordinator, ServiceName, ServiceReadyEvent
from kejabase.state import JsonFileStorage, MemoryStorage, StateStore

__all__ = [
    "__version__",
    "AppState",
    "BookingRequest",
    "AuthService",
    "AuthenticationError",
    "AuthorizationError",
    "BackendError",
    "BackendTransportError",
    "CoordinatorStatus",
    "DurableState",
    "EventBus",
    "JsonFileStorage",
    "KejabaseApp",
    "KejabaseConfig",
    "KejabaseConfigError",
    "KejabaseError",
    "Listing",
    "ListingCard",
    "ListingFilters",
    "ListingType",
    "ListingsPresenter",
    "ListingsView",
    "MemoryBackend",
    "MemoryStorage",
    "ReadinessCoordinator",
    "Role",
    "RestBackend",
    "ServiceName",
    "ServiceReadyEvent",
    "ServiceStatus",
    "ServiceTimeoutError",
    "StateStore",
    "UnknownServiceError",
    "UserIdentity",
]
