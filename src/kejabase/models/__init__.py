"""Data models for kejabase documents and state."""

from kejabase.models._base import KejabaseBaseModel
from kejabase.models.booking import BookingRequest
from kejabase.models.listing import Listing, ListingType
from kejabase.models.state import AppState, DurableState, ListingFilters
from kejabase.models.status import CoordinatorStatus, ServiceStatus
from kejabase.models.user import Role, UserIdentity

__all__ = [
    "AppState",
    "BookingRequest",
    "CoordinatorStatus",
    "DurableState",
    "KejabaseBaseModel",
    "Listing",
    "ListingFilters",
    "ListingType",
    "Role",
    "ServiceStatus",
    "UserIdentity",
]
