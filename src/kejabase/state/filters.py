"""Declarative listing filters.

Each predicate is a pure function of one listing and one filter
specification. A listing is included only when every predicate holds.
"""

from __future__ import annotations

from collections.abc import Iterable

from kejabase.models.listing import Listing
from kejabase.models.state import ListingFilters


def matches_type(listing: Listing, filters: ListingFilters) -> bool:
    return not filters.type or listing.type == filters.type


def matches_price(listing: Listing, filters: ListingFilters) -> bool:
    return filters.min_price <= listing.price <= filters.max_price


def matches_location(listing: Listing, filters: ListingFilters) -> bool:
    if not filters.location:
        return True
    return filters.location.casefold() in listing.location.casefold()


def matches_amenities(listing: Listing, filters: ListingFilters) -> bool:
    if not filters.amenities:
        return True
    available = set(listing.amenities)
    return all(amenity in available for amenity in filters.amenities)


# Cheapest checks first.
_PREDICATES = (matches_type, matches_price, matches_location, matches_amenities)


def matches(listing: Listing, filters: ListingFilters) -> bool:
    return all(predicate(listing, filters) for predicate in _PREDICATES)


def filter_listings(listings: Iterable[Listing], filters: ListingFilters) -> list[Listing]:
    """Return the listings satisfying *filters*, in their original order."""
    return [listing for listing in listings if matches(listing, filters)]
