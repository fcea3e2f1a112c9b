"""Application state record and its durable projection."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from kejabase.models.listing import Listing
from kejabase.models.user import UserIdentity


class ListingFilters(BaseModel):
    """Declarative filter specification.

    Every field is independently optional: an empty string, empty list or an
    unbounded price maximum (``None``) leaves that dimension unconstrained.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    location: str = ""
    type: str = ""
    price_range: tuple[float, float | None] = (0.0, None)
    amenities: tuple[str, ...] = ()

    @field_validator("price_range", mode="before")
    @classmethod
    def _normalize_price_range(cls, value: object) -> object:
        if value is None:
            return (0.0, None)
        if isinstance(value, (list, tuple)):
            items = list(value)
            if len(items) == 1:
                items.append(None)
            low, high = items[0], items[1]
            if low is None:
                low = 0.0
            if isinstance(high, float) and math.isinf(high):
                high = None
            return (low, high)
        return value

    @property
    def min_price(self) -> float:
        return self.price_range[0]

    @property
    def max_price(self) -> float:
        high = self.price_range[1]
        return math.inf if high is None else high

    def is_default(self) -> bool:
        return self == ListingFilters()


class AppState(BaseModel):
    """The single mutable application state record."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        validate_assignment=True,
    )

    current_user: UserIdentity | None = None
    role: str | None = None
    listings: list[Listing] = Field(default_factory=list)
    filters: ListingFilters = Field(default_factory=ListingFilters)
    favorites: list[str] = Field(default_factory=list)
    error: str | None = None

    @field_validator("favorites")
    @classmethod
    def _dedupe_favorites(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class DurableState(BaseModel):
    """The fields of :class:`AppState` that survive a restart."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    current_user: UserIdentity | None = None
    role: str | None = None
    favorites: list[str] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: AppState) -> DurableState:
        return cls(current_user=state.current_user, role=state.role, favorites=list(state.favorites))
