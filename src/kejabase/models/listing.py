"""Listing records (houses and short-stay rentals)."""

from __future__ import annotations

from enum import StrEnum

from pydantic import AliasChoices, Field, field_validator

from kejabase.models._base import KejabaseBaseModel


class ListingType(StrEnum):
    """Type tag attached to a listing when it is fetched."""

    HOUSE = "house"
    BNB = "bnb"


class Listing(KejabaseBaseModel):
    """A single marketplace listing.

    ``amenities`` is also accepted under the ``tags`` key. Unknown document
    fields are ignored.
    """

    id: str
    title: str = ""
    location: str = ""
    price: float = 0.0
    type: str = ""
    images: list[str] = Field(default_factory=list)
    amenities: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("amenities", "tags"),
    )
    public: bool = False

    @field_validator("price", mode="before")
    @classmethod
    def _strip_price_formatting(cls, value: object) -> object:
        if isinstance(value, str):
            return value.replace(",", "").strip()
        return value
